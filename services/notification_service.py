"""
通知服務：把遊戲事件送給玩家（SMS）

核心只負責產生 Notification（outbox），transaction commit 之後才呼叫 dispatch()。
送達與否不影響遊戲狀態：失敗只寫 log，不會拋回呼叫者。

Gateway：
- LoggingGateway：沒有設定 ClickSend 帳號時使用，只寫 log
- ClickSendGateway：呼叫 ClickSend REST API 發送 SMS
"""
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional
import enum
import logging
import re

import httpx

from database import get_settings

logger = logging.getLogger(__name__)

DEFAULT_TEST_MESSAGE = "Hello from Assassin Game!"


class EventKind(str, enum.Enum):
    GAME_STARTED = "game_started"
    KILL_CLAIMED = "kill_claimed"
    ELIMINATED = "eliminated"
    NEW_TARGET = "new_target"
    WINNER = "winner"
    GAME_OVER = "game_over"
    TEST_MESSAGE = "test_message"


class DeliveryStatus(str, enum.Enum):
    DELIVERED = "delivered"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class Notification:
    """一則待送出的通知（recipient 是玩家的聯絡方式，例如電話號碼）"""
    recipient: str
    event_kind: EventKind
    payload: Dict[str, Any] = field(default_factory=dict)


def normalize_phone(phone: str) -> str:
    """
    把電話號碼轉成 E.164 格式

    規則：
    - 去掉所有非數字
    - 0 開頭的 10 碼（澳洲手機）：0412345678 -> +61412345678
    - 非 0 開頭的 9 碼（已去掉開頭 0 的澳洲手機）：412345678 -> +61412345678
    - 非 61 開頭的 10 碼（美國）：2125550123 -> +12125550123
    - 其他：直接加上 +
    """
    cleaned = re.sub(r"\D", "", phone)

    if cleaned.startswith("0") and len(cleaned) == 10:
        cleaned = "61" + cleaned[1:]
    elif len(cleaned) == 9 and not cleaned.startswith("0"):
        cleaned = "61" + cleaned
    elif len(cleaned) == 10 and not cleaned.startswith("61"):
        cleaned = "1" + cleaned

    return "+" + cleaned


def _player_link(app_url: Optional[str], token: Optional[str]) -> Optional[str]:
    if not app_url or not token:
        return None
    return f"{app_url.rstrip('/')}/play/{token}"


def render_message(event_kind: EventKind, payload: Dict[str, Any], app_url: Optional[str] = None) -> str:
    """依事件種類產生 SMS 內文"""
    link = _player_link(app_url, payload.get("player_token"))

    if event_kind == EventKind.GAME_STARTED:
        body = (
            f"The game is on! Your target is: {payload['target_name']}. "
            f"Task: {payload.get('task') or 'Tag them!'}"
        )
        if link:
            body += f"\n\nYour player link: {link}"
        return body

    if event_kind == EventKind.NEW_TARGET:
        task = payload.get("task")
        task_part = f" Task: {task}" if task else ""
        body = f"Kill confirmed! Your new target is: {payload['target_name']}.{task_part}"
        if link:
            body += f"\n\nYour player link: {link}"
        return body

    if event_kind == EventKind.ELIMINATED:
        return f"You've been eliminated by {payload['killer_name']}! Better luck next time!"

    if event_kind == EventKind.WINNER:
        return "Congratulations! You are the last assassin standing! You won the game!"

    if event_kind == EventKind.KILL_CLAIMED:
        if link:
            return f"{payload['killer_name']} claims they got you! Confirm if true: {link}"
        return f"{payload['killer_name']} claims they got you! Open your player page to confirm."

    if event_kind == EventKind.GAME_OVER:
        return f"Game over! {payload['winner_name']} won the Assassin game. Thanks for playing!"

    if event_kind == EventKind.TEST_MESSAGE:
        return payload.get("message") or DEFAULT_TEST_MESSAGE

    raise ValueError(f"Unknown event kind: {event_kind}")


class NotificationGateway:
    """通知閘道的介面"""

    def notify(self, recipient: str, event_kind: EventKind, payload: Dict[str, Any]) -> DeliveryStatus:
        raise NotImplementedError


class LoggingGateway(NotificationGateway):
    """不發送，只把訊息內容寫到 log"""

    def __init__(self, app_url: Optional[str] = None):
        self.app_url = app_url

    def notify(self, recipient, event_kind, payload):
        body = render_message(event_kind, payload, self.app_url)
        logger.info(f"[SMS skipped] to={recipient} kind={event_kind.value} body={body!r}")
        return DeliveryStatus.SKIPPED


class ClickSendGateway(NotificationGateway):
    """
    透過 ClickSend REST API 發送 SMS

    回應判斷：
    - HTTP 非 2xx -> FAILED
    - response_code != SUCCESS -> FAILED
    - 個別訊息狀態不是 SUCCESS 但已排入佇列 -> 仍視為 DELIVERED（寫 warning）
    """

    SOURCE = "assassin-game"

    def __init__(
        self,
        username: str,
        api_key: str,
        api_url: str,
        from_number: Optional[str] = None,
        app_url: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.api_url = api_url
        self.from_number = from_number
        self.app_url = app_url
        self.client = client or httpx.Client(auth=(username, api_key), timeout=timeout)

    def build_request_body(self, phone: str, body: str) -> Dict[str, Any]:
        message = {"source": self.SOURCE, "body": body, "to": phone}
        # 沒設定 from 就讓 ClickSend 用預設號碼
        if self.from_number:
            message["from"] = self.from_number
        return {"messages": [message]}

    def notify(self, recipient, event_kind, payload):
        phone = normalize_phone(recipient)
        body = render_message(event_kind, payload, self.app_url)
        logger.info(f"[SMS] Sending {event_kind.value} to {phone}")

        try:
            response = self.client.post(self.api_url, json=self.build_request_body(phone, body))
        except httpx.HTTPError as e:
            logger.error(f"[SMS] Request to ClickSend failed: {e}", exc_info=True)
            return DeliveryStatus.FAILED

        if response.is_error:
            logger.error(f"[SMS] ClickSend HTTP error {response.status_code}: {response.text}")
            return DeliveryStatus.FAILED

        try:
            result = response.json()
        except ValueError:
            logger.error(f"[SMS] ClickSend returned non-JSON body: {response.text!r}")
            return DeliveryStatus.FAILED

        if result.get("response_code") != "SUCCESS":
            logger.error(
                f"[SMS] ClickSend error: {result.get('response_code')} {result.get('response_msg')}"
            )
            return DeliveryStatus.FAILED

        messages = (result.get("data") or {}).get("messages") or [{}]
        message_status = messages[0].get("status")
        if message_status != "SUCCESS":
            logger.warning(f"[SMS] Message queued but status: {message_status}")

        return DeliveryStatus.DELIVERED


def dispatch(gateway: NotificationGateway, notifications: Iterable[Notification]) -> List[DeliveryStatus]:
    """
    依序送出通知

    任何例外或 FAILED 只寫 log，不影響其他通知，也不會拋回呼叫者
    （遊戲狀態已經 commit，送不出去也不能回滾）
    """
    results = []
    for notification in notifications:
        try:
            status = gateway.notify(notification.recipient, notification.event_kind, notification.payload)
        except Exception as e:
            logger.error(
                f"Notification {notification.event_kind.value} to {notification.recipient} raised: {e}",
                exc_info=True
            )
            status = DeliveryStatus.FAILED

        if status == DeliveryStatus.FAILED:
            logger.warning(
                f"Notification {notification.event_kind.value} to {notification.recipient} was not delivered"
            )
        results.append(status)

    return results


@lru_cache()
def get_notification_gateway() -> NotificationGateway:
    """
    FastAPI dependency：依設定選擇 Gateway

    ClickSend 的 username 和 api_key 都有設定才會真的發送
    """
    settings = get_settings()

    if settings.clicksend_username and settings.clicksend_api_key:
        logger.info(
            f"ClickSend SMS enabled (username={settings.clicksend_username}, "
            f"from={settings.clicksend_from or 'ClickSend default'})"
        )
        return ClickSendGateway(
            username=settings.clicksend_username,
            api_key=settings.clicksend_api_key,
            api_url=settings.clicksend_api_url,
            from_number=settings.clicksend_from,
            app_url=settings.app_url,
            timeout=settings.sms_timeout_seconds,
        )

    logger.info("ClickSend credentials not found - SMS disabled (messages will be logged only)")
    return LoggingGateway(app_url=settings.app_url)
