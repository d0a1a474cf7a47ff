from __future__ import annotations

import json

import httpx
import pytest

from services.notification_service import (
    ClickSendGateway,
    DeliveryStatus,
    EventKind,
    LoggingGateway,
    Notification,
    NotificationGateway,
    dispatch,
    normalize_phone,
    render_message,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("0412 345 678", "+61412345678"),
        ("412345678", "+61412345678"),
        ("(212) 555-0123", "+12125550123"),
        ("+61 412 345 678", "+61412345678"),
        ("+44 7700 900123", "+447700900123"),
    ],
)
def test_normalize_phone(raw: str, expected: str) -> None:
    assert normalize_phone(raw) == expected


def test_start_message_defaults_task_and_adds_link() -> None:
    body = render_message(
        EventKind.GAME_STARTED,
        {"target_name": "Bob", "task": None, "player_token": "abc"},
        app_url="https://party.example/",
    )

    assert body.startswith("The game is on! Your target is: Bob. Task: Tag them!")
    assert body.endswith("Your player link: https://party.example/play/abc")


def test_kill_claim_message_without_app_url() -> None:
    body = render_message(EventKind.KILL_CLAIMED, {"killer_name": "Alice", "player_token": "abc"})

    assert body == "Alice claims they got you! Open your player page to confirm."


def test_new_target_message_omits_missing_task() -> None:
    body = render_message(EventKind.NEW_TARGET, {"target_name": "Dave", "task": None})

    assert body == "Kill confirmed! Your new target is: Dave."


def test_logging_gateway_skips() -> None:
    status = LoggingGateway().notify("0412345678", EventKind.WINNER, {})

    assert status == DeliveryStatus.SKIPPED


class _ExplodingGateway(NotificationGateway):
    def __init__(self) -> None:
        self.calls = 0

    def notify(self, recipient, event_kind, payload):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("carrier down")
        return DeliveryStatus.DELIVERED


def test_dispatch_swallows_failures_and_keeps_going() -> None:
    gateway = _ExplodingGateway()
    notifications = [
        Notification("0412345678", EventKind.ELIMINATED, {"killer_name": "Alice"}),
        Notification("0412345679", EventKind.NEW_TARGET, {"target_name": "Dave"}),
    ]

    assert dispatch(gateway, notifications) == [DeliveryStatus.FAILED, DeliveryStatus.DELIVERED]
    assert gateway.calls == 2


def _clicksend(handler, from_number=None) -> ClickSendGateway:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return ClickSendGateway(
        username="user",
        api_key="key",
        api_url="https://rest.clicksend.test/v3/sms/send",
        from_number=from_number,
        app_url="https://party.example",
        client=client,
    )


def test_clicksend_posts_normalized_message() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"response_code": "SUCCESS", "data": {"messages": [{"status": "SUCCESS"}]}})

    gateway = _clicksend(handler, from_number="Assassin")
    status = gateway.notify("0412345678", EventKind.ELIMINATED, {"killer_name": "Alice"})

    assert status == DeliveryStatus.DELIVERED
    message = seen[0]["messages"][0]
    assert message == {
        "source": "assassin-game",
        "body": "You've been eliminated by Alice! Better luck next time!",
        "to": "+61412345678",
        "from": "Assassin",
    }


def test_clicksend_queued_message_counts_as_delivered() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"response_code": "SUCCESS", "data": {"messages": [{"status": "QUEUED"}]}})

    assert _clicksend(handler).notify("0412345678", EventKind.WINNER, {}) == DeliveryStatus.DELIVERED


def test_clicksend_http_error_is_failed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"response_code": "UNAUTHORIZED"})

    assert _clicksend(handler).notify("0412345678", EventKind.WINNER, {}) == DeliveryStatus.FAILED


def test_clicksend_error_response_code_is_failed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"response_code": "INSUFFICIENT_CREDIT", "response_msg": "Top up"})

    assert _clicksend(handler).notify("0412345678", EventKind.WINNER, {}) == DeliveryStatus.FAILED


def test_clicksend_transport_error_is_failed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route to host", request=request)

    assert _clicksend(handler).notify("0412345678", EventKind.WINNER, {}) == DeliveryStatus.FAILED


def test_test_message_falls_back_to_default_text() -> None:
    assert render_message(EventKind.TEST_MESSAGE, {"message": None}) == "Hello from Assassin Game!"
    assert render_message(EventKind.TEST_MESSAGE, {"message": "Ping"}) == "Ping"
