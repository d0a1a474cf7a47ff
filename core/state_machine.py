"""
狀態機：集中管理所有狀態轉換

Game:        WAITING -> ACTIVE -> FINISHED（線性，不可倒退）
KillRequest: PENDING -> CONFIRMED | REJECTED（終態不可再變）

所有轉換都是「條件式更新」：
    UPDATE ... SET status = :new WHERE id = :id AND status = :expected

影響列數為 0 代表別的 transaction 已經先轉換了，這就是整個系統的並發控制點
"""
from datetime import datetime, timezone
import logging

from sqlalchemy.orm import Session

from models import EventLog, Game, GameStatus, KillRequest, KillRequestStatus
from core.exceptions import GameNotFound, InvalidState

logger = logging.getLogger(__name__)


class GameStateMachine:
    """Game 狀態機"""

    TRANSITIONS = {
        GameStatus.WAITING: GameStatus.ACTIVE,
        GameStatus.ACTIVE: GameStatus.FINISHED,
    }

    @classmethod
    def can_transition(cls, current: GameStatus, new_status: GameStatus) -> bool:
        return cls.TRANSITIONS.get(current) == new_status

    @classmethod
    def transition(cls, game_id: str, new_status: GameStatus, db: Session) -> Game:
        """
        轉換 Game 狀態（只 flush，不 commit，由呼叫者的 transaction 決定）

        參數：
            game_id: Game id
            new_status: 目標狀態
            db: SQLAlchemy Session

        返回：
            更新後的 Game

        異常：
            GameNotFound: Game 不存在
            InvalidState: 轉換不合法，或狀態已被其他請求改掉
        """
        game = db.query(Game).filter(Game.id == game_id).first()
        if not game:
            raise GameNotFound(game_id)

        current = game.status
        if not cls.can_transition(current, new_status):
            raise InvalidState(
                f"Cannot transition game {game_id} from {current.value} to {new_status.value}"
            )

        updated = db.query(Game).filter(
            Game.id == game_id,
            Game.status == current
        ).update({Game.status: new_status}, synchronize_session="fetch")

        if updated != 1:
            raise InvalidState(
                f"Game {game_id} is no longer {current.value}"
            )

        db.add(EventLog(
            game_id=game_id,
            event_type="GAME_STATE_CHANGED",
            data={"from": current.value, "to": new_status.value}
        ))
        db.flush()

        logger.info(f"Game {game_id}: {current.value} -> {new_status.value}")
        return game


class KillRequestStateMachine:
    """KillRequest 狀態機"""

    TERMINAL = (KillRequestStatus.CONFIRMED, KillRequestStatus.REJECTED)

    @classmethod
    def transition(cls, request_id: int, new_status: KillRequestStatus, db: Session) -> bool:
        """
        PENDING -> CONFIRMED / REJECTED

        返回：
            True: 這次呼叫完成了轉換
            False: 請求已經不是 PENDING（輸掉競態，呼叫者應視為 no-op）
        """
        if new_status not in cls.TERMINAL:
            raise InvalidState(f"Kill request cannot transition to {new_status.value}")

        updated = db.query(KillRequest).filter(
            KillRequest.id == request_id,
            KillRequest.status == KillRequestStatus.PENDING
        ).update(
            {
                KillRequest.status: new_status,
                KillRequest.resolved_at: datetime.now(timezone.utc).replace(tzinfo=None),
            },
            synchronize_session="fetch"
        )

        return updated == 1
