"""
Kill Request Manager：擊殺請求的提交、確認、駁回與結算

狀態：PENDING -> CONFIRMED（終態）、PENDING -> REJECTED（終態）

並發設計：
- submit 冪等：同一組 (killer, victim) 已有 PENDING 就直接返回既有的請求，
  資料庫的 partial unique index 擋住同時送出的重複請求
- resolve 先依 id 順序鎖住 killer 和 victim，再做條件式更新 PENDING -> CONFIRMED，
  影響 0 列代表別人已經先結算（或已被駁回），這次呼叫就是 no-op
- 取鎖順序固定是「玩家 -> 請求」：任何會動到某個請求的 resolve，
  都會先在該請求的 killer / victim 上排隊，不會和駁回其他請求的 transaction 互相等待
- 狀態、重新接線、kills +1、新任務、勝負判定都在同一個 transaction 內

消除特殊情況：
- 受害者確認和管理員核准是同一條路徑（resolve），誰先到誰贏，輸家不是錯誤
"""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union
import logging
import random

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import EventLog, Game, GameStatus, KillRequest, KillRequestStatus, Player
from core.game_manager import GameManager, admin_token_matches
from core.state_machine import KillRequestStateMachine
from core.locks import lock_players
from core.exceptions import (
    GameNotActive,
    KillRequestNotFound,
    NotAuthorized,
    PlayerEliminated,
)
from services.ring_service import rewire, verify_ring
from services.task_service import draw_task, get_task_pool
from services.notification_service import EventKind, Notification
from database import transactional

logger = logging.getLogger(__name__)


@dataclass
class SubmitOutcome:
    kill_request: KillRequest
    created_new: bool
    notifications: List[Notification] = field(default_factory=list)


@dataclass
class EliminationOutcome:
    kill_request: KillRequest
    killer: Player
    victim: Player
    new_target: Optional[Player]
    new_task: Optional[str]
    game_finished: bool
    notifications: List[Notification] = field(default_factory=list)


@dataclass
class StaleOutcome:
    """這次呼叫把過期的請求改成 REJECTED（沒有任何玩家受影響）"""
    kill_request: KillRequest
    reason: str


Resolution = Union[EliminationOutcome, StaleOutcome, None]


class KillRequestManager:
    """擊殺請求管理器"""

    @staticmethod
    def submit(db: Session, killer_id: int, victim_id: int) -> SubmitOutcome:
        """
        提交擊殺請求（冪等）

        前置條件（依序檢查）：
        1. Game 必須是 ACTIVE（GameNotActive）
        2. killer 必須活著（PlayerEliminated）
        3. killer 目前的 target 必須是 victim（NotAuthorized）

        流程：
        1. 已有同組 PENDING -> 返回既有請求（created_new=False）
        2. 否則建立新請求
        3. 兩個請求同時建立時，輸的一方撞到 unique index，重新讀取贏家的請求

        每次提交都會通知 victim（重送也會再提醒一次）

        返回：
            SubmitOutcome
        """
        kill_request, created_new = KillRequestManager._submit(db, killer_id, victim_id)

        killer = GameManager.get_player_by_id(db, killer_id)
        victim = GameManager.get_player_by_id(db, victim_id)
        notifications = [
            Notification(
                recipient=victim.phone,
                event_kind=EventKind.KILL_CLAIMED,
                payload={"killer_name": killer.name, "player_token": victim.token},
            )
        ]
        return SubmitOutcome(
            kill_request=kill_request,
            created_new=created_new,
            notifications=notifications,
        )

    @staticmethod
    @transactional
    def _submit(db: Session, killer_id: int, victim_id: int) -> Tuple[KillRequest, bool]:
        killer = GameManager.get_player_by_id(db, killer_id)
        game = db.query(Game).filter(Game.id == killer.game_id).first()

        if game.status != GameStatus.ACTIVE:
            raise GameNotActive(f"Game {game.id} is {game.status.value}")

        if not killer.is_alive:
            raise PlayerEliminated(f"Player {killer_id} has been eliminated")

        if killer.target_id is None or killer.target_id != victim_id:
            raise NotAuthorized(f"Player {victim_id} is not the target of player {killer_id}")

        existing = KillRequestManager._find_pending(db, killer_id, victim_id)
        if existing:
            logger.info(f"Kill request {existing.id} reused for {killer_id} -> {victim_id}")
            return existing, False

        kill_request = KillRequest(
            killer_id=killer_id,
            victim_id=victim_id,
            status=KillRequestStatus.PENDING,
        )
        db.add(kill_request)
        try:
            db.flush()
        except IntegrityError:
            # 同時送出的另一個請求先寫入了，改用它的那一筆
            db.rollback()
            existing = KillRequestManager._find_pending(db, killer_id, victim_id)
            if not existing:
                raise
            logger.info(
                f"Concurrent kill claim {killer_id} -> {victim_id} collapsed into request {existing.id}"
            )
            return existing, False

        db.add(EventLog(
            game_id=killer.game_id,
            event_type="KILL_CLAIMED",
            data={"kill_request_id": kill_request.id, "killer_id": killer_id, "victim_id": victim_id}
        ))

        logger.info(f"Kill request {kill_request.id} created: {killer_id} -> {victim_id}")
        return kill_request, True

    @staticmethod
    def confirm_by_victim(
        db: Session,
        request_id: int,
        player_token: str,
        rng: Optional[random.Random] = None
    ) -> Resolution:
        """
        受害者確認自己被殺

        異常：
            KillRequestNotFound: 請求不存在
            PlayerNotFound: token 不對應任何玩家
            NotAuthorized: 呼叫者不是這個請求的 victim
            PlayerEliminated: 呼叫者已經出局，而請求仍是 PENDING

        返回：
            EliminationOutcome；過期的請求返回 StaleOutcome；請求已經被結算過則返回 None

        注意：
            先讀玩家再讀請求。管理員同時核准時，讀到 victim 已出局就代表
            核准已經 commit，之後讀到的請求一定不是 PENDING，這次呼叫是 no-op
        """
        player = GameManager.get_player_by_token(db, player_token)
        kill_request = KillRequestManager.get_kill_request(db, request_id)

        if kill_request.victim_id != player.id:
            raise NotAuthorized(f"Player {player.id} is not the victim of kill request {request_id}")

        if not player.is_alive and kill_request.status == KillRequestStatus.PENDING:
            raise PlayerEliminated(f"Player {player.id} has been eliminated")

        return KillRequestManager.resolve(db, request_id, rng)

    @staticmethod
    def confirm_by_admin(
        db: Session,
        request_id: int,
        admin_token: str,
        rng: Optional[random.Random] = None
    ) -> Resolution:
        """
        管理員核准擊殺（受害者不回應或有爭議時的覆寫路徑）

        異常：
            KillRequestNotFound: 請求不存在
            NotAuthorized: Admin token 不屬於這個請求所在的遊戲

        返回：
            EliminationOutcome；過期的請求返回 StaleOutcome；請求已經被結算過則返回 None
        """
        kill_request = KillRequestManager.get_kill_request(db, request_id)
        KillRequestManager._require_admin(db, kill_request, admin_token)

        return KillRequestManager.resolve(db, request_id, rng)

    @staticmethod
    @transactional
    def reject(db: Session, request_id: int, admin_token: str) -> Optional[KillRequest]:
        """
        管理員駁回擊殺請求（不影響任何玩家）

        返回：
            被駁回的 KillRequest，請求已經不是 PENDING 則返回 None（no-op）
        """
        kill_request = KillRequestManager.get_kill_request(db, request_id)
        game = KillRequestManager._require_admin(db, kill_request, admin_token)

        if not KillRequestStateMachine.transition(request_id, KillRequestStatus.REJECTED, db):
            logger.info(f"Kill request {request_id} already {kill_request.status.value}, reject ignored")
            return None

        db.add(EventLog(
            game_id=game.id,
            event_type="KILL_REJECTED",
            data={"kill_request_id": request_id}
        ))

        logger.info(f"Kill request {request_id} rejected by admin")
        return kill_request

    @staticmethod
    @transactional
    def resolve(
        db: Session,
        request_id: int,
        rng: Optional[random.Random] = None
    ) -> Resolution:
        """
        結算擊殺（兩條確認路徑共用）

        流程：
        1. 鎖定 killer 和 victim（依 id 排序）
        2. 條件式更新 PENDING -> CONFIRMED，失敗代表已被結算，返回 None
        3. 重新讀取 killer 和 victim；如果請求已經過期
           （killer 或 victim 已死、killer 的 target 已不是 victim），
           改成 REJECTED 並返回 StaleOutcome，避免弄壞環
        4. 重新接線、killer kills +1、killer 抽新任務
        5. 駁回其他所有牽涉到 victim 的 PENDING 請求
        6. 勝負判定
        7. 產生通知：先通知 victim 出局，再通知 killer 新 target，
           或通知 killer 獲勝並通知其他所有玩家遊戲結束

        返回：
            EliminationOutcome: 這次呼叫完成了擊殺
            StaleOutcome: 這次呼叫把過期的請求駁回
            None: 請求早已不是 PENDING（no-op）
        """
        kill_request = KillRequestManager.get_kill_request(db, request_id)
        player_ids = [kill_request.killer_id, kill_request.victim_id]

        # 1. 先鎖玩家，再動請求
        lock_players(player_ids, db).all()

        # 2. compare-and-transition
        if not KillRequestStateMachine.transition(request_id, KillRequestStatus.CONFIRMED, db):
            logger.info(f"Kill request {request_id} is no longer pending, resolve is a no-op")
            return None

        # 3. 過期的請求
        # SQLite 會忽略 FOR UPDATE，第 1 步讀到的可能是別人 commit 前的值；
        # 條件式更新之後本 transaction 已持有寫入鎖，這時重新讀取才是最新狀態
        players = {p.id: p for p in lock_players(player_ids, db).all()}
        killer = players[kill_request.killer_id]
        victim = players[kill_request.victim_id]
        game_id = killer.game_id

        stale_reason = KillRequestManager._stale_reason(killer, victim)
        if stale_reason:
            db.query(KillRequest).filter(KillRequest.id == request_id).update(
                {KillRequest.status: KillRequestStatus.REJECTED},
                synchronize_session="fetch"
            )
            db.add(EventLog(
                game_id=game_id,
                event_type="KILL_REJECTED",
                data={"kill_request_id": request_id, "reason": stale_reason}
            ))
            logger.warning(
                f"Kill request {request_id} is stale ({killer.id} -> {victim.id}: {stale_reason}), marked rejected"
            )
            return StaleOutcome(kill_request=kill_request, reason=stale_reason)

        # 4. 重新接線 + 計分 + 新任務
        new_target_id = rewire(killer, victim, db)
        killer.kills += 1

        task = draw_task(get_task_pool(game_id, db), rng)
        killer.current_task_id = task.id if task else None
        victim.current_task_id = None
        db.flush()

        # 5. 其他牽涉到 victim 的請求全部失效
        superseded = db.query(KillRequest).filter(
            KillRequest.id != request_id,
            KillRequest.status == KillRequestStatus.PENDING,
            (KillRequest.victim_id == victim.id) | (KillRequest.killer_id == victim.id)
        ).all()
        for other in superseded:
            KillRequestStateMachine.transition(other.id, KillRequestStatus.REJECTED, db)
            logger.info(f"Kill request {other.id} superseded by elimination of player {victim.id}")

        db.add(EventLog(
            game_id=game_id,
            event_type="KILL_CONFIRMED",
            data={
                "kill_request_id": request_id,
                "killer_id": killer.id,
                "victim_id": victim.id,
                "new_target_id": new_target_id,
            }
        ))

        # 6. 勝負判定
        game_finished = GameManager.check_win(db, game_id)
        if not game_finished and logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Ring intact for game {game_id}: {verify_ring(game_id, db)}")

        # 7. 通知
        new_target = GameManager.get_player_by_id(db, new_target_id) if new_target_id else None
        new_task = task.description if task else None

        notifications = [
            Notification(
                recipient=victim.phone,
                event_kind=EventKind.ELIMINATED,
                payload={"killer_name": killer.name},
            )
        ]

        if new_target:
            notifications.append(Notification(
                recipient=killer.phone,
                event_kind=EventKind.NEW_TARGET,
                payload={
                    "player_token": killer.token,
                    "target_name": new_target.name,
                    "task": new_task,
                },
            ))
        else:
            notifications.append(Notification(
                recipient=killer.phone,
                event_kind=EventKind.WINNER,
                payload={"player_token": killer.token},
            ))
            others = db.query(Player).filter(
                Player.game_id == game_id,
                Player.id != killer.id
            ).order_by(Player.id).all()
            notifications.extend(
                Notification(
                    recipient=other.phone,
                    event_kind=EventKind.GAME_OVER,
                    payload={"winner_name": killer.name},
                )
                for other in others
            )

        logger.info(
            f"Kill request {request_id} confirmed: {killer.id} eliminated {victim.id} "
            f"(game {game_id}, finished={game_finished})"
        )
        return EliminationOutcome(
            kill_request=kill_request,
            killer=killer,
            victim=victim,
            new_target=new_target,
            new_task=new_task,
            game_finished=game_finished,
            notifications=notifications,
        )

    @staticmethod
    def get_kill_request(db: Session, request_id: int) -> KillRequest:
        kill_request = db.query(KillRequest).filter(KillRequest.id == request_id).first()
        if not kill_request:
            raise KillRequestNotFound(request_id)
        return kill_request

    @staticmethod
    def get_pending_for_game(db: Session, game_id: str) -> List[KillRequest]:
        """取得遊戲內所有 PENDING 的請求（新的在前）"""
        return (
            db.query(KillRequest)
            .join(Player, KillRequest.killer_id == Player.id)
            .filter(
                Player.game_id == game_id,
                KillRequest.status == KillRequestStatus.PENDING
            )
            .order_by(KillRequest.created_at.desc(), KillRequest.id.desc())
            .all()
        )

    @staticmethod
    def get_pending_against(db: Session, player_id: int) -> Optional[KillRequest]:
        """取得針對某位玩家的 PENDING 請求（給受害者確認用）"""
        return (
            db.query(KillRequest)
            .filter(
                KillRequest.victim_id == player_id,
                KillRequest.status == KillRequestStatus.PENDING
            )
            .order_by(KillRequest.id)
            .first()
        )

    @staticmethod
    def _stale_reason(killer: Player, victim: Player) -> Optional[str]:
        if not killer.is_alive:
            return "killer_eliminated"
        if not victim.is_alive:
            return "victim_eliminated"
        if killer.target_id != victim.id:
            return "target_changed"
        return None

    @staticmethod
    def _find_pending(db: Session, killer_id: int, victim_id: int) -> Optional[KillRequest]:
        return db.query(KillRequest).filter(
            KillRequest.killer_id == killer_id,
            KillRequest.victim_id == victim_id,
            KillRequest.status == KillRequestStatus.PENDING
        ).first()

    @staticmethod
    def _require_admin(db: Session, kill_request: KillRequest, admin_token: str) -> Game:
        killer = GameManager.get_player_by_id(db, kill_request.killer_id)
        game = GameManager.get_game_by_id(db, killer.game_id)
        if not admin_token_matches(game, admin_token):
            raise NotAuthorized(f"Invalid admin token for kill request {kill_request.id}")
        return game
