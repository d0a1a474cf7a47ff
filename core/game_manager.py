"""
Game Manager：管理 Game 的完整生命週期

職責：
1. 建立 Game（含任務池）
2. 玩家加入（只在 WAITING）
3. 開始遊戲（建立環 + 狀態轉換 + 開局通知）
4. 勝負判定（只剩一人 -> FINISHED）
5. 查詢 Game / Player

原則：
- 所有狀態變更經過 GameStateMachine
- 先檢查資料是否符合要求，再執行寫入
- 通知只放進 outbox，commit 之後才由呼叫者 dispatch
"""
from dataclasses import dataclass, field
from typing import List, Optional
import logging
import random
import secrets

from sqlalchemy.orm import Session

from models import Game, Player, GameStatus, EventLog
from core.state_machine import GameStateMachine
from core.locks import with_game_lock
from core.exceptions import (
    GameNotFound,
    PlayerNotFound,
    NotAuthorized,
    InvalidState,
    GameNotAcceptingPlayers,
)
from services.ring_service import assign_targets
from services.task_service import add_tasks, get_task_pool
from services.token_service import (
    generate_token,
    generate_unique_game_id,
    generate_unique_player_token,
)
from services.notification_service import EventKind, Notification
from database import transactional

logger = logging.getLogger(__name__)


@dataclass
class StartOutcome:
    game: Game
    notifications: List[Notification] = field(default_factory=list)


def admin_token_matches(game: Game, admin_token: Optional[str]) -> bool:
    return bool(admin_token) and secrets.compare_digest(game.admin_token, admin_token)


class GameManager:
    """Game 生命週期管理器"""

    @staticmethod
    @transactional
    def create_game(db: Session, name: str, tasks: Optional[List[str]] = None) -> Game:
        """
        建立新遊戲（狀態 WAITING）

        流程：
        1. 生成唯一的 Game id 和 Admin token
        2. 建立 Game
        3. 建立任務池
        4. 記錄事件

        參數：
            db: SQLAlchemy Session
            name: 遊戲名稱
            tasks: 任務描述列表（可為空）

        返回：
            Game（admin_token 是唯一能回到管理頁的憑證）
        """
        game = Game(
            id=generate_unique_game_id(db),
            name=name,
            status=GameStatus.WAITING,
            admin_token=generate_token(),
        )
        db.add(game)
        db.flush()

        created_tasks = add_tasks(game.id, tasks or [], db)

        db.add(EventLog(
            game_id=game.id,
            event_type="GAME_CREATED",
            data={"name": name, "task_count": len(created_tasks)}
        ))

        logger.info(f"Created game {game.id} ({name}) with {len(created_tasks)} tasks")
        return game

    @staticmethod
    @transactional
    def add_player(db: Session, game_id: str, name: str, phone: str) -> Player:
        """
        玩家加入遊戲

        前置條件：
        - Game 必須存在
        - Game 狀態必須是 WAITING

        異常：
            GameNotFound: Game 不存在
            GameNotAcceptingPlayers: 遊戲已經開始
        """
        game = with_game_lock(game_id, db).first()
        if not game:
            raise GameNotFound(game_id)

        if game.status != GameStatus.WAITING:
            raise GameNotAcceptingPlayers(
                f"Game {game_id} is not accepting players (status: {game.status.value})"
            )

        player = Player(
            game_id=game_id,
            name=name,
            phone=phone,
            token=generate_unique_player_token(db),
            is_alive=True,
            kills=0,
        )
        db.add(player)
        db.flush()

        db.add(EventLog(
            game_id=game_id,
            event_type="PLAYER_JOINED",
            data={"player_id": player.id, "name": name}
        ))

        logger.info(f"Player {player.id} ({name}) joined game {game_id}")
        return player

    @staticmethod
    @transactional
    def start_game(
        db: Session,
        game_id: str,
        admin_token: str,
        rng: Optional[random.Random] = None
    ) -> StartOutcome:
        """
        開始遊戲（狀態轉換 WAITING -> ACTIVE）

        前置條件：
        1. Admin token 必須正確
        2. Game 狀態必須是 WAITING
        3. 玩家數量 >= 2

        流程：
        1. 驗證前置條件
        2. 建立環並分配任務（assign_targets）
        3. 透過 StateMachine 轉換狀態
        4. 產生每位玩家的開局通知

        target、任務和狀態在同一個 transaction 內 commit，
        任何一步失敗都會整個 rollback

        異常：
            GameNotFound: Game 不存在
            NotAuthorized: Admin token 錯誤
            InvalidState: Game 不是 WAITING
            InsufficientPlayers: 玩家少於 2 人
        """
        # 1. 取得並鎖定 Game
        game = with_game_lock(game_id, db).first()
        if not game:
            raise GameNotFound(game_id)

        if not admin_token_matches(game, admin_token):
            raise NotAuthorized(f"Invalid admin token for game {game_id}")

        if game.status != GameStatus.WAITING:
            raise InvalidState(f"Cannot start game {game_id} in status {game.status.value}")

        # 2. 建立環（會檢查玩家數量）
        ring = assign_targets(game_id, db, rng)

        # 3. 狀態轉換（會自動記錄 GAME_STATE_CHANGED 事件）
        game = GameStateMachine.transition(game_id, GameStatus.ACTIVE, db)

        db.add(EventLog(
            game_id=game_id,
            event_type="GAME_STARTED",
            data={"player_count": len(ring)}
        ))

        # 4. 開局通知
        players = db.query(Player).filter(Player.game_id == game_id).order_by(Player.id).all()
        names = {p.id: p.name for p in players}
        task_descriptions = {t.id: t.description for t in get_task_pool(game_id, db)}
        notifications = [
            Notification(
                recipient=player.phone,
                event_kind=EventKind.GAME_STARTED,
                payload={
                    "player_token": player.token,
                    "target_name": names[player.target_id],
                    "task": task_descriptions.get(player.current_task_id),
                },
            )
            for player in players
        ]

        logger.info(f"Started game {game_id} with {len(players)} players")
        return StartOutcome(game=game, notifications=notifications)

    @staticmethod
    def check_win(db: Session, game_id: str) -> bool:
        """
        勝負判定：只剩一位活著的玩家 -> FINISHED

        只在結算擊殺的 transaction 內呼叫（不自己 commit）

        返回：
            True 如果遊戲因此結束

        異常：
            InvalidState: 沒有任何活著的玩家（環已經損壞）
        """
        alive = db.query(Player).filter(
            Player.game_id == game_id,
            Player.is_alive == True
        ).count()

        if alive == 0:
            raise InvalidState(f"Game {game_id} has no living players")

        if alive != 1:
            return False

        GameStateMachine.transition(game_id, GameStatus.FINISHED, db)
        db.add(EventLog(
            game_id=game_id,
            event_type="GAME_FINISHED",
            data={}
        ))
        logger.info(f"Game {game_id} finished")
        return True

    @staticmethod
    def get_game_by_id(db: Session, game_id: str) -> Game:
        game = db.query(Game).filter(Game.id == game_id).first()
        if not game:
            raise GameNotFound(game_id)
        return game

    @staticmethod
    def get_game_by_admin_token(db: Session, admin_token: str) -> Game:
        """
        透過 Admin token 取得 Game

        異常：
            GameNotFound: token 不對應任何遊戲
        """
        game = db.query(Game).filter(Game.admin_token == admin_token).first()
        if not game:
            raise GameNotFound("for admin token")
        return game

    @staticmethod
    def get_player_by_token(db: Session, token: str) -> Player:
        player = db.query(Player).filter(Player.token == token).first()
        if not player:
            raise PlayerNotFound("for token")
        return player

    @staticmethod
    def get_player_by_id(db: Session, player_id: int) -> Player:
        player = db.query(Player).filter(Player.id == player_id).first()
        if not player:
            raise PlayerNotFound(player_id)
        return player
