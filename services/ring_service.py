"""
環狀目標服務：建立和重新接線「誰追殺誰」的環

環的定義：
- 每個活著的玩家剛好有一個 target（另一個活著的玩家）
- 沿著 target 走 n 步會回到自己，而且途中經過所有活著的玩家
- 沒有自己指向自己，也沒有小環

建立：洗牌（Fisher-Yates）後 i -> (i+1) mod n
重新接線：killer 接手 victim 原本的 target，victim 離開環
"""
import logging
import random
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from models import Game, GameStatus, Player
from core.exceptions import GameNotFound, InsufficientPlayers, InvalidState
from services.task_service import draw_task, get_task_pool

logger = logging.getLogger(__name__)


def build_ring(player_ids: List[int], rng: Optional[random.Random] = None) -> Dict[int, int]:
    """
    把玩家排成一個環（純計算，不碰資料庫）

    邏輯：
    - random.shuffle 就是 Fisher-Yates，每一種排列機率相同
    - 排好後第 i 個玩家的 target 是第 (i+1) mod n 個

    參數：
        player_ids: 玩家 id 列表（至少 2 個）
        rng: 亂數產生器（測試時可以傳入固定 seed）

    返回：
        {player_id: target_id}

    範例：
        shuffle 後為 [3, 1, 2] -> {3: 1, 1: 2, 2: 3}
    """
    if len(player_ids) < 2:
        raise InsufficientPlayers(
            f"Need at least 2 players to build a ring, got {len(player_ids)}"
        )

    order = list(player_ids)
    (rng or random).shuffle(order)

    n = len(order)
    return {order[i]: order[(i + 1) % n] for i in range(n)}


def assign_targets(game_id: str, db: Session, rng: Optional[random.Random] = None) -> Dict[int, int]:
    """
    開始遊戲時為所有玩家分配 target 和任務

    前置條件：
    - Game 必須是 WAITING
    - 至少 2 位玩家

    流程：
    1. 建立環
    2. 每位玩家獨立從任務池抽一個任務（放回抽樣，任務池為空就不設定）
    3. flush，交由外層 transaction 一次 commit（不會只更新到一半的玩家）

    參數：
        game_id: Game id
        db: SQLAlchemy Session
        rng: 亂數產生器

    返回：
        {player_id: target_id}

    異常：
        GameNotFound: Game 不存在
        InvalidState: Game 不是 WAITING
        InsufficientPlayers: 玩家少於 2 人
    """
    game = db.query(Game).filter(Game.id == game_id).first()
    if not game:
        raise GameNotFound(game_id)
    if game.status != GameStatus.WAITING:
        raise InvalidState(f"Game {game_id} is {game.status.value}, expected waiting")

    players = db.query(Player).filter(Player.game_id == game_id).order_by(Player.id).all()
    if len(players) < 2:
        raise InsufficientPlayers(
            f"Need at least 2 players to start game, got {len(players)}"
        )

    ring = build_ring([p.id for p in players], rng)
    pool = get_task_pool(game_id, db)

    for player in players:
        player.target_id = ring[player.id]
        task = draw_task(pool, rng)
        player.current_task_id = task.id if task else None

    db.flush()

    logger.info(f"Assigned targets for game {game_id}: {len(players)} players, {len(pool)} tasks in pool")
    return ring


def rewire(killer: Player, victim: Player, db: Session) -> Optional[int]:
    """
    確認擊殺後重新接線

    - killer 的新 target = victim 原本的 target
    - victim: target 清空、is_alive = False
    - 如果 victim 原本的 target 就是 killer（只剩兩人），killer 的 target 變成 None（獲勝）

    返回：
        killer 的新 target id（None 代表環已經收斂成一個人）
    """
    new_target_id = victim.target_id
    if new_target_id == killer.id:
        new_target_id = None

    killer.target_id = new_target_id
    victim.target_id = None
    victim.is_alive = False

    db.flush()
    return new_target_id


def verify_ring(game_id: str, db: Session) -> bool:
    """
    檢查活著的玩家是否剛好形成一個環

    - 0 或 1 位活著的玩家：所有 target 都必須是 None
    - 2 位以上：從任一位出發走 n 步要剛好經過每個人一次再回到起點
    """
    alive = db.query(Player).filter(
        Player.game_id == game_id,
        Player.is_alive == True
    ).all()

    if len(alive) <= 1:
        return all(p.target_id is None for p in alive)

    targets = {p.id: p.target_id for p in alive}
    start = alive[0].id
    seen = {start}
    current = start

    for _ in range(len(alive) - 1):
        current = targets.get(current)
        if current is None or current not in targets or current in seen:
            return False
        seen.add(current)

    return targets.get(current) == start
