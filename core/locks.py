"""
並發控制工具

提供 Database-level 的鎖定機制，防止競態條件（Race Condition）

兩種手段：
1. SELECT ... FOR UPDATE（悲觀鎖）：鎖住 Game 列，序列化開始遊戲與加入遊戲
2. 條件式更新（compare-and-transition）：見 core/state_machine.py，
   擊殺請求的確認 / 駁回只靠這個保證「最多只會結算一次」

注意：SQLite 會忽略 FOR UPDATE，但 SQLite 本身同一時間只允許一個寫入者，
條件式更新仍然成立
"""
from sqlalchemy.orm import Session, Query

from models import Game, Player


def with_game_lock(game_id: str, db: Session) -> Query:
    """
    鎖定一個 Game（行級鎖）

    使用場景：
    - 開始遊戲（建立整個環）
    - 玩家加入（避免在開始遊戲的同時插入新玩家）

    範例：
        game = with_game_lock(game_id, db).first()
        if not game:
            raise GameNotFound(game_id)

    參數：
        game_id: Game 的 id
        db: SQLAlchemy Session

    返回：
        Query object（需要呼叫 .first() 或 .one() 來取得結果）

    注意：
        - nowait=False 表示如果鎖被佔用，會等待
        - 必須在 transaction 內使用（確保有 commit 或 rollback）
    """
    return db.query(Game).filter(
        Game.id == game_id
    ).populate_existing().with_for_update(nowait=False)


def lock_players(player_ids: list[int], db: Session) -> Query:
    """
    鎖定多個 Players（用於結算擊殺：killer 和 victim 一起鎖）

    依照 id 排序取鎖，避免兩個 transaction 以相反順序取鎖造成 deadlock
    populate_existing：session 內已經載入的 Player 會用剛讀到的值覆蓋

    參數：
        player_ids: Player id 列表
        db: SQLAlchemy Session

    返回：
        Query object（呼叫 .all() 取得所有結果）
    """
    return db.query(Player).filter(
        Player.id.in_(player_ids)
    ).order_by(Player.id).populate_existing().with_for_update(nowait=False)
