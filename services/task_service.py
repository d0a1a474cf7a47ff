"""
任務服務：管理遊戲的任務池，並從池中抽任務

需求：任務池是整場遊戲共用的，玩家只是「引用」任務，不擁有它。
抽任務是放回抽樣（同一個任務可以同時被多個玩家引用）。
"""
import random
from typing import List, Optional

from sqlalchemy.orm import Session

from models import Task


def parse_task_lines(raw: Optional[str]) -> List[str]:
    """
    把多行文字拆成任務描述（一行一個，去掉空白行）

    範例：
        "Get a high-five\\n\\n  Take a selfie  " -> ["Get a high-five", "Take a selfie"]
    """
    if not raw:
        return []
    return [line.strip() for line in raw.splitlines() if line.strip()]


def add_tasks(game_id: str, descriptions: List[str], db: Session) -> List[Task]:
    """
    把任務加入遊戲的任務池（空白描述會被略過）

    只 flush，交由外層 transaction 處理 commit
    """
    tasks = []
    for description in descriptions:
        description = description.strip()
        if not description:
            continue
        task = Task(game_id=game_id, description=description)
        db.add(task)
        tasks.append(task)

    db.flush()
    return tasks


def get_task_pool(game_id: str, db: Session) -> List[Task]:
    return db.query(Task).filter(Task.game_id == game_id).order_by(Task.id).all()


def draw_task(pool: List[Task], rng: Optional[random.Random] = None) -> Optional[Task]:
    """
    從任務池中均勻抽一個任務（放回抽樣）

    參數：
        pool: 任務列表
        rng: 亂數產生器（測試時可以傳入固定 seed）

    返回：
        Task，任務池為空時返回 None
    """
    if not pool:
        return None
    rng = rng or random
    return rng.choice(pool)
