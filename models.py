"""
資料模型（SQLAlchemy ORM）

Ring 的表示方式：
- players.target_id 是指向同一張表的外鍵（邏輯上的環狀串列）
- 不建立 ORM relationship，避免 unit of work 在環狀更新時產生循環依賴
- 所有環的讀寫都透過 id 進行
"""
import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import relationship

from database import Base


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class GameStatus(str, enum.Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    FINISHED = "finished"


class KillRequestStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class Game(Base):
    __tablename__ = "games"

    id = Column(String(32), primary_key=True)
    name = Column(String(200), nullable=False)
    status = Column(
        Enum(GameStatus, values_callable=_enum_values, name="game_status"),
        nullable=False,
        default=GameStatus.WAITING,
    )
    admin_token = Column(String(64), nullable=False, unique=True, index=True)
    created_at = Column(DateTime, server_default=func.now())

    players = relationship("Player", back_populates="game", order_by="Player.id")
    tasks = relationship("Task", back_populates="game", order_by="Task.id")


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_id = Column(String(32), ForeignKey("games.id"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    game = relationship("Game", back_populates="tasks")


class Player(Base):
    __tablename__ = "players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_id = Column(String(32), ForeignKey("games.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(32), nullable=False)
    token = Column(String(64), nullable=False, unique=True, index=True)
    target_id = Column(Integer, ForeignKey("players.id"), nullable=True)
    is_alive = Column(Boolean, nullable=False, default=True)
    kills = Column(Integer, nullable=False, default=0)
    current_task_id = Column(Integer, ForeignKey("tasks.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    game = relationship("Game", back_populates="players")
    current_task = relationship("Task")


class KillRequest(Base):
    __tablename__ = "kill_requests"
    __table_args__ = (
        # 同一組 (killer, victim) 同時只能有一筆 pending
        Index(
            "uq_kill_requests_pending_pair",
            "killer_id",
            "victim_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    killer_id = Column(Integer, ForeignKey("players.id"), nullable=False, index=True)
    victim_id = Column(Integer, ForeignKey("players.id"), nullable=False, index=True)
    status = Column(
        Enum(KillRequestStatus, values_callable=_enum_values, name="kill_request_status"),
        nullable=False,
        default=KillRequestStatus.PENDING,
    )
    created_at = Column(DateTime, server_default=func.now())
    resolved_at = Column(DateTime, nullable=True)

    killer = relationship("Player", foreign_keys=[killer_id])
    victim = relationship("Player", foreign_keys=[victim_id])


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_id = Column(String(32), ForeignKey("games.id"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, server_default=func.now())
