"""
API request / response schemas（Pydantic）
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from models import GameStatus, KillRequestStatus


# ============ Game ============

class GameCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    tasks: List[str] = Field(default_factory=list)


class GameCreateResponse(BaseModel):
    game_id: str
    name: str
    admin_token: str
    join_url: str


class GameInfoResponse(BaseModel):
    game_id: str
    name: str
    status: GameStatus
    player_count: int


# ============ Player ============

class PlayerJoin(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=1, max_length=32)


class PlayerJoinResponse(BaseModel):
    player_id: int
    game_id: str
    token: str


class PlayerSummary(BaseModel):
    player_id: int
    name: str
    phone: str
    is_alive: bool
    kills: int


class LeaderboardEntry(BaseModel):
    rank: int
    player_id: int
    name: str
    kills: int
    is_alive: bool


# ============ Kill Request ============

class KillRequestResponse(BaseModel):
    kill_request_id: int
    killer_id: int
    killer_name: str
    victim_id: int
    victim_name: str
    status: KillRequestStatus


class KillSubmitResponse(BaseModel):
    kill_request: KillRequestResponse
    created_new: bool


class ResolutionResponse(BaseModel):
    """
    結算結果

    status：
    - confirmed：這次呼叫完成了擊殺
    - rejected：這次呼叫駁回了請求
    - stale：請求已經過期（玩家出局或 target 已改變），這次呼叫把它駁回，reason 說明原因
    - already_resolved：請求早已結算或駁回，這次呼叫沒有任何效果
    """
    status: str
    kill_request_id: int
    game_status: GameStatus
    reason: Optional[str] = None


# ============ Views ============

class AdminViewResponse(BaseModel):
    game: GameInfoResponse
    join_url: str
    players: List[PlayerSummary]
    tasks: List[str]
    pending_kill_requests: List[KillRequestResponse]
    leaderboard: List[LeaderboardEntry]


class PlayerViewResponse(BaseModel):
    game_id: str
    game_name: str
    game_status: GameStatus
    player_id: int
    name: str
    is_alive: bool
    kills: int
    target_name: Optional[str] = None
    task: Optional[str] = None
    pending_kill_against: Optional[KillRequestResponse] = None
    players_remaining: int
    winner_name: Optional[str] = None
    is_winner: bool = False


class ActionResponse(BaseModel):
    status: str


# ============ SMS 測試 ============

class SmsTestRequest(BaseModel):
    phone: str = Field(..., min_length=1, max_length=32)
    message: Optional[str] = Field(default=None, max_length=480)


class SmsTestResponse(BaseModel):
    """
    SMS 設定檢查結果

    sms_enabled 為 False 時訊息只會寫入 log（delivery_status = skipped）
    """
    delivery_status: str
    recipient: str
    sms_enabled: bool
    from_number: Optional[str] = None
