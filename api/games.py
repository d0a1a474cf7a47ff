"""
Game API Endpoints

職責：
1. 建立遊戲（含任務池）
2. 查詢遊戲資訊（加入頁面用）
3. 玩家加入遊戲
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
import logging

from database import get_db, get_settings
from models import Game, GameStatus, KillRequest, Player
from schemas import (
    GameCreate,
    GameCreateResponse,
    GameInfoResponse,
    KillRequestResponse,
    PlayerJoin,
    PlayerJoinResponse,
    ResolutionResponse,
)
from core.game_manager import GameManager
from core.kill_request_manager import EliminationOutcome, StaleOutcome
from core.exceptions import GameNotFound, InvalidState

router = APIRouter(prefix="/api/games", tags=["games"])
logger = logging.getLogger(__name__)


def build_join_url(request: Request, game_id: str) -> str:
    """APP_URL 有設定就用它，否則用這次請求的 base URL"""
    base_url = get_settings().app_url or str(request.base_url)
    return f"{base_url.rstrip('/')}/join/{game_id}"


def to_game_info(game: Game, db: Session) -> GameInfoResponse:
    player_count = db.query(Player).filter(Player.game_id == game.id).count()
    return GameInfoResponse(
        game_id=game.id,
        name=game.name,
        status=game.status,
        player_count=player_count,
    )


def to_kill_request_response(kill_request: KillRequest) -> KillRequestResponse:
    return KillRequestResponse(
        kill_request_id=kill_request.id,
        killer_id=kill_request.killer_id,
        killer_name=kill_request.killer.name,
        victim_id=kill_request.victim_id,
        victim_name=kill_request.victim.name,
        status=kill_request.status,
    )


def to_resolution_response(outcome, kill_request_id: int, game_status: GameStatus) -> ResolutionResponse:
    """把 resolve 的結果轉成 API 回應（confirmed / stale / already_resolved）"""
    if isinstance(outcome, EliminationOutcome):
        return ResolutionResponse(status="confirmed", kill_request_id=kill_request_id, game_status=game_status)
    if isinstance(outcome, StaleOutcome):
        return ResolutionResponse(
            status="stale",
            kill_request_id=kill_request_id,
            game_status=game_status,
            reason=outcome.reason,
        )
    return ResolutionResponse(status="already_resolved", kill_request_id=kill_request_id, game_status=game_status)


@router.post("", response_model=GameCreateResponse, status_code=201)
def create_game(game_data: GameCreate, request: Request, db: Session = Depends(get_db)):
    """
    建立新遊戲

    返回的 admin_token 是唯一能回到管理頁的憑證
    """
    try:
        game = GameManager.create_game(db, game_data.name, game_data.tasks)

        return GameCreateResponse(
            game_id=game.id,
            name=game.name,
            admin_token=game.admin_token,
            join_url=build_join_url(request, game.id),
        )

    except Exception as e:
        logger.error(f"Failed to create game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{game_id}", response_model=GameInfoResponse)
def get_game(game_id: str, db: Session = Depends(get_db)):
    """取得遊戲資訊（加入頁面用，不含任何 token）"""
    try:
        game = GameManager.get_game_by_id(db, game_id)
        return to_game_info(game, db)

    except GameNotFound:
        raise HTTPException(status_code=404, detail="Game not found")
    except Exception as e:
        logger.error(f"Failed to get game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{game_id}/join", response_model=PlayerJoinResponse, status_code=201)
def join_game(game_id: str, player_data: PlayerJoin, db: Session = Depends(get_db)):
    """
    加入遊戲（玩家 endpoint）

    前置條件：
    - 遊戲必須存在
    - 遊戲狀態必須是 WAITING（尚未開始）

    返回的 token 是玩家頁面的唯一憑證
    """
    try:
        player = GameManager.add_player(db, game_id, player_data.name, player_data.phone)

        return PlayerJoinResponse(
            player_id=player.id,
            game_id=game_id,
            token=player.token,
        )

    except GameNotFound:
        raise HTTPException(status_code=404, detail="Game not found")
    except InvalidState as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to join game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
