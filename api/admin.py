"""
Admin API Endpoints

所有路徑都以 admin token 識別遊戲（token 就是管理員的唯一憑證）

職責：
1. 管理頁資訊（玩家、任務、待處理的擊殺請求、排行榜）
2. 開始遊戲
3. 核准 / 駁回擊殺請求
4. 測試 SMS 設定（送一則測試訊息並回報送達狀態）
"""
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session
import logging

from database import get_db
from models import Player
from schemas import (
    ActionResponse,
    AdminViewResponse,
    LeaderboardEntry,
    PlayerSummary,
    ResolutionResponse,
    SmsTestRequest,
    SmsTestResponse,
)
from core.game_manager import GameManager
from core.kill_request_manager import EliminationOutcome, KillRequestManager
from core.exceptions import (
    GameNotFound,
    InsufficientPlayers,
    InvalidState,
    NotAuthorized,
    NotFound,
)
from services.leaderboard_service import get_leaderboard
from services.notification_service import (
    ClickSendGateway,
    EventKind,
    NotificationGateway,
    dispatch,
    get_notification_gateway,
    normalize_phone,
)
from services.task_service import get_task_pool
from api.games import build_join_url, to_game_info, to_kill_request_response, to_resolution_response

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.get("/{admin_token}", response_model=AdminViewResponse)
def get_admin_view(admin_token: str, request: Request, db: Session = Depends(get_db)):
    """管理頁：遊戲狀態、玩家列表、任務池、待處理的擊殺請求、排行榜"""
    try:
        game = GameManager.get_game_by_admin_token(db, admin_token)

        players = db.query(Player).filter(Player.game_id == game.id).order_by(Player.id).all()
        pending = KillRequestManager.get_pending_for_game(db, game.id)

        return AdminViewResponse(
            game=to_game_info(game, db),
            join_url=build_join_url(request, game.id),
            players=[
                PlayerSummary(
                    player_id=p.id,
                    name=p.name,
                    phone=p.phone,
                    is_alive=p.is_alive,
                    kills=p.kills,
                )
                for p in players
            ],
            tasks=[t.description for t in get_task_pool(game.id, db)],
            pending_kill_requests=[to_kill_request_response(kr) for kr in pending],
            leaderboard=[LeaderboardEntry(**row) for row in get_leaderboard(game.id, db)],
        )

    except GameNotFound:
        raise HTTPException(status_code=404, detail="Game not found")
    except Exception as e:
        logger.error(f"Failed to get admin view: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{admin_token}/start", response_model=ActionResponse)
def start_game(
    admin_token: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    gateway: NotificationGateway = Depends(get_notification_gateway)
):
    """
    開始遊戲（WAITING -> ACTIVE）

    效果：
    - 建立環、分配任務
    - 每位玩家收到開局通知（回應送出後才發送）
    """
    try:
        game = GameManager.get_game_by_admin_token(db, admin_token)
        outcome = GameManager.start_game(db, game.id, admin_token)

        background_tasks.add_task(dispatch, gateway, outcome.notifications)

        logger.info(f"Game {game.id} started by admin")
        return ActionResponse(status="ok")

    except GameNotFound:
        raise HTTPException(status_code=404, detail="Game not found")
    except NotAuthorized as e:
        raise HTTPException(status_code=403, detail=str(e))
    except (InvalidState, InsufficientPlayers) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to start game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{admin_token}/kill-requests/{kill_request_id}/approve", response_model=ResolutionResponse)
def approve_kill_request(
    admin_token: str,
    kill_request_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    gateway: NotificationGateway = Depends(get_notification_gateway)
):
    """
    核准擊殺（受害者不回應或有爭議時使用）

    - confirmed：這次呼叫完成擊殺
    - stale：請求已經過期，這次呼叫把它駁回
    - already_resolved：請求已經被結算過（不是錯誤）
    """
    try:
        game = GameManager.get_game_by_admin_token(db, admin_token)
        outcome = KillRequestManager.confirm_by_admin(db, kill_request_id, admin_token)

        if isinstance(outcome, EliminationOutcome):
            background_tasks.add_task(dispatch, gateway, outcome.notifications)

        return to_resolution_response(
            outcome,
            kill_request_id,
            GameManager.get_game_by_id(db, game.id).status,
        )

    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NotAuthorized as e:
        raise HTTPException(status_code=403, detail=str(e))
    except InvalidState as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to approve kill request: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{admin_token}/kill-requests/{kill_request_id}/reject", response_model=ResolutionResponse)
def reject_kill_request(admin_token: str, kill_request_id: int, db: Session = Depends(get_db)):
    """駁回擊殺請求（不影響任何玩家）"""
    try:
        game = GameManager.get_game_by_admin_token(db, admin_token)
        rejected = KillRequestManager.reject(db, kill_request_id, admin_token)

        return ResolutionResponse(
            status="rejected" if rejected else "already_resolved",
            kill_request_id=kill_request_id,
            game_status=game.status,
        )

    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NotAuthorized as e:
        raise HTTPException(status_code=403, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to reject kill request: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{admin_token}/test-sms", response_model=SmsTestResponse)
def send_test_sms(
    admin_token: str,
    sms_data: SmsTestRequest,
    db: Session = Depends(get_db),
    gateway: NotificationGateway = Depends(get_notification_gateway)
):
    """
    測試 SMS 設定

    直接（同步）呼叫 gateway，回傳這一則訊息的送達狀態；
    詳細的 ClickSend 回應請看 server log
    """
    try:
        game = GameManager.get_game_by_admin_token(db, admin_token)

        logger.info(f"SMS test requested by admin of game {game.id}")
        status = gateway.notify(sms_data.phone, EventKind.TEST_MESSAGE, {"message": sms_data.message})

        sms_enabled = isinstance(gateway, ClickSendGateway)
        return SmsTestResponse(
            delivery_status=status.value,
            recipient=normalize_phone(sms_data.phone),
            sms_enabled=sms_enabled,
            from_number=gateway.from_number if sms_enabled else None,
        )

    except GameNotFound:
        raise HTTPException(status_code=404, detail="Game not found")
    except Exception as e:
        logger.error(f"Failed to send test SMS: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
