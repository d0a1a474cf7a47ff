"""
Player API Endpoints

所有路徑都以玩家 token 識別玩家

職責：
1. 玩家頁資訊（target、任務、是否有人宣稱殺了自己）
2. 提交擊殺（「我抓到他了！」）
3. 受害者確認死亡
"""
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from models import GameStatus, Player, Task
from schemas import KillSubmitResponse, PlayerViewResponse, ResolutionResponse
from core.game_manager import GameManager
from core.kill_request_manager import EliminationOutcome, KillRequestManager
from core.exceptions import (
    InvalidState,
    NotAuthorized,
    NotFound,
    PlayerNotFound,
)
from services.leaderboard_service import count_alive
from services.notification_service import NotificationGateway, dispatch, get_notification_gateway
from api.games import to_kill_request_response, to_resolution_response

router = APIRouter(prefix="/api/play", tags=["players"])
logger = logging.getLogger(__name__)


@router.get("/{token}", response_model=PlayerViewResponse)
def get_player_view(token: str, db: Session = Depends(get_db)):
    """
    玩家頁

    依遊戲狀態顯示：
    - WAITING：等待開始
    - FINISHED：勝利者
    - 已出局：最終擊殺數
    - ACTIVE 且活著：target、任務、針對自己的待確認擊殺
    """
    try:
        player = GameManager.get_player_by_token(db, token)
        game = GameManager.get_game_by_id(db, player.game_id)

        view = PlayerViewResponse(
            game_id=game.id,
            game_name=game.name,
            game_status=game.status,
            player_id=player.id,
            name=player.name,
            is_alive=player.is_alive,
            kills=player.kills,
            players_remaining=count_alive(game.id, db),
        )

        if game.status == GameStatus.FINISHED:
            winner = db.query(Player).filter(
                Player.game_id == game.id,
                Player.is_alive == True
            ).first()
            if winner:
                view.winner_name = winner.name
                view.is_winner = winner.id == player.id

        elif game.status == GameStatus.ACTIVE and player.is_alive:
            if player.target_id:
                view.target_name = GameManager.get_player_by_id(db, player.target_id).name
            if player.current_task_id:
                task = db.query(Task).filter(Task.id == player.current_task_id).first()
                view.task = task.description if task else None

            pending = KillRequestManager.get_pending_against(db, player.id)
            if pending:
                view.pending_kill_against = to_kill_request_response(pending)

        return view

    except PlayerNotFound:
        raise HTTPException(status_code=404, detail="Player not found")
    except Exception as e:
        logger.error(f"Failed to get player view: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{token}/kill", response_model=KillSubmitResponse)
def submit_kill(
    token: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    gateway: NotificationGateway = Depends(get_notification_gateway)
):
    """
    提交擊殺（冪等）

    對象固定是玩家目前的 target；重複提交會返回同一筆請求，並再次提醒受害者
    """
    try:
        player = GameManager.get_player_by_token(db, token)
        outcome = KillRequestManager.submit(db, player.id, player.target_id)

        background_tasks.add_task(dispatch, gateway, outcome.notifications)

        logger.info(
            "Kill request %s %s by player %s",
            outcome.kill_request.id,
            "created" if outcome.created_new else "reused",
            player.id
        )
        return KillSubmitResponse(
            kill_request=to_kill_request_response(outcome.kill_request),
            created_new=outcome.created_new,
        )

    except PlayerNotFound:
        raise HTTPException(status_code=404, detail="Player not found")
    except NotAuthorized as e:
        raise HTTPException(status_code=403, detail=str(e))
    except InvalidState as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to submit kill: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{token}/kill-requests/{kill_request_id}/confirm", response_model=ResolutionResponse)
def confirm_death(
    token: str,
    kill_request_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    gateway: NotificationGateway = Depends(get_notification_gateway)
):
    """
    受害者確認死亡

    請求已經被管理員處理過時返回 already_resolved（不是錯誤），
    請求已經過期時返回 stale
    """
    try:
        outcome = KillRequestManager.confirm_by_victim(db, kill_request_id, token)
        kill_request = KillRequestManager.get_kill_request(db, kill_request_id)
        game = GameManager.get_game_by_id(db, kill_request.killer.game_id)

        if isinstance(outcome, EliminationOutcome):
            background_tasks.add_task(dispatch, gateway, outcome.notifications)

        return to_resolution_response(outcome, kill_request_id, game.status)

    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NotAuthorized as e:
        raise HTTPException(status_code=403, detail=str(e))
    except InvalidState as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to confirm death: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
