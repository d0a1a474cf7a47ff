"""
Leaderboard service.

Builds the ranking shown on the admin dashboard and on player pages:
most kills first, and among equal kill counts, survivors ahead of the
eliminated.
"""
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from models import Player


def get_leaderboard(game_id: str, db: Session) -> List[Dict[str, Any]]:
    """Return ranked rows of name, kills and is_alive for a game."""
    players = (
        db.query(Player)
        .filter(Player.game_id == game_id)
        .order_by(Player.kills.desc(), Player.is_alive.desc(), Player.id)
        .all()
    )

    return [
        {
            "rank": index + 1,
            "player_id": player.id,
            "name": player.name,
            "kills": player.kills,
            "is_alive": player.is_alive,
        }
        for index, player in enumerate(players)
    ]


def count_alive(game_id: str, db: Session) -> int:
    return db.query(Player).filter(
        Player.game_id == game_id,
        Player.is_alive == True
    ).count()
