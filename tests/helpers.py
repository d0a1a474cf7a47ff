from __future__ import annotations

from sqlalchemy.orm import Session

from models import Player


def set_ring(db: Session, order: list[Player]) -> None:
    """Overwrite targets so that order[i] hunts order[i + 1], wrapping around."""
    for i, player in enumerate(order):
        player.target_id = order[(i + 1) % len(order)].id
    db.commit()


def walk_ring(db: Session, start: Player) -> list[int]:
    """Follow targets from `start` until back at it (or a dead end); returns visited ids."""
    ids = [start.id]
    target_id = start.target_id
    while target_id is not None and target_id != start.id and len(ids) <= 50:
        ids.append(target_id)
        target_id = db.get(Player, target_id).target_id
    return ids
