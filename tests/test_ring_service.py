from __future__ import annotations

import random

import pytest

from core.exceptions import GameNotFound, InsufficientPlayers, InvalidState
from core.game_manager import GameManager
from models import Game, GameStatus, Player
from services.ring_service import assign_targets, build_ring, rewire, verify_ring
from services.task_service import get_task_pool

from helpers import set_ring, walk_ring


def _cycle_from(ring: dict[int, int]) -> tuple[int, ...]:
    start = min(ring)
    order = [start]
    current = ring[start]
    while current != start:
        order.append(current)
        current = ring[current]
    return tuple(order)


@pytest.mark.parametrize("n", [2, 3, 4, 5, 8])
def test_build_ring_is_one_cycle_over_everyone(n: int) -> None:
    ids = list(range(100, 100 + n))
    for seed in range(25):
        ring = build_ring(ids, random.Random(seed))

        assert set(ring) == set(ids)
        assert all(ring[pid] != pid for pid in ids)
        assert sorted(_cycle_from(ring)) == sorted(ids)


def test_build_ring_reaches_every_cyclic_order() -> None:
    # Four players admit 3! = 6 distinct directed Hamiltonian cycles.
    seen = {_cycle_from(build_ring([1, 2, 3, 4], random.Random(seed))) for seed in range(400)}
    assert len(seen) == 6


def test_build_ring_rejects_single_player() -> None:
    with pytest.raises(InsufficientPlayers):
        build_ring([7])


def test_assign_targets_links_every_player(db, make_game) -> None:
    game, players = make_game(6, tasks=["Get a high-five", "Take a selfie"])

    ring = assign_targets(game.id, db, random.Random(3))
    db.commit()

    assert verify_ring(game.id, db)
    assert len(walk_ring(db, players[0])) == 6
    pool_ids = {t.id for t in get_task_pool(game.id, db)}
    for player in players:
        db.refresh(player)
        assert player.target_id == ring[player.id]
        assert player.current_task_id in pool_ids


def test_assign_targets_with_empty_pool_leaves_tasks_unset(db, make_game) -> None:
    game, players = make_game(3)

    assign_targets(game.id, db, random.Random(1))
    db.commit()

    assert verify_ring(game.id, db)
    assert all(p.current_task_id is None for p in players)


def test_assign_targets_requires_two_players(db, make_game) -> None:
    game, players = make_game(1)

    with pytest.raises(InsufficientPlayers):
        assign_targets(game.id, db)

    db.rollback()
    assert db.get(Player, players[0].id).target_id is None


def test_assign_targets_requires_waiting_game(db, make_game) -> None:
    game, _ = make_game(3)
    GameManager.start_game(db, game.id, game.admin_token)

    with pytest.raises(InvalidState):
        assign_targets(game.id, db)


def test_assign_targets_unknown_game(db) -> None:
    with pytest.raises(GameNotFound):
        assign_targets("nope", db)


def test_rewire_absorbs_victims_position(db, make_game) -> None:
    game, (a, b, c, d, e) = make_game(5)
    game.status = GameStatus.ACTIVE
    set_ring(db, [a, b, c, d, e])

    new_target = rewire(b, c, db)
    db.commit()

    assert new_target == d.id
    assert c.is_alive is False
    assert c.target_id is None
    assert walk_ring(db, b) == [b.id, d.id, e.id, a.id]
    assert verify_ring(game.id, db)


def test_rewire_two_player_ring_leaves_killer_without_target(db, make_game) -> None:
    game, (a, b) = make_game(2)
    set_ring(db, [a, b])

    assert rewire(a, b, db) is None
    db.commit()

    assert a.target_id is None
    assert b.is_alive is False
    assert verify_ring(game.id, db)


def test_verify_ring_detects_sub_cycles(db, make_game) -> None:
    game, (a, b, c, d) = make_game(4)
    a.target_id, b.target_id = b.id, a.id
    c.target_id, d.target_id = d.id, c.id
    db.commit()

    assert not verify_ring(game.id, db)


def test_verify_ring_detects_self_loop(db, make_game) -> None:
    game, (a, b) = make_game(2)
    a.target_id, b.target_id = a.id, a.id
    db.commit()

    assert not verify_ring(game.id, db)
    assert db.query(Game).filter(Game.id == game.id).one().status == GameStatus.WAITING
