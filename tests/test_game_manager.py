from __future__ import annotations

import random

import pytest

from core.exceptions import (
    GameNotAcceptingPlayers,
    GameNotFound,
    InsufficientPlayers,
    InvalidState,
    NotAuthorized,
    PlayerNotFound,
)
from core.game_manager import GameManager
from core.state_machine import GameStateMachine
from models import EventLog, GameStatus, Player
from services.notification_service import EventKind
from services.ring_service import verify_ring
from services.task_service import get_task_pool, parse_task_lines


def test_create_game_starts_waiting_with_task_pool(db) -> None:
    game = GameManager.create_game(db, "Office Party", parse_task_lines("Touch their shoulder\n\n  High-five  \n"))

    assert game.status == GameStatus.WAITING
    assert len(game.id) == 8
    assert len(game.admin_token) == 32
    assert [t.description for t in get_task_pool(game.id, db)] == ["Touch their shoulder", "High-five"]
    assert GameManager.get_game_by_admin_token(db, game.admin_token).id == game.id


def test_tokens_are_unique_per_player(db, make_game) -> None:
    game, players = make_game(5)

    tokens = {p.token for p in players}
    assert len(tokens) == 5
    assert game.admin_token not in tokens
    assert GameManager.get_player_by_token(db, players[2].token).id == players[2].id


def test_lookups_raise_not_found(db) -> None:
    with pytest.raises(GameNotFound):
        GameManager.get_game_by_id(db, "missing")
    with pytest.raises(GameNotFound):
        GameManager.get_game_by_admin_token(db, "missing")
    with pytest.raises(PlayerNotFound):
        GameManager.get_player_by_token(db, "missing")


def test_start_game_builds_ring_and_notifies_everyone(db, make_game) -> None:
    game, players = make_game(4, tasks=["Get a high-five"])

    outcome = GameManager.start_game(db, game.id, game.admin_token, random.Random(7))

    assert outcome.game.status == GameStatus.ACTIVE
    assert verify_ring(game.id, db)

    names = {p.id: p.name for p in players}
    assert [n.recipient for n in outcome.notifications] == [p.phone for p in players]
    for player, notification in zip(players, outcome.notifications):
        assert notification.event_kind == EventKind.GAME_STARTED
        assert notification.payload["target_name"] == names[player.target_id]
        assert notification.payload["task"] == "Get a high-five"
        assert notification.payload["player_token"] == player.token

    events = [e.event_type for e in db.query(EventLog).filter(EventLog.game_id == game.id).order_by(EventLog.id)]
    assert events[-2:] == ["GAME_STATE_CHANGED", "GAME_STARTED"]


def test_start_game_wrong_admin_token(db, make_game) -> None:
    game, players = make_game(3)

    with pytest.raises(NotAuthorized):
        GameManager.start_game(db, game.id, "not-the-token")

    assert GameManager.get_game_by_id(db, game.id).status == GameStatus.WAITING
    assert all(p.target_id is None for p in players)


def test_start_game_needs_two_players_and_leaves_no_partial_state(db, make_game) -> None:
    game, players = make_game(1)

    with pytest.raises(InsufficientPlayers):
        GameManager.start_game(db, game.id, game.admin_token)

    assert GameManager.get_game_by_id(db, game.id).status == GameStatus.WAITING
    assert players[0].target_id is None


def test_start_game_twice_is_rejected(db, make_game) -> None:
    game, _ = make_game(2)
    GameManager.start_game(db, game.id, game.admin_token)

    with pytest.raises(InvalidState):
        GameManager.start_game(db, game.id, game.admin_token)


def test_players_cannot_join_after_start(db, make_game) -> None:
    game, _ = make_game(2)
    GameManager.start_game(db, game.id, game.admin_token)

    with pytest.raises(GameNotAcceptingPlayers):
        GameManager.add_player(db, game.id, "Late", "0400000000")

    assert db.query(Player).filter(Player.game_id == game.id).count() == 2


def test_join_unknown_game(db) -> None:
    with pytest.raises(GameNotFound):
        GameManager.add_player(db, "missing", "Nobody", "0400000000")


def test_status_never_moves_backwards(db, make_game) -> None:
    game, _ = make_game(2)

    with pytest.raises(InvalidState):
        GameStateMachine.transition(game.id, GameStatus.FINISHED, db)

    GameManager.start_game(db, game.id, game.admin_token)
    with pytest.raises(InvalidState):
        GameStateMachine.transition(game.id, GameStatus.WAITING, db)


def test_check_win_with_no_survivors_is_an_invariant_violation(db, make_game) -> None:
    game, players = make_game(2)
    GameManager.start_game(db, game.id, game.admin_token)
    for player in players:
        player.is_alive = False
        player.target_id = None
    db.commit()

    with pytest.raises(InvalidState):
        GameManager.check_win(db, game.id)


def test_check_win_keeps_game_running_with_several_survivors(db, make_game) -> None:
    game, _ = make_game(3)
    GameManager.start_game(db, game.id, game.admin_token)

    assert GameManager.check_win(db, game.id) is False
    assert GameManager.get_game_by_id(db, game.id).status == GameStatus.ACTIVE
