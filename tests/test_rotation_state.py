from __future__ import annotations

import pytest

from domain import (
    HOME,
    LIBERO_IN,
    LIBERO_OUT,
    LIBERO_ROLE,
    OPPONENT,
    POINT,
    ROTATE,
    ConfigurationError,
    LiberoSwapError,
    SetEvent,
)
from rotation_state import BACKWARD, FORWARD, RotationStateMachine, next_rotation, previous_rotation
from tests.helpers import make_config, roles_of


def started(starting_server=HOME, home_rotation=1, opponent_rotation=1):
    machine = RotationStateMachine()
    machine.start_set(
        1,
        make_config(current_rotation=home_rotation),
        make_config(current_rotation=opponent_rotation),
        starting_server=starting_server,
    )
    return machine


def test_rotation_arithmetic_wraps():
    assert [next_rotation(r) for r in range(1, 7)] == [2, 3, 4, 5, 6, 1]
    assert [previous_rotation(r) for r in range(1, 7)] == [6, 1, 2, 3, 4, 5]


def test_start_set_builds_both_lineups():
    machine = started()
    assert machine.serving_team == HOME
    assert machine.team(HOME).current_rotation == 1
    assert machine.team(HOME).lineup["P5"].role == LIBERO_ROLE
    swap = machine.team(HOME).swap_state
    assert swap.is_active and not swap.is_manual_lock
    assert swap.replaced_role == "MB (w.s)"


def test_start_set_rejects_broken_configuration():
    machine = RotationStateMachine()
    broken = make_config(system="3-3")
    with pytest.raises(ConfigurationError):
        machine.start_set(1, make_config(), broken)
    assert machine.teams == {}


def test_side_out_advances_only_the_scoring_team():
    machine = started(starting_server=HOME)
    home_lineup = machine.team(HOME).lineup

    result = machine.on_point_end(OPPONENT, HOME)

    assert result.rotation_advanced
    assert result.new_serving_team == OPPONENT
    assert result.new_opponent_rotation == 2
    assert result.new_home_rotation == 1
    assert machine.team(HOME).lineup is home_lineup
    # opponent now serves with its MB on P1: no libero on the server
    assert result.opponent_lineup["P1"].role == "MB"
    assert LIBERO_ROLE not in roles_of(result.opponent_lineup).values()


def test_serving_team_scoring_changes_nothing():
    machine = started(starting_server=HOME)
    before_home = machine.team(HOME).lineup
    before_opp = machine.team(OPPONENT).lineup

    result = machine.on_point_end(HOME, HOME)

    assert not result.rotation_advanced
    assert result.new_serving_team == HOME
    assert (result.new_home_rotation, result.new_opponent_rotation) == (1, 1)
    assert result.home_lineup is before_home
    assert result.opponent_lineup is before_opp


def test_previous_serving_team_defaults_to_current():
    machine = started(starting_server=OPPONENT)
    result = machine.on_point_end(HOME)
    assert result.rotation_advanced
    assert machine.team(HOME).current_rotation == 2
    assert machine.serving_team == HOME


def test_unknown_team_is_rejected_without_state_change():
    machine = started()
    with pytest.raises(ConfigurationError):
        machine.on_point_end("visitors")
    assert machine.serving_team == HOME
    assert machine.team(HOME).current_rotation == 1


def test_point_before_configuration():
    with pytest.raises(ConfigurationError):
        RotationStateMachine().on_point_end(HOME)


def test_manual_rotate_wraps_both_ways():
    machine = started(home_rotation=6)
    assert machine.manual_rotate(HOME, FORWARD).new_rotation == 1

    machine = started(home_rotation=1)
    assert machine.manual_rotate(HOME, BACKWARD).new_rotation == 6
    assert machine.team(HOME).current_rotation == 6


def test_manual_rotate_matches_point_end_lineup():
    by_point = started(starting_server=HOME)
    by_point.on_point_end(OPPONENT, HOME)

    by_hand = started(starting_server=OPPONENT)
    result = by_hand.manual_rotate(OPPONENT, FORWARD)

    assert result.new_rotation == 2
    assert result.lineup == by_point.team(OPPONENT).lineup


def test_manual_rotate_unknown_direction():
    machine = started()
    with pytest.raises(ConfigurationError):
        machine.manual_rotate(HOME, "sideways")
    assert machine.team(HOME).current_rotation == 1


# ---------- Libero swaps ----------

def test_swap_in_rejected_while_libero_on_court():
    machine = started()
    with pytest.raises(LiberoSwapError):
        machine.libero_swap_in(HOME, "P6")


def test_swap_in_front_row_rejected():
    machine = started()
    machine.libero_swap_out(HOME)
    with pytest.raises(LiberoSwapError):
        machine.libero_swap_in(HOME, "P2")


def test_swap_in_without_libero():
    machine = RotationStateMachine()
    machine.start_set(1, make_config(libero=None), make_config())
    with pytest.raises(LiberoSwapError):
        machine.libero_swap_in(HOME, "P5")


def test_swap_out_restores_specialist():
    machine = started()
    lineup = machine.libero_swap_out(HOME)
    assert lineup["P5"].role == "MB (w.s)"
    assert lineup["P5"].display_name == "Venus"
    assert not machine.team(HOME).swap_state.is_active

    with pytest.raises(LiberoSwapError):
        machine.libero_swap_out(HOME)


def test_swap_in_default_target_stays_automatic():
    machine = started()
    machine.libero_swap_out(HOME)
    lineup = machine.libero_swap_in(HOME, "P5")

    swap = machine.team(HOME).swap_state
    assert lineup["P5"].role == LIBERO_ROLE
    assert swap.is_active and swap.replaced_role == "MB (w.s)"
    assert not swap.is_manual_lock


def test_swap_in_other_role_locks_and_survives_rotation():
    machine = started(starting_server=OPPONENT)
    machine.libero_swap_out(HOME)
    lineup = machine.libero_swap_in(HOME, "P6")

    assert lineup["P6"].role == LIBERO_ROLE
    assert lineup["P6"].original_role == "S"
    assert machine.team(HOME).swap_state.is_manual_lock

    # rotation 2 brings S to P5; the lock follows it instead of the middles
    result = machine.manual_rotate(HOME, FORWARD)
    assert result.lineup["P5"].role == LIBERO_ROLE
    assert result.lineup["P5"].original_role == "S"
    assert result.lineup["P1"].role == "MB"
    assert machine.team(HOME).swap_state.replaced_role == "S"


def test_lock_on_server_applies_at_side_out():
    machine = started(starting_server=OPPONENT, home_rotation=2)
    # rotation 2 back row: MB (P1) auto, S (P5), OH (w.s) (P6)
    machine.libero_swap_out(HOME)
    machine.libero_swap_in(HOME, "P6")
    assert machine.team(HOME).swap_state.locked_role() == "OH (w.s)"

    # side-out to rotation 3: OH (w.s) at P5, lock keeps following it
    result = machine.on_point_end(HOME, OPPONENT)
    assert result.home_lineup["P5"].role == LIBERO_ROLE
    assert result.home_lineup["P5"].original_role == "OH (w.s)"


def test_new_set_resets_swap_state():
    machine = started()
    machine.libero_swap_out(HOME)
    machine.libero_swap_in(HOME, "P6")
    assert machine.team(HOME).swap_state.is_manual_lock

    machine.start_set(2, make_config(), make_config(), starting_server=OPPONENT)
    assert machine.set_number == 2
    assert not machine.team(HOME).swap_state.is_manual_lock
    assert machine.team(HOME).swap_state.replaced_role == "MB (w.s)"


# ---------- Replay ----------

SEQUENCE = [OPPONENT, OPPONENT, HOME, HOME, HOME, OPPONENT, HOME, OPPONENT, OPPONENT, HOME]


def test_replay_is_reproducible():
    a = started()
    b = started()
    results_a = a.replay(SEQUENCE)
    results_b = b.replay(SEQUENCE)

    assert [r.home_lineup for r in results_a] == [r.home_lineup for r in results_b]
    assert [r.opponent_lineup for r in results_a] == [r.opponent_lineup for r in results_b]
    assert a.serving_team == b.serving_team == HOME


def test_replay_counts_side_outs():
    machine = started(starting_server=HOME)
    results = machine.replay(SEQUENCE)
    side_outs = sum(1 for r in results if r.rotation_advanced)
    # server after each point: O O H H H O H O O H
    assert side_outs == 6
    assert machine.team(HOME).current_rotation == 1 + 3
    assert machine.team(OPPONENT).current_rotation == 1 + 3


def test_replay_applies_manual_corrections():
    live = started(starting_server=OPPONENT)
    live.manual_rotate(HOME, FORWARD)
    live.libero_swap_out(HOME)
    live.libero_swap_in(HOME, "P6")
    live.on_point_end(HOME)

    restored = started(starting_server=OPPONENT)
    restored.replay([
        SetEvent(kind=ROTATE, team=HOME, detail=FORWARD),
        SetEvent(kind=LIBERO_OUT, team=HOME),
        SetEvent(kind=LIBERO_IN, team=HOME, detail="P6"),
        SetEvent(kind=POINT, team=HOME),
    ])

    assert restored.serving_team == live.serving_team == HOME
    for team in (HOME, OPPONENT):
        assert restored.team(team).current_rotation == live.team(team).current_rotation
        assert restored.team(team).lineup == live.team(team).lineup
        assert restored.team(team).swap_state == live.team(team).swap_state
    assert restored.team(HOME).swap_state.is_manual_lock


def test_replay_rejects_unknown_event():
    machine = started()
    with pytest.raises(ConfigurationError):
        machine.replay([SetEvent(kind="timeout", team=HOME)])


# ---------- Lock bookkeeping ----------

def test_lock_is_inactive_while_its_role_is_in_front_row():
    machine = started(starting_server=OPPONENT)
    machine.libero_swap_out(HOME)
    machine.libero_swap_in(HOME, "P6")  # lock on S

    machine.manual_rotate(HOME, FORWARD)
    result = machine.manual_rotate(HOME, FORWARD)
    # rotation 3 puts S at P4
    assert LIBERO_ROLE not in roles_of(result.lineup).values()
    swap = machine.team(HOME).swap_state
    assert not swap.is_active
    assert swap.is_manual_lock and swap.replaced_role == "S"

    # back to rotation 2: the lock picks S up again at P5
    result = machine.manual_rotate(HOME, BACKWARD)
    assert result.lineup["P5"].role == LIBERO_ROLE
    assert result.lineup["P5"].original_role == "S"
    assert machine.team(HOME).swap_state.is_active
