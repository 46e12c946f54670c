# rotation_state.py: point-end transitions, manual corrections, libero swaps
from __future__ import annotations
from typing import Dict, Iterable, List, Optional, Union
import logging

from domain import (
    BACK_ROW,
    EVENT_KINDS,
    HOME,
    LIBERO_IN,
    LIBERO_OUT,
    LIBERO_ROLE,
    OPPONENT,
    POSITIONS,
    TEAMS,
    ConfigurationError,
    LiberoSwapError,
    LiberoSwapState,
    Lineup,
    ManualRotateResult,
    Occupant,
    POINT,
    PointEndResult,
    ROTATE,
    RosterPlayer,
    SetEvent,
    TeamRotationConfiguration,
    TeamRotationState,
)
from lineup import LineupAssembler, assignment_for, validate_configuration
from player_reference import PlayerResolver

logger = logging.getLogger(__name__)

FORWARD = "forward"
BACKWARD = "backward"


def next_rotation(r: int) -> int:
    return (r % 6) + 1


def previous_rotation(r: int) -> int:
    return 6 if r == 1 else r - 1


def _check_team(team: str) -> str:
    if team not in TEAMS:
        raise ConfigurationError(f'Unknown team "{team}". Expected one of: {", ".join(TEAMS)}')
    return team


def _libero_position(lineup: Lineup) -> Optional[str]:
    for pos in BACK_ROW:
        occ = lineup.get(pos)
        if occ is not None and occ.is_libero():
            return pos
    return None


class RotationStateMachine:
    """
    Owns the per-team rotation state of one set and applies scoring events.

    Every lineup goes through LineupAssembler with the team's own
    LiberoSwapState, so point-end handling and manual rotation agree for the
    same rotation number. New state is computed first and committed last.
    """

    def __init__(self, assembler: Optional[LineupAssembler] = None):
        self.assembler = assembler or LineupAssembler()
        self.teams: Dict[str, TeamRotationState] = {}
        self.serving_team: str = HOME
        self.set_number: int = 0

    # ---------- Set lifecycle ----------

    def start_set(
        self,
        set_number: int,
        home_config: TeamRotationConfiguration,
        opponent_config: TeamRotationConfiguration,
        starting_server: str = HOME,
        home_roster: Optional[Iterable[RosterPlayer]] = None,
        opponent_roster: Optional[Iterable[RosterPlayer]] = None,
    ) -> None:
        _check_team(starting_server)
        validate_configuration(home_config)
        validate_configuration(opponent_config)

        teams: Dict[str, TeamRotationState] = {}
        for team, config, roster in (
            (HOME, home_config, home_roster),
            (OPPONENT, opponent_config, opponent_roster),
        ):
            state = TeamRotationState(
                config=config,
                roster=list(roster or []),
                current_rotation=int(config.current_rotation),
                swap_state=LiberoSwapState(),
            )
            state.lineup = self._lineup_for(state, state.current_rotation, team == starting_server)
            self._track_auto_libero(state)
            teams[team] = state

        self.teams = teams
        self.serving_team = starting_server
        self.set_number = set_number
        logger.info(
            "Set %s started: %s serving, rotations home=%d opponent=%d",
            set_number, starting_server, teams[HOME].current_rotation, teams[OPPONENT].current_rotation,
        )

    def team(self, team: str) -> TeamRotationState:
        _check_team(team)
        if team not in self.teams:
            raise ConfigurationError("No set has been configured yet.")
        return self.teams[team]

    def is_serving(self, team: str) -> bool:
        return self.serving_team == team

    # ---------- Internals ----------

    def _lineup_for(self, state: TeamRotationState, rotation: int, is_serving: bool) -> Lineup:
        return self.assembler.assemble(
            state.config,
            rotation,
            state.roster,
            manual_swap_role=state.swap_state.locked_role(),
            is_serving=is_serving,
        )

    @staticmethod
    def _track_auto_libero(state: TeamRotationState) -> None:
        # automatic mode follows wherever the assembler put the libero
        pos = _libero_position(state.lineup)
        if state.swap_state.is_manual_lock:
            # the lock outlives rotations where its role is in the front row
            state.swap_state = LiberoSwapState(
                is_active=pos is not None,
                replaced_role=state.swap_state.replaced_role,
                is_manual_lock=True,
            )
            return
        if pos is None:
            state.swap_state = LiberoSwapState()
        else:
            state.swap_state = LiberoSwapState(
                is_active=True,
                replaced_role=state.lineup[pos].original_role,
                is_manual_lock=False,
            )

    # ---------- Scoring ----------

    def on_point_end(self, scoring_team: str, previous_serving_team: Optional[str] = None) -> PointEndResult:
        _check_team(scoring_team)
        previous = _check_team(previous_serving_team or self.serving_team)
        home = self.team(HOME)
        opponent = self.team(OPPONENT)

        if scoring_team == previous:
            self.serving_team = previous
            return PointEndResult(
                new_serving_team=previous,
                home_lineup=home.lineup,
                opponent_lineup=opponent.lineup,
                rotation_advanced=False,
                new_home_rotation=home.current_rotation,
                new_opponent_rotation=opponent.current_rotation,
            )

        # side-out: the team that won the rally rotates and serves
        state = self.teams[scoring_team]
        new_rotation = next_rotation(state.current_rotation)
        new_lineup = self._lineup_for(state, new_rotation, True)

        state.current_rotation = new_rotation
        state.lineup = new_lineup
        self._track_auto_libero(state)
        self.serving_team = scoring_team
        logger.info("Side-out: %s to rotation %d (now serving)", scoring_team, new_rotation)

        return PointEndResult(
            new_serving_team=scoring_team,
            home_lineup=home.lineup,
            opponent_lineup=opponent.lineup,
            rotation_advanced=True,
            new_home_rotation=home.current_rotation,
            new_opponent_rotation=opponent.current_rotation,
        )

    def apply_event(self, event: Union[SetEvent, str]):
        """Apply one recorded action; a bare team name is a point it scored."""
        if isinstance(event, str):
            return self.on_point_end(event)
        if event.kind == POINT:
            return self.on_point_end(event.team)
        if event.kind == ROTATE:
            return self.manual_rotate(event.team, event.detail or FORWARD)
        if event.kind == LIBERO_IN:
            return self.libero_swap_in(event.team, event.detail)
        if event.kind == LIBERO_OUT:
            return self.libero_swap_out(event.team)
        raise ConfigurationError(f'Unknown set event "{event.kind}". Expected one of: {", ".join(EVENT_KINDS)}')

    def replay(self, events: Iterable[Union[SetEvent, str]]) -> List:
        """Re-apply a persisted set history (session restore), in order."""
        return [self.apply_event(event) for event in events]

    # ---------- Manual corrections ----------

    def manual_rotate(self, team: str, direction: str = FORWARD) -> ManualRotateResult:
        state = self.team(team)
        if direction == FORWARD:
            new_rotation = next_rotation(state.current_rotation)
        elif direction == BACKWARD:
            new_rotation = previous_rotation(state.current_rotation)
        else:
            raise ConfigurationError(f'Unknown direction "{direction}". Use "{FORWARD}" or "{BACKWARD}".')

        new_lineup = self._lineup_for(state, new_rotation, self.is_serving(team))
        state.current_rotation = new_rotation
        state.lineup = new_lineup
        self._track_auto_libero(state)
        logger.info("Manual rotate %s %s to rotation %d", team, direction, new_rotation)
        return ManualRotateResult(lineup=new_lineup, new_rotation=new_rotation)

    def libero_swap_in(self, team: str, target_position: str) -> Lineup:
        state = self.team(team)
        config = state.config
        if config.libero is None:
            raise LiberoSwapError(f"{team} has no libero configured.")
        if target_position not in BACK_ROW:
            raise LiberoSwapError(f"Libero can only enter in the back row ({', '.join(BACK_ROW)}), not {target_position}.")
        on_court = _libero_position(state.lineup)
        if on_court is not None:
            raise LiberoSwapError(f"Libero is already on court at {on_court}.")
        current = state.lineup.get(target_position)
        if current is None:
            raise LiberoSwapError(f"No player at {target_position} to replace.")

        replaced_role = current.role
        index = POSITIONS.index(target_position)
        libero = assignment_for(
            Occupant(role=LIBERO_ROLE, reference=config.libero, original_role=replaced_role),
            PlayerResolver(state.roster),
            index,
        )
        new_lineup = dict(state.lineup)
        new_lineup[target_position] = libero

        state.lineup = new_lineup
        state.swap_state = LiberoSwapState(
            is_active=True,
            replaced_role=replaced_role,
            is_manual_lock=replaced_role not in (config.libero_replacement_targets or ()),
        )
        logger.info(
            "Libero in for %s at %s (%s)",
            replaced_role, target_position, "locked" if state.swap_state.is_manual_lock else "auto",
        )
        return new_lineup

    def libero_swap_out(self, team: str) -> Lineup:
        state = self.team(team)
        pos = _libero_position(state.lineup)
        if pos is None:
            raise LiberoSwapError(f"{team} libero is not on court in the back row.")

        libero = state.lineup[pos]
        original_role = libero.original_role or state.swap_state.replaced_role
        if not original_role:
            raise LiberoSwapError("Cannot tell which player the libero replaced.")

        specialist = assignment_for(
            Occupant(role=original_role, reference=state.config.players.get(original_role)),
            PlayerResolver(state.roster),
            POSITIONS.index(pos),
        )
        new_lineup = dict(state.lineup)
        new_lineup[pos] = specialist

        state.lineup = new_lineup
        state.swap_state = LiberoSwapState()
        logger.info("Libero out at %s, %s back in", pos, original_role)
        return new_lineup
