# lineup.py: materialize lineups (serving formation) and rally formation
from __future__ import annotations
from typing import Iterable, List, Optional
import logging

from algorithm import (
    RoleSystem,
    RotationGenerator,
    LiberoSubstitutionEngine,
    is_middle_blocker,
    is_outside_hitter,
)
from domain import (
    POSITIONS,
    FRONT_ROW,
    CustomReference,
    ConfigurationError,
    Lineup,
    Occupant,
    OccupantAssignment,
    RosterPlayer,
    TeamRotationConfiguration,
    empty_lineup,
)
from player_reference import PlayerResolver, fallback_player

logger = logging.getLogger(__name__)


def validate_configuration(config: TeamRotationConfiguration) -> None:
    """
    Raise ConfigurationError / InvalidRoleError if the configuration cannot
    produce a lineup. Restored configurations go through here as well.
    """
    if config is None or not config.system:
        raise ConfigurationError("Configuration has no system.")

    roles = RoleSystem.roles(config.system)
    RoleSystem.require_role(config.system, config.starting_p1)

    missing = [r for r in roles if config.players.get(r) is None]
    if missing:
        raise ConfigurationError(f"No player assigned to role(s): {', '.join(missing)}")

    for role in roles:
        ref = config.players[role]
        if isinstance(ref, CustomReference) and not ref.is_valid():
            raise ConfigurationError(f'Player for role "{role}" needs a name or a jersey number.')

    if isinstance(config.libero, CustomReference) and not config.libero.is_valid():
        raise ConfigurationError("Libero needs a name or a jersey number.")

    for target in config.libero_replacement_targets or ():
        RoleSystem.require_role(config.system, target)

    if not 1 <= int(config.current_rotation) <= 6:
        raise ConfigurationError(f"current_rotation must be 1..6, got {config.current_rotation}")


class LineupAssembler:
    """Builds the P1..P6 lineup for one rotation of one team."""

    def __init__(self):
        self.generator = RotationGenerator()
        self.libero_engine = LiberoSubstitutionEngine()

    def occupants_for(
        self,
        config: TeamRotationConfiguration,
        rotation_number: int,
        manual_swap_role: Optional[str] = None,
        is_serving: bool = False,
    ) -> List[Occupant]:
        validate_configuration(config)
        if not 1 <= int(rotation_number) <= 6:
            raise ConfigurationError(f"rotation_number must be 1..6, got {rotation_number}")
        if manual_swap_role is not None:
            RoleSystem.require_role(config.system, manual_swap_role)

        rotations = self.generator.generate(
            RoleSystem.roles(config.system), config.starting_p1, config.players
        )
        return self.libero_engine.apply_substitution(
            rotations[int(rotation_number) - 1],
            config.libero,
            config.libero_replacement_targets,
            manual_swap_role=manual_swap_role,
            is_serving=is_serving,
        )

    def assemble(
        self,
        config: TeamRotationConfiguration,
        rotation_number: int,
        roster: Optional[Iterable[RosterPlayer]] = None,
        manual_swap_role: Optional[str] = None,
        is_serving: bool = False,
    ) -> Lineup:
        occupants = self.occupants_for(config, rotation_number, manual_swap_role, is_serving)
        resolver = PlayerResolver(roster)

        lineup = empty_lineup()
        for index, (pos, occ) in enumerate(zip(POSITIONS, occupants)):
            lineup[pos] = assignment_for(occ, resolver, index)
        return lineup


def assignment_for(occ: Occupant, resolver: PlayerResolver, index: int) -> OccupantAssignment:
    if occ.reference is None:
        # validate_configuration keeps this from happening for assembled lineups
        player = fallback_player(index)
        logger.warning("No reference for role %s at index %d", occ.role, index)
        reference = CustomReference(jersey_number=player.jersey_number, display_name=player.display_name)
    else:
        player = resolver.resolve(occ.reference, index)
        reference = occ.reference

    return OccupantAssignment(
        role=occ.role,
        reference=reference,
        player_id=player.player_id,
        display_name=player.display_name,
        jersey_number=player.jersey_number,
        original_role=occ.original_role,
    )


class RallyFormationConverter:
    """
    Remaps a serving lineup into where players stand once the ball is live.

    Front row: middle -> P3, outside -> P4, setter/opposite -> P2.
    Back row:  middle -> P5, outside -> P6, setter/opposite -> P1.
    The libero is placed by the role it is covering.
    """

    FRONT_SLOTS = {"middle": "P3", "outside": "P4", "other": "P2"}
    BACK_SLOTS = {"middle": "P5", "outside": "P6", "other": "P1"}

    @staticmethod
    def category(role: Optional[str]) -> str:
        if is_middle_blocker(role):
            return "middle"
        if is_outside_hitter(role):
            return "outside"
        return "other"

    def rally_slot(self, serving_pos: str, occ: OccupantAssignment) -> str:
        if serving_pos in FRONT_ROW:
            return self.FRONT_SLOTS[self.category(occ.role)]
        role = occ.original_role if occ.is_libero() else occ.role
        return self.BACK_SLOTS[self.category(role)]

    def to_rally(self, serving_lineup: Lineup) -> Lineup:
        rally = empty_lineup()
        for pos in POSITIONS:
            occ = serving_lineup.get(pos)
            if occ is None:
                continue
            slot = self.rally_slot(pos, occ)
            if rally[slot] is not None:
                logger.warning("Rally slot %s already taken by %s, skipping %s", slot, rally[slot].role, occ.role)
                continue
            rally[slot] = occ
        return rally


def assemble_lineup(
    config: TeamRotationConfiguration,
    rotation_number: int,
    roster: Optional[Iterable[RosterPlayer]] = None,
    manual_swap_role: Optional[str] = None,
    is_serving: bool = False,
) -> Lineup:
    return LineupAssembler().assemble(
        config,
        rotation_number,
        roster,
        manual_swap_role=manual_swap_role,
        is_serving=is_serving,
    )


def to_rally(serving_lineup: Lineup) -> Lineup:
    return RallyFormationConverter().to_rally(serving_lineup)
