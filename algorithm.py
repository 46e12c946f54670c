from __future__ import annotations
from typing import List, Dict, Optional, Sequence, Tuple, Iterable
import logging

from domain import (
    LIBERO_ROLE,
    InvalidRoleError,
    ConfigurationError,
    Occupant,
    PlayerReference,
)

logger = logging.getLogger(__name__)

VOLLEYBALL_SYSTEMS: Dict[str, Tuple[str, ...]] = {
    "5-1 (OH>S)": ("S", "OH (w.s)", "MB", "Oppo", "OH", "MB (w.s)"),
    "5-1 (MB>S)": ("S", "MB (w.s)", "OH", "Oppo", "MB", "OH (w.s)"),
    "4-2": ("S1", "OH1", "MB1", "S2", "OH2", "MB2"),
    "6-2": ("S1/OPP1", "MB1", "OH1", "S2/OPP2", "MB2", "OH2"),
}

# Back-row slots in the order the libero is offered them: P5, P6, P1.
LIBERO_PRIORITY = (4, 5, 0)
SERVER_INDEX = 0


class RoleSystem:
    """Lookups over the fixed table of offensive systems."""

    @staticmethod
    def names() -> List[str]:
        return list(VOLLEYBALL_SYSTEMS.keys())

    @staticmethod
    def roles(system: str) -> Tuple[str, ...]:
        try:
            return VOLLEYBALL_SYSTEMS[system]
        except KeyError:
            raise ConfigurationError(
                f'Unknown system "{system}". Valid systems: {", ".join(VOLLEYBALL_SYSTEMS)}'
            ) from None

    @staticmethod
    def require_role(system: str, role: str) -> None:
        roles = RoleSystem.roles(system)
        if role not in roles:
            raise InvalidRoleError(f'Role "{role}" is not part of system "{system}" [{", ".join(roles)}]')

    @staticmethod
    def default_libero_targets(system: str) -> Tuple[str, ...]:
        """
        Roles the libero replaces when nothing was configured:
        every middle blocker, otherwise the first non-setter role.
        """
        roles = RoleSystem.roles(system)
        middles = tuple(r for r in roles if is_middle_blocker(r))
        if middles:
            return middles
        for r in roles:
            if not is_setter(r):
                return (r,)
        return ()


# ---------- Role categories ----------

def is_middle_blocker(role: Optional[str]) -> bool:
    return bool(role) and role.startswith("MB")


def is_outside_hitter(role: Optional[str]) -> bool:
    return bool(role) and role.startswith("OH")


def is_setter(role: Optional[str]) -> bool:
    if not role:
        return False
    return role == "S" or role.startswith("S1") or role.startswith("S2")


class RotationGenerator:
    """
    Builds the six serving-order rotations for one team.

    Rotation r (0-based) puts starting_order[(i + r) % 6] at position i,
    where position 0 is P1 (the server).
    """

    @staticmethod
    def make_starting_order(base_order: Sequence[str], starting_role: str) -> List[str]:
        base = list(base_order)
        try:
            idx = base.index(starting_role)
        except ValueError:
            raise InvalidRoleError(
                f'Invalid start role "{starting_role}" not found in [{", ".join(base)}]'
            ) from None
        return base[idx:] + base[:idx]

    @staticmethod
    def get_rotations(
        starting_order: Sequence[str],
        players: Optional[Dict[str, PlayerReference]] = None,
    ) -> List[List[Occupant]]:
        players = players or {}
        n = len(starting_order)
        rotations: List[List[Occupant]] = []
        for r in range(n):
            occupants = []
            for i in range(n):
                role = starting_order[(i + r) % n]
                # missing mapping -> placeholder occupant with no reference
                occupants.append(Occupant(role=role, reference=players.get(role)))
            rotations.append(occupants)
        return rotations

    def generate(
        self,
        base_order: Sequence[str],
        starting_role: str,
        players: Optional[Dict[str, PlayerReference]] = None,
    ) -> List[List[Occupant]]:
        order = self.make_starting_order(base_order, starting_role)
        return self.get_rotations(order, players)


class LiberoSubstitutionEngine:
    """
    Decides whether and where the libero replaces a back-row specialist.

    Candidates are scanned P5 -> P6 -> P1 and at most one substitution is
    made. While serving, P1 is only reachable through a manual lock.
    """

    @staticmethod
    def candidate_indexes(is_serving: bool, manual: bool) -> Tuple[int, ...]:
        if is_serving and not manual:
            return tuple(i for i in LIBERO_PRIORITY if i != SERVER_INDEX)
        return LIBERO_PRIORITY

    def apply_substitution(
        self,
        occupants: Sequence[Occupant],
        libero: Optional[PlayerReference],
        target_roles: Iterable[str] = (),
        manual_swap_role: Optional[str] = None,
        is_serving: bool = False,
    ) -> List[Occupant]:
        result = list(occupants)
        if libero is None:
            return result

        manual = manual_swap_role is not None
        if manual:
            wanted = {manual_swap_role}
        else:
            wanted = set(target_roles or ())
            if not wanted:
                return result

        for idx in self.candidate_indexes(is_serving, manual):
            current = result[idx]
            if current.role in wanted:
                result[idx] = Occupant(role=LIBERO_ROLE, reference=libero, original_role=current.role)
                logger.debug(
                    "Libero in at index %d for %s (%s)",
                    idx, current.role, "manual" if manual else "auto",
                )
                break

        return result


def generate_rotations(
    system: str,
    starting_role: str,
    players: Optional[Dict[str, PlayerReference]] = None,
) -> List[List[Occupant]]:
    return RotationGenerator().generate(RoleSystem.roles(system), starting_role, players)


def apply_libero_substitution(
    occupants: Sequence[Occupant],
    libero: Optional[PlayerReference],
    target_roles: Iterable[str] = (),
    manual_swap_role: Optional[str] = None,
    is_serving: bool = False,
) -> List[Occupant]:
    return LiberoSubstitutionEngine().apply_substitution(
        occupants,
        libero,
        target_roles,
        manual_swap_role=manual_swap_role,
        is_serving=is_serving,
    )
