from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Tuple, Union


LIBERO_ROLE = "L"

POSITIONS: Tuple[str, ...] = ("P1", "P2", "P3", "P4", "P5", "P6")
BACK_ROW = ("P1", "P5", "P6")
FRONT_ROW = ("P2", "P3", "P4")

HOME = "home"
OPPONENT = "opponent"
TEAMS = (HOME, OPPONENT)


# ---------- Errors ----------

class RotationError(ValueError):
    """Base class for everything the rotation engine rejects."""


class ConfigurationError(RotationError):
    pass


class InvalidRoleError(ConfigurationError):
    """A role that is not part of the configured system."""


class LiberoSwapError(RotationError):
    pass


# ---------- Players ----------

@dataclass(frozen=True)
class RosterReference:
    player_id: str
    team_id: str = ""

    kind = "roster"


@dataclass(frozen=True)
class CustomReference:
    jersey_number: int = 0
    display_name: str = ""

    kind = "custom"

    def is_valid(self) -> bool:
        return bool((self.display_name or "").strip()) or self.jersey_number > 0


PlayerReference = Union[RosterReference, CustomReference]


@dataclass(frozen=True)
class RosterPlayer:
    id: str
    team_id: str
    name: str = ""
    jersey_number: int = 0


@dataclass(frozen=True)
class ResolvedPlayer:
    player_id: str
    display_name: str
    jersey_number: int


# ---------- Configuration ----------

@dataclass
class TeamRotationConfiguration:
    system: str
    players: Dict[str, PlayerReference]
    starting_p1: str
    libero: Optional[PlayerReference] = None
    libero_replacement_targets: Tuple[str, ...] = ()
    current_rotation: int = 1


# ---------- Lineups ----------

@dataclass(frozen=True)
class Occupant:
    role: str
    reference: Optional[PlayerReference] = None
    original_role: Optional[str] = None

    def is_libero(self) -> bool:
        return self.role == LIBERO_ROLE


@dataclass(frozen=True)
class OccupantAssignment:
    role: str
    reference: PlayerReference
    player_id: str
    display_name: str
    jersey_number: int
    original_role: Optional[str] = None

    def is_libero(self) -> bool:
        return self.role == LIBERO_ROLE

    def to_dict(self) -> Dict:
        return {
            "role": self.role,
            "original_role": self.original_role,
            "player_id": self.player_id,
            "name": self.display_name,
            "jersey_number": self.jersey_number,
            "is_libero": self.is_libero(),
        }


# Position -> occupant; all six keys are always present.
Lineup = Dict[str, Optional[OccupantAssignment]]


def empty_lineup() -> Lineup:
    return {pos: None for pos in POSITIONS}


def lineup_to_dict(lineup: Lineup) -> Dict[str, Optional[Dict]]:
    return {pos: (occ.to_dict() if occ else None) for pos, occ in lineup.items()}


# ---------- State ----------

@dataclass
class LiberoSwapState:
    is_active: bool = False
    replaced_role: Optional[str] = None
    is_manual_lock: bool = False

    def locked_role(self) -> Optional[str]:
        """Role the libero is pinned to, or None when substitution is automatic."""
        if self.is_manual_lock and self.replaced_role:
            return self.replaced_role
        return None


@dataclass
class TeamRotationState:
    config: TeamRotationConfiguration
    roster: List[RosterPlayer] = field(default_factory=list)
    current_rotation: int = 1
    swap_state: LiberoSwapState = field(default_factory=LiberoSwapState)
    lineup: Lineup = field(default_factory=empty_lineup)


@dataclass
class PointEndResult:
    new_serving_team: str
    home_lineup: Lineup
    opponent_lineup: Lineup
    rotation_advanced: bool
    new_home_rotation: int
    new_opponent_rotation: int


@dataclass
class ManualRotateResult:
    lineup: Lineup
    new_rotation: int


# ---------- Set history ----------

POINT = "point"
ROTATE = "rotate"
LIBERO_IN = "libero_in"
LIBERO_OUT = "libero_out"
EVENT_KINDS = (POINT, ROTATE, LIBERO_IN, LIBERO_OUT)


@dataclass(frozen=True)
class SetEvent:
    """
    One recorded action of a set, replayed in order to rebuild the live state.
    team is the scoring team for points and the corrected team otherwise;
    detail holds the rotate direction or the libero's target position;
    seq is the stored ordering and does not take part in equality.
    """
    kind: str
    team: str
    detail: str = ""
    seq: int = field(default=0, compare=False)
