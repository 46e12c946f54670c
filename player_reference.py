# player_reference.py
from __future__ import annotations
from typing import Iterable, Optional, Dict
import logging

from domain import (
    CustomReference,
    PlayerReference,
    ResolvedPlayer,
    RosterPlayer,
    RosterReference,
)

logger = logging.getLogger(__name__)


def create_roster_reference(player: RosterPlayer) -> RosterReference:
    return RosterReference(player_id=player.id, team_id=player.team_id)


def create_custom_reference(jersey_number: int, display_name: str = "") -> CustomReference:
    return CustomReference(jersey_number=int(jersey_number or 0), display_name=(display_name or "").strip())


def fallback_player(index: int) -> ResolvedPlayer:
    """Placeholder for a reference that cannot be resolved (index is 0-based)."""
    n = index + 1
    return ResolvedPlayer(player_id=f"FALLBACK:{n}", display_name=f"Player {n}", jersey_number=n)


def _custom_id(ref: CustomReference) -> str:
    return f"CUSTOM:{ref.jersey_number}"


def _custom_name(ref: CustomReference) -> str:
    return ref.display_name or f"#{ref.jersey_number}"


class PlayerResolver:
    """
    Resolve PlayerReference values into display data.

    Roster references are looked up by id in the roster given at
    construction time; custom references carry everything they need.
    """

    def __init__(self, roster: Optional[Iterable[RosterPlayer]] = None):
        self._by_id: Dict[str, RosterPlayer] = {}
        for p in roster or []:
            self._by_id[p.id] = p

    def resolve(self, ref: Optional[PlayerReference], index: int) -> ResolvedPlayer:
        if ref is None:
            return fallback_player(index)

        if isinstance(ref, CustomReference):
            return ResolvedPlayer(
                player_id=_custom_id(ref),
                display_name=_custom_name(ref),
                jersey_number=ref.jersey_number,
            )

        player = self._by_id.get(ref.player_id)
        if player is None:
            logger.warning("Roster player %r not found, using placeholder #%d", ref.player_id, index + 1)
            return fallback_player(index)

        return ResolvedPlayer(
            player_id=player.id,
            display_name=player.name or f"#{player.jersey_number}",
            jersey_number=player.jersey_number,
        )
