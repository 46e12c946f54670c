# csv_parser.py
from __future__ import annotations
from typing import List, Dict, Optional
import csv
import io
import logging

from domain import RosterPlayer

logger = logging.getLogger(__name__)


class CsvParser:
    """Service responsible for parsing roster CSV bytes into RosterPlayer values."""

    ID_HEADERS = ("id", "player_id", "playerid")
    NAME_HEADERS = ("name", "player", "preferred_name", "preferredname")
    NUMBER_HEADERS = ("number", "jersey", "jersey_number", "jerseynumber", "#")

    @staticmethod
    def _norm(s: Optional[str]) -> str:
        return (s or "").strip().lower()

    @staticmethod
    def _first(row: Dict[str, str], keys) -> str:
        for k in keys:
            v = row.get(k)
            if v:
                return v
        return ""

    @staticmethod
    def _parse_jersey(x: str) -> int:
        """
        Accepts "7", "#7", " 07 " → 7.
        Anything that is not a positive number becomes 0.
        """
        v = (x or "").strip().lstrip("#").strip()
        try:
            n = int(v)
        except ValueError:
            return 0
        return n if n > 0 else 0

    def parse_roster_from_bytes(self, b: bytes, team_id: str) -> List[RosterPlayer]:
        """
        Parse CSV bytes and return the team's roster.

        A row needs a name or a jersey number; rows without an id get
        "<team_id>-<row number>".
        """
        text = b.decode("utf-8-sig", errors="ignore")
        out: List[RosterPlayer] = []
        seen_ids = set()
        reader = csv.DictReader(io.StringIO(text))

        for n, row in enumerate(reader, start=1):
            # normalize headers to lowercase
            row_ci = {self._norm(k): (v or "").strip() for k, v in row.items() if k is not None}

            name = self._first(row_ci, self.NAME_HEADERS)
            jersey = self._parse_jersey(self._first(row_ci, self.NUMBER_HEADERS))
            if not name and not jersey:
                continue

            player_id = self._first(row_ci, self.ID_HEADERS) or f"{team_id}-{n}"
            if player_id in seen_ids:
                logger.warning("Duplicate player id %r in roster for %s, keeping the first", player_id, team_id)
                continue
            seen_ids.add(player_id)

            out.append(RosterPlayer(id=player_id, team_id=team_id, name=name, jersey_number=jersey))

        return out
