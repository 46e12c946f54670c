# sheets_repository.py
from __future__ import annotations
from typing import List, Dict, Tuple, Optional, Any, Iterable
from datetime import datetime
import json
import logging
import os

from googleapiclient.discovery import build
from google.oauth2.service_account import Credentials as ServiceAccountCredentials

from algorithm import VOLLEYBALL_SYSTEMS, RoleSystem
from domain import (
    POINT,
    CustomReference,
    PlayerReference,
    RosterPlayer,
    RosterReference,
    SetEvent,
    TeamRotationConfiguration,
)

logger = logging.getLogger(__name__)

ROTATION_CONFIGS_TAB = os.getenv("ROTATION_CONFIGS_TAB", "RotationConfigs")
POINTS_TAB = os.getenv("POINTS_TAB", "Points")

CONFIG_HEADER = ["match_id", "set_number", "home_config", "opponent_config", "starting_server", "configured_at"]
# Set history: points and manual corrections share one ordered log.
# Rows without an event column are points.
POINTS_HEADER = ["match_id", "set_number", "seq", "team", "serving_team", "recorded_at", "event", "detail"]


def _last_col(header: List[str]) -> str:
    return chr(ord("A") + len(header) - 1)


def _cell(row: List[str], i: int) -> str:
    return (row[i] if len(row) > i else "").strip()


# ---------- PlayerReference / configuration codec ----------

def reference_to_dict(ref: Optional[PlayerReference]) -> Optional[Dict[str, Any]]:
    if ref is None:
        return None
    if isinstance(ref, RosterReference):
        return {"type": "roster", "player_id": ref.player_id, "team_id": ref.team_id}
    return {"type": "custom", "jersey_number": ref.jersey_number, "display_name": ref.display_name}


def _to_int(x: Any) -> int:
    try:
        return int(x)
    except (TypeError, ValueError):
        return 0


def deserialize_legacy_reference(stored: str, roster: Iterable[RosterPlayer]) -> PlayerReference:
    """
    Old configurations stored players as plain strings. Resolution order:
      1. "CUSTOM:7"           -> custom #7
      2. roster id            -> roster reference
      3. roster name          -> roster reference
      4. numeric string       -> custom jersey number
      5. anything else        -> custom reference named after the text
    """
    roster = list(roster or [])
    stored = (stored or "").strip()

    if stored.upper().startswith("CUSTOM:"):
        return CustomReference(jersey_number=_to_int(stored.split(":", 1)[1]))

    for p in roster:
        if p.id == stored:
            return RosterReference(player_id=p.id, team_id=p.team_id)
    for p in roster:
        if p.name and p.name == stored:
            return RosterReference(player_id=p.id, team_id=p.team_id)

    if stored.lstrip("#").isdigit():
        return CustomReference(jersey_number=int(stored.lstrip("#")))

    return CustomReference(jersey_number=0, display_name=stored)


def reference_from_value(value: Any, roster: Iterable[RosterPlayer]) -> Optional[PlayerReference]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return deserialize_legacy_reference(value, roster)
    if isinstance(value, dict):
        kind = value.get("type")
        if kind == "roster":
            return RosterReference(
                player_id=str(value.get("player_id") or value.get("playerId") or ""),
                team_id=str(value.get("team_id") or value.get("teamId") or ""),
            )
        if kind == "custom":
            name = value.get("display_name")
            if name is None:
                name = value.get("customName") or value.get("displayName") or ""
            return CustomReference(
                jersey_number=_to_int(value.get("jersey_number", value.get("jerseyNumber"))),
                display_name=str(name),
            )
    logger.warning("Unrecognized player reference %r", value)
    return None


def config_to_dict(config: TeamRotationConfiguration) -> Dict[str, Any]:
    return {
        "system": config.system,
        "players": {role: reference_to_dict(ref) for role, ref in config.players.items()},
        "starting_p1": config.starting_p1,
        "libero": reference_to_dict(config.libero),
        "libero_replacement_targets": list(config.libero_replacement_targets or ()),
        "current_rotation": config.current_rotation,
    }


def config_from_dict(data: Dict[str, Any], roster: Optional[Iterable[RosterPlayer]] = None) -> TeamRotationConfiguration:
    """
    Build a configuration from stored data, migrating older layouts
    (camelCase keys, string player references, a single libero target).
    The result is not validated here.
    """
    roster = list(roster or [])
    system = data.get("system") or ""
    raw_players = data.get("players") or {}
    roles = VOLLEYBALL_SYSTEMS.get(system) or tuple(raw_players.keys())

    players: Dict[str, PlayerReference] = {}
    for role in roles:
        ref = reference_from_value(raw_players.get(role), roster)
        if ref is None:
            # empty reference, rejected later by validate_configuration
            ref = CustomReference()
        players[role] = ref

    libero = reference_from_value(data.get("libero"), roster)

    if "libero_replacement_targets" in data or "liberoReplacementTargets" in data:
        raw_targets = data.get("libero_replacement_targets", data.get("liberoReplacementTargets")) or []
        if isinstance(raw_targets, str):
            raw_targets = [raw_targets]
        targets = tuple(raw_targets)
    elif data.get("liberoReplacementTarget"):
        targets = (data["liberoReplacementTarget"],)
    elif libero is not None and system in VOLLEYBALL_SYSTEMS:
        targets = RoleSystem.default_libero_targets(system)
    else:
        targets = ()

    starting_p1 = data.get("starting_p1") or data.get("startingP1") or ""
    raw_rotation = data.get("current_rotation", data.get("currentRotation"))
    # only a missing value defaults; 0 or junk is left for validate_configuration
    current_rotation = 1 if raw_rotation is None else _to_int(raw_rotation)

    return TeamRotationConfiguration(
        system=system,
        players=players,
        starting_p1=starting_p1,
        libero=libero,
        libero_replacement_targets=targets,
        current_rotation=current_rotation,
    )


class SheetsRepository:
    """
    Service responsible for all interactions with Google Sheets:
    - tabs and headers
    - per-set rotation configurations (both teams + starting server)
    - set history (points and manual corrections) replayed to restore a session
    """

    def __init__(
        self,
        spreadsheet_id: str,
        *,
        configs_tab: str = ROTATION_CONFIGS_TAB,
        points_tab: str = POINTS_TAB,
        service_account_file: str = "service_account.json",
        service=None,
    ):
        self.spreadsheet_id = (spreadsheet_id or "").strip()
        self.configs_tab = configs_tab
        self.points_tab = points_tab
        self.service_account_file = service_account_file

        self._service = service  # lazy-loaded Google Sheets service

    # ---------- Internal helpers ----------

    def _credentials(self):
        """Load service account credentials from the JSON key file."""
        if not os.path.exists(self.service_account_file):
            raise RuntimeError(f"{self.service_account_file} not found. Place it in the project folder.")
        creds = ServiceAccountCredentials.from_service_account_file(
            self.service_account_file,
            scopes=["https://www.googleapis.com/auth/spreadsheets"]
        )
        return creds

    def _sheets_service(self):
        if self._service is None:
            if not self.spreadsheet_id:
                raise RuntimeError("Spreadsheet ID not configured.")
            # cache_discovery=False avoids some local warnings
            self._service = build("sheets", "v4", credentials=self._credentials(), cache_discovery=False)
        return self._service

    def _get_values(self, range_name: str) -> List[List[str]]:
        svc = self._sheets_service()
        res = svc.spreadsheets().values().get(
            spreadsheetId=self.spreadsheet_id, range=range_name
        ).execute()
        return res.get("values", []) or []

    def _append_rows(self, tab: str, last_col: str, rows: List[List[Any]]) -> None:
        if not rows:
            return
        svc = self._sheets_service()
        svc.spreadsheets().values().append(
            spreadsheetId=self.spreadsheet_id,
            range=f"{tab}!A:{last_col}",
            valueInputOption="RAW",
            insertDataOption="INSERT_ROWS",
            body={"values": rows}
        ).execute()

    # ---------- Tabs & headers ----------

    def ensure_tabs_and_headers(self):
        """Make sure the RotationConfigs and Points tabs exist with their headers."""
        svc = self._sheets_service()
        meta = svc.spreadsheets().get(spreadsheetId=self.spreadsheet_id).execute()

        # normalize existing titles
        titles_norm = {(s["properties"]["title"] or "").strip().lower() for s in meta.get("sheets", [])}

        requests = [
            {"addSheet": {"properties": {"title": tab}}}
            for tab in (self.configs_tab, self.points_tab)
            if tab.strip().lower() not in titles_norm
        ]
        if requests:
            try:
                svc.spreadsheets().batchUpdate(
                    spreadsheetId=self.spreadsheet_id,
                    body={"requests": requests}
                ).execute()
            except Exception as e:
                msg = str(e).lower()
                if "already exists" not in msg:
                    raise

        for tab, expected in ((self.configs_tab, CONFIG_HEADER), (self.points_tab, POINTS_HEADER)):
            header_range = f"{tab}!A1:{_last_col(expected)}1"
            vals = self._get_values(header_range)
            row = [c.strip() for c in vals[0]] if vals else []
            if row[:len(expected)] == expected:
                continue
            svc.spreadsheets().values().update(
                spreadsheetId=self.spreadsheet_id,
                range=header_range,
                valueInputOption="RAW",
                body={"values": [expected]}
            ).execute()

    # ---------- Rotation configurations ----------

    def save_set_configuration(
        self,
        match_id: str,
        set_number: int,
        home: TeamRotationConfiguration,
        opponent: TeamRotationConfiguration,
        starting_server: str,
    ) -> None:
        """Append a snapshot; the last row for a match/set wins on load."""
        configured_at = datetime.utcnow().isoformat() + "Z"
        self._append_rows(self.configs_tab, "F", [[
            match_id,
            str(set_number),
            json.dumps(config_to_dict(home)),
            json.dumps(config_to_dict(opponent)),
            starting_server,
            configured_at,
        ]])

    def _latest_config_row(self, match_id: str, set_number: int) -> Optional[List[str]]:
        rows = self._get_values(f"{self.configs_tab}!A2:F")

        latest = None
        for r in rows:
            if len(r) < 5:
                continue
            if (r[0] or "").strip() != match_id or (r[1] or "").strip() != str(set_number):
                continue
            latest = r
        return latest

    def configuration_time(self, match_id: str, set_number: int) -> str:
        """configured_at of the configuration load_set_configuration would return, or ""."""
        latest = self._latest_config_row(match_id, set_number)
        return _cell(latest, 5) if latest else ""

    def load_set_configuration(
        self,
        match_id: str,
        set_number: int,
        home_roster: Optional[Iterable[RosterPlayer]] = None,
        opponent_roster: Optional[Iterable[RosterPlayer]] = None,
    ) -> Optional[Tuple[TeamRotationConfiguration, TeamRotationConfiguration, str]]:
        latest = self._latest_config_row(match_id, set_number)
        if latest is None:
            return None

        try:
            home_data = json.loads(latest[2] or "{}")
            opponent_data = json.loads(latest[3] or "{}")
        except ValueError as e:
            raise RuntimeError(f"Stored configuration for {match_id} set {set_number} is not valid JSON: {e}") from e

        starting_server = (latest[4] or "home").strip().lower()
        return (
            config_from_dict(home_data, home_roster),
            config_from_dict(opponent_data, opponent_roster),
            starting_server,
        )

    # ---------- Set history ----------

    def append_event(
        self,
        match_id: str,
        set_number: int,
        seq: int,
        event: SetEvent,
        serving_team: str,
    ) -> None:
        """Append one point or manual correction; seq orders the replay."""
        recorded_at = datetime.utcnow().isoformat() + "Z"
        self._append_rows(self.points_tab, _last_col(POINTS_HEADER), [[
            match_id,
            str(set_number),
            str(seq),
            event.team,
            serving_team,
            recorded_at,
            event.kind,
            event.detail,
        ]])

    def _history_rows(self, match_id: str, set_number: int, since: str = "") -> List[Dict[str, Any]]:
        rows = self._get_values(f"{self.points_tab}!A2:{_last_col(POINTS_HEADER)}")

        by_seq: Dict[int, Dict[str, Any]] = {}
        for r in rows:
            if len(r) < 4:
                continue
            if (r[0] or "").strip() != match_id or (r[1] or "").strip() != str(set_number):
                continue
            try:
                seq = int(r[2])
            except ValueError:
                continue
            # rows from before a reconfiguration of the set are stale
            if since and _cell(r, 5) < since:
                continue

            # a re-recorded seq replaces the earlier row
            by_seq[seq] = {
                "seq": seq,
                "event": _cell(r, 6).lower() or POINT,
                "team": _cell(r, 3).lower(),
                "serving_team": _cell(r, 4).lower(),
                "detail": _cell(r, 7),
            }

        return [by_seq[k] for k in sorted(by_seq)]

    def get_events_for_set(self, match_id: str, set_number: int, since: str = "") -> List[SetEvent]:
        """
        The set history in recorded order, ready for RotationStateMachine.replay.
        since (an ISO timestamp, usually configuration_time) drops older rows.
        """
        return [
            SetEvent(kind=row["event"], team=row["team"], detail=row["detail"], seq=row["seq"])
            for row in self._history_rows(match_id, set_number, since)
        ]

    def get_points_for_set(self, match_id: str, set_number: int) -> List[Dict[str, Any]]:
        """Only the points of one set, numbered from 1 in recorded order."""
        points = [row for row in self._history_rows(match_id, set_number) if row["event"] == POINT]
        return [
            {"point_number": n, "scoring_team": row["team"], "serving_team": row["serving_team"]}
            for n, row in enumerate(points, start=1)
        ]
