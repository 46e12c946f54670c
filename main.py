# main.py: FastAPI surface over the rotation engine (SheetsRepository for persistence)

from __future__ import annotations

import os
import base64
import json
import logging
from html import escape
from typing import Dict, Optional
from datetime import datetime

import requests
from fastapi import FastAPI, UploadFile, File, Body
from fastapi.responses import HTMLResponse, JSONResponse

from algorithm import VOLLEYBALL_SYSTEMS, RoleSystem
from csv_parser import CsvParser
from domain import (
    HOME,
    LIBERO_IN,
    LIBERO_OUT,
    OPPONENT,
    POINT,
    POSITIONS,
    ROTATE,
    TEAMS,
    RotationError,
    SetEvent,
    lineup_to_dict,
)
from lineup import LineupAssembler, to_rally
from rotation_state import RotationStateMachine, FORWARD
from sheets_repository import SheetsRepository, config_from_dict

# ----------------------- Config -----------------------
GOOGLE_SHEET_ID = os.getenv("GOOGLE_SHEET_ID", "").strip()
ROTATION_CONFIGS_TAB = os.getenv("ROTATION_CONFIGS_TAB", "RotationConfigs")
POINTS_TAB = os.getenv("POINTS_TAB", "Points")
SERVICE_ACCOUNT_FILE = os.getenv("SERVICE_ACCOUNT_FILE", "service_account.json")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Volleyball Rotations")

STATE = {
    "match_id": None,
    "set_number": None,
    "machine": RotationStateMachine(),
    "rosters": {HOME: [], OPPONENT: []},   # team -> [RosterPlayer]
    "point_number": 1,
    "event_number": 1,    # next seq in the set history
    "updated_at": None,
}

csv_parser = CsvParser()
sheets_repo = SheetsRepository(
    spreadsheet_id=GOOGLE_SHEET_ID,
    configs_tab=ROTATION_CONFIGS_TAB,
    points_tab=POINTS_TAB,
    service_account_file=SERVICE_ACCOUNT_FILE,
)


# ----------------- Helpers ---------------------------
def _touch_state():
    STATE["updated_at"] = datetime.utcnow().isoformat() + "Z"


def _norm(s: Optional[str]) -> str:
    return (s or "").strip().lower()


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message}, status_code=status_code)


def _machine() -> RotationStateMachine:
    return STATE["machine"]


def _record_event(event: SetEvent, serving_team: str) -> None:
    """Best-effort append to the set history; restore replays it in order."""
    seq = STATE["event_number"]
    STATE["event_number"] = seq + 1
    if not STATE["match_id"]:
        return
    try:
        sheets_repo.append_event(STATE["match_id"], _machine().set_number, seq, event, serving_team)
    except Exception as e:
        logger.warning("Could not record %s event %d: %s", event.kind, seq, e)


def _state_payload(formation: str = "serving") -> Dict:
    machine = _machine()
    teams = {}
    for team in TEAMS:
        ts = machine.team(team)
        lineup = to_rally(ts.lineup) if formation == "rally" else ts.lineup
        teams[team] = {
            "rotation": ts.current_rotation,
            "system": ts.config.system,
            "lineup": lineup_to_dict(lineup),
            "libero": {
                "is_active": ts.swap_state.is_active,
                "replaced_role": ts.swap_state.replaced_role,
                "is_manual_lock": ts.swap_state.is_manual_lock,
            },
        }
    return {
        "ok": True,
        "match_id": STATE["match_id"],
        "set_number": machine.set_number,
        "serving_team": machine.serving_team,
        "point_number": STATE["point_number"],
        "formation": formation,
        "teams": teams,
        "updated_at": STATE["updated_at"],
    }


# ----------------- HTML rotation card ------------------------

def build_rotation_card_html(team: str) -> str:
    """Six rotations of one team (receiving, automatic libero) as a static page."""
    ts = _machine().team(team)
    assembler = LineupAssembler()

    html = """
<!doctype html>
<html>
<head>
  <meta name="viewport" content="width=device-width,initial-scale=1" />
  <title>Rotations</title>
  <style>
    body { font-family: system-ui, Arial; margin:0; padding:16px; }
    h2 { margin-top: 0; }
    .grid { display:grid; grid-template-columns: repeat(auto-fit, minmax(240px, 1fr)); gap:16px; }
    .card { border:1px solid #ddd; border-radius:10px; padding:12px; }
    .title { font-size:18px; margin:0 0 8px 0; }
    .court { display:grid; grid-template-columns: repeat(3, 1fr); gap:6px; }
    .cell { border:1px solid #ccc; border-radius:6px; padding:6px; font-size:13px; text-align:center; }
    .pos { font-weight:bold; display:block; }
    .libero { background:#fde9c9; }
    .current { border-color:#0078d7; border-width:2px; }
    @media (prefers-color-scheme: dark) {
      body { background:#111; color:#eee; }
      .card, .cell { border-color:#333; }
      .libero { background:#4a3a1a; }
    }
  </style>
</head>
<body>
"""
    html += f"<h2>{escape(team.title())}: {escape(ts.config.system)}</h2>\n  <div class=\"grid\">\n"

    # front row on top (P4 P3 P2), back row below (P5 P6 P1)
    layout = ("P4", "P3", "P2", "P5", "P6", "P1")
    for r in range(1, 7):
        lineup = assembler.assemble(ts.config, r, ts.roster)
        card_class = "card current" if r == ts.current_rotation else "card"
        html += f'<div class="{card_class}"><h3 class="title">Rotation {r}</h3><div class="court">'
        for pos in layout:
            occ = lineup[pos]
            if occ is None:
                html += f"<div class='cell'><span class='pos'>{pos}</span>-</div>"
                continue
            cls = "cell libero" if occ.is_libero() else "cell"
            role = occ.role if not occ.is_libero() else f"L ({occ.original_role})"
            html += (
                f"<div class='{cls}'><span class='pos'>{pos}</span>"
                f"#{occ.jersey_number} {escape(occ.display_name)}<br>{escape(role)}</div>"
            )
        html += "</div></div>"

    html += """
  </div>
</body>
</html>
"""
    return html


def push_snapshot_to_github(html: str, name: str) -> None:
    """
    Push a static HTML snapshot to the GitHub Pages repo.
    - name: file name without extension, e.g. 'match-42-set-1-home'
    """
    gh_token = os.getenv("GH_TOKEN", "").strip()
    gh_repo = os.getenv("GH_REPO", "").strip()
    gh_branch = os.getenv("GH_BRANCH", "main").strip()
    base_path = os.getenv("GH_BASE_PATH", "rotations").strip()

    if not gh_token or not gh_repo:
        return

    path = f"{base_path}/{name}.html"
    api_url = f"https://api.github.com/repos/{gh_repo}/contents/{path}"

    content_b64 = base64.b64encode(html.encode("utf-8")).decode("ascii")

    headers = {
        "Authorization": f"Bearer {gh_token}",
        "Accept": "application/vnd.github+json",
    }

    # existing file needs its SHA for an update
    sha = None
    try:
        get_resp = requests.get(api_url, headers=headers, params={"ref": gh_branch}, timeout=10)
        if get_resp.status_code == 200:
            sha = get_resp.json().get("sha")
    except requests.RequestException as e:
        logger.warning("GitHub lookup for %s failed: %s", path, e)

    body = {
        "message": f"Update rotation card {name}",
        "content": content_b64,
        "branch": gh_branch,
    }
    if sha:
        body["sha"] = sha

    resp = requests.put(api_url, headers=headers, data=json.dumps(body), timeout=10)
    resp.raise_for_status()


# ----------------- API: systems & rosters --------------------

@app.get("/api/systems")
def list_systems():
    return {
        "ok": True,
        "systems": {
            name: {
                "roles": list(roles),
                "default_libero_targets": list(RoleSystem.default_libero_targets(name)),
            }
            for name, roles in VOLLEYBALL_SYSTEMS.items()
        },
    }


@app.post("/api/rosters/{team}/upload-csv")
async def upload_roster(team: str, file: UploadFile = File(...), team_id: Optional[str] = None):
    team = _norm(team)
    if team not in TEAMS:
        return _error(f"Unknown team '{team}'.", 404)

    content = await file.read()
    roster = csv_parser.parse_roster_from_bytes(content, team_id or team)
    if not roster:
        return _error("No players parsed from CSV.", 422)

    STATE["rosters"][team] = roster
    _touch_state()
    return {
        "ok": True,
        "team": team,
        "total_players": len(roster),
        "players": [
            {"id": p.id, "team_id": p.team_id, "name": p.name, "jersey_number": p.jersey_number}
            for p in roster
        ],
    }


# ----------------- API: set configuration --------------------

@app.post("/api/matches/{match_id}/sets/{set_number}/configure")
def configure_set(match_id: str, set_number: int, payload: dict = Body(...)):
    """
    Payload:
      {
        "starting_server": "home" | "opponent",
        "home":     {"system": "5-1 (OH>S)", "players": {role: ref}, "starting_p1": "...",
                     "libero": ref | null, "libero_replacement_targets": [...], "current_rotation": 1},
        "opponent": {...}
      }
    where ref is {"type": "roster", "player_id": "..."} or
                 {"type": "custom", "jersey_number": 7, "display_name": "..."}.
    """
    if not payload or not isinstance(payload.get(HOME), dict) or not isinstance(payload.get(OPPONENT), dict):
        return _error("Payload needs 'home' and 'opponent' configurations.", 400)

    starting_server = _norm(payload.get("starting_server")) or HOME
    home_roster = STATE["rosters"][HOME]
    opponent_roster = STATE["rosters"][OPPONENT]
    home_config = config_from_dict(payload[HOME], home_roster)
    opponent_config = config_from_dict(payload[OPPONENT], opponent_roster)

    machine = RotationStateMachine()
    try:
        machine.start_set(
            set_number,
            home_config,
            opponent_config,
            starting_server=starting_server,
            home_roster=home_roster,
            opponent_roster=opponent_roster,
        )
    except RotationError as e:
        return _error(str(e), 422)

    STATE["machine"] = machine
    STATE["match_id"] = match_id
    STATE["set_number"] = set_number
    STATE["point_number"] = 1
    STATE["event_number"] = 1
    _touch_state()

    try:
        sheets_repo.ensure_tabs_and_headers()
        sheets_repo.save_set_configuration(match_id, set_number, home_config, opponent_config, starting_server)
    except Exception as e:
        logger.warning("Could not save configuration for %s set %s: %s", match_id, set_number, e)

    return _state_payload()


@app.post("/api/matches/{match_id}/sets/{set_number}/restore")
def restore_set(match_id: str, set_number: int):
    """Rebuild the live state from the stored configuration and set history."""
    try:
        sheets_repo.ensure_tabs_and_headers()
        stored = sheets_repo.load_set_configuration(
            match_id, set_number, STATE["rosters"][HOME], STATE["rosters"][OPPONENT]
        )
        events = []
        if stored:
            since = sheets_repo.configuration_time(match_id, set_number)
            events = sheets_repo.get_events_for_set(match_id, set_number, since=since)
    except Exception as e:
        return _error(f"Sheets error: {e}", 500)

    if stored is None:
        return _error(f"No configuration stored for {match_id} set {set_number}.", 404)

    home_config, opponent_config, starting_server = stored
    machine = RotationStateMachine()
    try:
        machine.start_set(
            set_number,
            home_config,
            opponent_config,
            starting_server=starting_server,
            home_roster=STATE["rosters"][HOME],
            opponent_roster=STATE["rosters"][OPPONENT],
        )
        machine.replay(events)
    except RotationError as e:
        return _error(f"Stored set cannot be restored: {e}", 422)

    STATE["machine"] = machine
    STATE["match_id"] = match_id
    STATE["set_number"] = set_number
    STATE["point_number"] = sum(1 for e in events if e.kind == POINT) + 1
    # a failed best-effort write leaves a gap; never reuse a stored seq
    STATE["event_number"] = max((e.seq for e in events), default=0) + 1
    _touch_state()
    return _state_payload()


# ----------------- API: live state --------------------

@app.get("/api/state")
def get_state(formation: str = "serving"):
    formation = _norm(formation)
    if formation not in ("serving", "rally"):
        return _error("formation must be 'serving' or 'rally'.", 400)
    try:
        return _state_payload(formation)
    except RotationError as e:
        return _error(str(e), 409)


@app.post("/api/point")
def record_point(payload: dict = Body(...)):
    """Payload: {"scoring_team": "home" | "opponent"}"""
    scoring_team = _norm((payload or {}).get("scoring_team"))
    machine = _machine()
    previous_serving = machine.serving_team

    try:
        result = machine.on_point_end(scoring_team, previous_serving)
    except RotationError as e:
        return _error(str(e), 422)

    STATE["point_number"] += 1
    _touch_state()
    _record_event(SetEvent(kind=POINT, team=scoring_team), previous_serving)

    payload_out = _state_payload()
    payload_out["rotation_advanced"] = result.rotation_advanced
    return payload_out


@app.post("/api/teams/{team}/rotate")
def rotate_team(team: str, payload: Optional[dict] = Body(default=None)):
    """Payload: {"direction": "forward" | "backward"} (default forward)"""
    team = _norm(team)
    direction = _norm((payload or {}).get("direction")) or FORWARD
    try:
        _machine().manual_rotate(team, direction)
    except RotationError as e:
        return _error(str(e), 422)
    _touch_state()
    _record_event(SetEvent(kind=ROTATE, team=team, detail=direction), _machine().serving_team)
    return _state_payload()


@app.post("/api/teams/{team}/libero/swap-in")
def libero_swap_in(team: str, payload: dict = Body(...)):
    """Payload: {"position": "P1" | "P5" | "P6"}"""
    team = _norm(team)
    position = ((payload or {}).get("position") or "").strip().upper()
    if position not in POSITIONS:
        return _error(f"Unknown position '{position}'.", 400)
    try:
        _machine().libero_swap_in(team, position)
    except RotationError as e:
        return _error(str(e), 422)
    _touch_state()
    _record_event(SetEvent(kind=LIBERO_IN, team=team, detail=position), _machine().serving_team)
    return _state_payload()


@app.post("/api/teams/{team}/libero/swap-out")
def libero_swap_out(team: str):
    team = _norm(team)
    try:
        _machine().libero_swap_out(team)
    except RotationError as e:
        return _error(str(e), 422)
    _touch_state()
    _record_event(SetEvent(kind=LIBERO_OUT, team=team), _machine().serving_team)
    return _state_payload()


# ----------------- Rotation card --------------------

@app.get("/rotation-card/{team}", response_class=HTMLResponse)
def show_rotation_card(team: str):
    try:
        return build_rotation_card_html(_norm(team))
    except RotationError as e:
        return HTMLResponse(f"<p>{escape(str(e))}</p>", status_code=404)


@app.post("/rotation-card/{team}/publish")
def publish_rotation_card(team: str):
    team = _norm(team)
    try:
        html = build_rotation_card_html(team)
    except RotationError as e:
        return _error(str(e), 404)

    name = f"{STATE['match_id'] or 'match'}-set-{_machine().set_number}-{team}"
    try:
        push_snapshot_to_github(html, name)
    except requests.RequestException as e:
        return _error(f"GitHub error: {e}", 502)
    return {"ok": True, "name": name}


@app.post("/reset")
def reset_all():
    STATE["match_id"] = None
    STATE["set_number"] = None
    STATE["machine"] = RotationStateMachine()
    STATE["rosters"] = {HOME: [], OPPONENT: []}
    STATE["point_number"] = 1
    STATE["event_number"] = 1
    _touch_state()
    return {"ok": True, "updated_at": STATE["updated_at"]}
