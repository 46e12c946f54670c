from __future__ import annotations

import re

from domain import CustomReference, TeamRotationConfiguration


NAMES_51 = {
    "S": ("Yennie", 1),
    "OH (w.s)": ("Alice", 2),
    "MB": ("Elly", 3),
    "Oppo": ("Toby", 4),
    "OH": ("Amei", 5),
    "MB (w.s)": ("Venus", 6),
}

LIBERO = CustomReference(jersey_number=9, display_name="Ding")


def make_config(
    system: str = "5-1 (OH>S)",
    starting_p1: str = "OH (w.s)",
    roles=None,
    libero=LIBERO,
    targets=("MB", "MB (w.s)"),
    current_rotation: int = 1,
) -> TeamRotationConfiguration:
    if roles is None:
        players = {role: CustomReference(jersey_number=n, display_name=name) for role, (name, n) in NAMES_51.items()}
    else:
        players = {role: CustomReference(jersey_number=i + 1, display_name=role) for i, role in enumerate(roles)}
    return TeamRotationConfiguration(
        system=system,
        players=players,
        starting_p1=starting_p1,
        libero=libero,
        libero_replacement_targets=tuple(targets),
        current_rotation=current_rotation,
    )


def roles_of(lineup):
    return {pos: (occ.role if occ else None) for pos, occ in lineup.items()}


# ---------- In-memory stand-in for the Sheets v4 discovery service ----------

_RANGE = re.compile(r"^(?P<tab>[^!]+)!\$?[A-Z]+(?P<start>\d*)(?::\$?[A-Z]+(?P<end>\d*))?$")


class _Call:
    def __init__(self, fn):
        self._fn = fn

    def execute(self):
        return self._fn()


class FakeValues:
    def __init__(self, tabs):
        self.tabs = tabs

    def _parse(self, range_name):
        m = _RANGE.match(range_name)
        assert m, f"unexpected range {range_name}"
        start = int(m.group("start") or 1)
        end = int(m.group("end")) if m.group("end") else None
        return m.group("tab"), start, end

    def get(self, spreadsheetId, range):
        def run():
            tab, start, end = self._parse(range)
            rows = self.tabs.get(tab, [])
            picked = rows[start - 1:end]
            return {"values": [list(r) for r in picked]} if picked else {}
        return _Call(run)

    def update(self, spreadsheetId, range, valueInputOption, body):
        def run():
            tab, start, _ = self._parse(range)
            rows = self.tabs.setdefault(tab, [])
            for offset, row in enumerate(body["values"]):
                idx = start - 1 + offset
                while len(rows) <= idx:
                    rows.append([])
                rows[idx] = [str(c) for c in row]
            return {}
        return _Call(run)

    def append(self, spreadsheetId, range, valueInputOption, insertDataOption, body):
        def run():
            tab, _, _ = self._parse(range)
            self.tabs.setdefault(tab, []).extend([str(c) for c in row] for row in body["values"])
            return {}
        return _Call(run)


class FakeSpreadsheets:
    def __init__(self, tabs):
        self.tabs = tabs
        self._values = FakeValues(tabs)

    def get(self, spreadsheetId):
        return _Call(lambda: {"sheets": [{"properties": {"title": t}} for t in self.tabs]})

    def batchUpdate(self, spreadsheetId, body):
        def run():
            for req in body["requests"]:
                self.tabs.setdefault(req["addSheet"]["properties"]["title"], [])
            return {}
        return _Call(run)

    def values(self):
        return self._values


class FakeSheetsService:
    def __init__(self, tabs=None):
        self.tabs = tabs if tabs is not None else {}
        self._spreadsheets = FakeSpreadsheets(self.tabs)

    def spreadsheets(self):
        return self._spreadsheets
