from __future__ import annotations

import pytest

from domain import RosterPlayer, RosterReference
from tests.helpers import FakeSheetsService, make_config


@pytest.fixture
def config_51():
    return make_config()


@pytest.fixture
def roster():
    return [
        RosterPlayer(id="p-1", team_id="T1", name="Yennie", jersey_number=1),
        RosterPlayer(id="p-9", team_id="T1", name="Ding", jersey_number=9),
        RosterPlayer(id="p-12", team_id="T1", name="", jersey_number=12),
    ]


@pytest.fixture
def roster_config(config_51):
    config_51.players["S"] = RosterReference(player_id="p-1", team_id="T1")
    config_51.libero = RosterReference(player_id="p-9", team_id="T1")
    return config_51


@pytest.fixture
def fake_sheets():
    return FakeSheetsService()
