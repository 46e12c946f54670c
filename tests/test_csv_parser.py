from __future__ import annotations

from csv_parser import CsvParser
from domain import RosterPlayer


def parse(text: str, team_id: str = "T1"):
    return CsvParser().parse_roster_from_bytes(text.encode("utf-8"), team_id)


def test_parses_ids_names_and_jerseys():
    roster = parse("id,name,number\np-1,Yennie,1\np-2,Alice,#2\n")
    assert roster == [
        RosterPlayer(id="p-1", team_id="T1", name="Yennie", jersey_number=1),
        RosterPlayer(id="p-2", team_id="T1", name="Alice", jersey_number=2),
    ]


def test_headers_are_case_insensitive_and_bom_is_stripped():
    roster = CsvParser().parse_roster_from_bytes("\ufeffPlayer_ID,Preferred Name,Jersey\nx,Kim, 07 \n".encode("utf-8"), "T2")
    # "preferred name" is not a known header; the row still has a jersey
    assert roster == [RosterPlayer(id="x", team_id="T2", name="", jersey_number=7)]


def test_missing_id_is_generated_from_row_number():
    roster = parse("name,number\nYennie,1\nAlice,2\n")
    assert [p.id for p in roster] == ["T1-1", "T1-2"]


def test_rows_without_name_or_jersey_are_skipped():
    roster = parse("name,number\n,\n,abc\nElly,3\n")
    assert [p.name for p in roster] == ["Elly"]


def test_non_positive_jersey_becomes_zero():
    roster = parse("name,number\nToby,-4\nAmei,0\n")
    assert [p.jersey_number for p in roster] == [0, 0]


def test_duplicate_ids_keep_the_first(caplog):
    roster = parse("id,name\np-1,Yennie\np-1,Someone else\n")
    assert [p.name for p in roster] == ["Yennie"]
    assert "Duplicate player id" in caplog.text
