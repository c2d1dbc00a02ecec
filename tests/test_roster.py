from __future__ import annotations

import pytest

from splitbill.roster import Roster


def test_add_trims_and_appends() -> None:
    roster = Roster()
    first = roster.add("  Ali ")
    second = roster.add("Budi")

    assert first is not None and first.name == "Ali"
    assert second is not None
    assert roster.names == ["Ali", "Budi"]


def test_adding_same_name_twice_keeps_one_entry() -> None:
    roster = Roster()
    roster.add("Ali")
    assert roster.add("Ali") is None
    assert len(roster) == 1


def test_duplicate_check_is_case_sensitive() -> None:
    roster = Roster()
    roster.add("Ali")
    assert roster.add("ali") is not None
    assert roster.names == ["Ali", "ali"]


@pytest.mark.parametrize("name", ["", "   ", "\t\n"])
def test_blank_names_are_ignored(name: str) -> None:
    roster = Roster()
    assert roster.add(name) is None
    assert len(roster) == 0


def test_remove_returns_person_and_keeps_order() -> None:
    roster = Roster()
    for name in ("Ali", "Budi", "Citra"):
        roster.add(name)

    removed = roster.remove(1)
    assert removed.name == "Budi"
    assert roster.names == ["Ali", "Citra"]


@pytest.mark.parametrize("index", [-1, 2, 10])
def test_remove_out_of_range_raises(index: int) -> None:
    roster = Roster()
    roster.add("Ali")
    roster.add("Budi")
    with pytest.raises(IndexError):
        roster.remove(index)
    assert len(roster) == 2


def test_ids_are_stable_across_removal() -> None:
    roster = Roster()
    roster.add("Ali")
    budi = roster.add("Budi")
    citra = roster.add("Citra")
    assert budi is not None and citra is not None

    roster.remove(0)
    assert roster.ids == [budi.id, citra.id]
    assert roster.index_of(citra.id) == 1
    assert roster.index_of("missing") is None
