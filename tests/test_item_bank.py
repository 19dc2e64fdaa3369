from __future__ import annotations

from adaptive_core.item_bank import InMemoryItemBank
from adaptive_core.types import Item


def _bank() -> InMemoryItemBank:
    return InMemoryItemBank(
        [
            Item(id="a1", difficulty_tier="beginner", tags=["algebra"]),
            Item(id="g1", difficulty_tier="advanced", tags=["geometry"], type="essay"),
            Item(id="x1", difficulty_tier="beginner", tags=[""]),
            Item(id="n1", difficulty_tier="expert"),
        ]
    )


def test_search_filters_by_tier_type_and_exclusions():
    bank = _bank()
    assert [it.id for it in bank.search_items(tier="beginner")] == ["a1", "x1"]
    assert [it.id for it in bank.search_items(type="essay")] == ["g1"]
    assert [it.id for it in bank.search_items(tier="beginner", exclude_ids=["a1"])] == ["x1"]
    assert bank.get_item("g1").tags == ["geometry"]
    assert bank.get_item("missing") is None


def test_tag_search_ignores_blank_tags():
    bank = _bank()
    assert [it.id for it in bank.search_items(tags=["ALG"])] == ["a1"]
    assert bank.search_items(tags=["statistics"]) == []
    assert len(bank.search_items(tags=[""])) == 4


def test_packaged_bank_loads():
    bank = InMemoryItemBank.packaged()
    assert len(bank) == 24
    assert all(bank.get_item(it.id) is it for it in bank.all_items())
