import json
from pathlib import Path

import pytest

from spendcat.errors import CategoryExistsError, UnknownCategoryError
from spendcat.registry import DEFAULT_CATEGORIES, CategoryRegistry, normalize_label, validate_label


def test_defaults_seeded():
    reg = CategoryRegistry()
    assert reg.list() == frozenset(DEFAULT_CATEGORIES)
    assert "food" in reg
    assert reg.resolve("  groceries ") == "Groceries"


def test_explicit_empty_seed_starts_empty():
    reg = CategoryRegistry(labels=[])
    assert reg.list() == frozenset()
    assert reg.labels() == []


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("  dining   out ", "Dining Out"),
        ("ATM fees", "ATM Fees"),
        ("kids' stuff", "Kids' Stuff"),
    ],
)
def test_normalize_label(raw: str, expected: str):
    assert normalize_label(raw) == expected


def test_validate_label_rejects_bad_names():
    assert not validate_label("   ").ok
    assert not validate_label("x" * 65).ok
    assert not validate_label("Food<script>").ok
    assert validate_label("Home & Garden").ok


def test_propose_is_pure():
    reg = CategoryRegistry(["Food"])
    assert reg.propose("pet care") == "Pet Care"
    assert "Pet Care" not in reg
    with pytest.raises(ValueError):
        reg.propose("")


def test_confirm_add_and_duplicate():
    reg = CategoryRegistry(["Food"])
    assert reg.confirm_add("pet care") == "Pet Care"
    assert reg.list() == frozenset({"Food", "Pet Care"})
    with pytest.raises(CategoryExistsError) as ei:
        reg.confirm_add("FOOD")
    assert ei.value.label == "Food"


def test_require_names_the_offending_label():
    reg = CategoryRegistry(["Food"])
    with pytest.raises(UnknownCategoryError) as ei:
        reg.require("Gadgets")
    assert ei.value.label == "Gadgets"
    assert "Gadgets" in str(ei.value)


def test_persistence_round_trip(tmp_path: Path):
    path = tmp_path / "categories.json"
    reg = CategoryRegistry(["Food"], path=path)
    assert not path.exists()
    reg.confirm_add("Travel")

    doc = json.loads(path.read_text(encoding="utf-8"))
    assert doc == {"schema_version": 1, "labels": ["Food", "Travel"]}
    assert not list(tmp_path.glob("*.tmp"))

    reloaded = CategoryRegistry(["Ignored"], path=path)
    assert reloaded.labels() == ["Food", "Travel"]


def test_unreadable_registry_file_raises(tmp_path: Path):
    path = tmp_path / "categories.json"
    path.write_text("{broken", encoding="utf-8")
    with pytest.raises(ValueError):
        CategoryRegistry(path=path)
