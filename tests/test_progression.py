"""
Quest Companion — tests/test_progression.py
Level curve, XP table, choice pool and profile persistence.
"""

import json
import os
import random
from collections import Counter

import pytest
from hypothesis import given, strategies as st

from companion import progression
from companion.data_loader import ItemDef, ItemSlot, get_item_registry
from companion.events import ThinkLevel
from companion.progression import (
    CareerProfile,
    ProfileWriteError,
    ProgressionLedger,
    level_from_xp,
    xp_for_level,
)

REGISTRY = (
    ItemDef(id="wizard", name="Wizard Hat", slot=ItemSlot.HAT, min_level=1, starter=True),
    ItemDef(id="party", name="Party Hat", slot=ItemSlot.HAT, min_level=2),
    ItemDef(id="monocle", name="Monocle", slot=ItemSlot.FACE, min_level=3),
    ItemDef(id="crown", name="Royal Crown", slot=ItemSlot.HAT, min_level=10),
)


def make_ledger(tmp_path, xp=0, seed=1, registry=REGISTRY):
    profile = CareerProfile(xp=xp, level=level_from_xp(xp))
    return ProgressionLedger(profile, registry, tmp_path / "profile.json", rng=random.Random(seed))


# ============================================================
# LEVEL CURVE
# ============================================================

def test_xp_for_level_values():
    assert xp_for_level(-3) == 0
    assert xp_for_level(0) == 0
    assert xp_for_level(1) == 100
    assert xp_for_level(2) == 400
    assert xp_for_level(10) == 10000


@given(st.integers(min_value=0, max_value=10**9))
def test_level_from_xp_brackets_xp(xp):
    level = level_from_xp(xp)
    assert xp_for_level(level) <= xp < xp_for_level(level + 1)


@given(st.integers(min_value=0, max_value=10**7), st.integers(min_value=0, max_value=10**7))
def test_level_from_xp_is_monotonic(a, b):
    lo, hi = sorted((a, b))
    assert level_from_xp(lo) <= level_from_xp(hi)


@given(st.lists(st.integers(min_value=0, max_value=5000), max_size=50))
def test_level_always_derived_from_xp(grants):
    profile = CareerProfile()
    for amount in grants:
        profile.add_xp(amount)
        assert profile.level == level_from_xp(profile.xp)


def test_add_xp_scenarios():
    profile = CareerProfile()
    assert profile.add_xp(50) is False
    assert profile.level == 0
    assert not profile.pending_choice

    assert profile.add_xp(50) is True
    assert profile.level == 1
    assert profile.pending_choice

    assert profile.add_xp(350) is True
    assert (profile.xp, profile.level) == (450, 2)

    assert profile.add_xp(10000) is True
    assert profile.level == 10


def test_xp_progress_helpers():
    profile = CareerProfile(xp=250, level=1)
    assert profile.xp_to_next_level() == 150
    assert profile.xp_progress() == pytest.approx(0.5)


# ============================================================
# XP TABLE
# ============================================================

def test_record_activity_xp():
    profile = CareerProfile()
    profile.record_read()
    assert profile.xp == 5
    profile.record_write()
    assert profile.xp == 15
    profile.record_bash(success=True, streak=1)
    assert profile.xp == 30
    profile.record_bash(success=True, streak=2)
    assert profile.xp == 50
    profile.record_bash(success=False, streak=0)
    assert profile.xp == 55
    profile.record_todo_complete()
    assert profile.xp == 75
    profile.record_agent_complete()
    assert profile.xp == 105
    profile.record_flow_peak()
    assert profile.xp == 205

    assert profile.total_reads == 1
    assert profile.total_writes == 1
    assert profile.total_bash == 3
    assert profile.bash_successes == 2
    assert profile.best_bash_streak == 2
    assert profile.peak_flow_count == 1


def test_thinking_xp_by_tier():
    expected = {ThinkLevel.NORMAL: 10, ThinkLevel.HARD: 25, ThinkLevel.HARDER: 35, ThinkLevel.ULTRA: 45}
    for level, xp in expected.items():
        profile = CareerProfile()
        profile.record_thinking(level)
        assert profile.xp == xp

    profile = CareerProfile()
    profile.record_thinking(ThinkLevel.HARD)
    profile.record_thinking(ThinkLevel.HARD)
    profile.record_thinking(ThinkLevel.ULTRA)
    assert profile.total_thinking == {"hard": 2, "ultra": 1}


def test_tokens_give_no_xp():
    profile = CareerProfile()
    profile.record_tokens(12000)
    assert profile.tokens_consumed == 12000
    assert profile.xp == 0


# ============================================================
# CHOICE POOL
# ============================================================

def test_starters_owned_from_the_start(tmp_path):
    ledger = make_ledger(tmp_path)
    assert ledger.profile.is_owned("wizard")


def test_choice_pool_respects_level_ownership_and_starters(tmp_path):
    assert make_ledger(tmp_path, xp=0).get_choice_pool() == []

    ledger = make_ledger(tmp_path, xp=400)  # level 2
    assert [i.id for i in ledger.get_choice_pool()] == ["party"]

    ledger = make_ledger(tmp_path, xp=900)  # level 3
    assert [i.id for i in ledger.get_choice_pool()] == ["party", "monocle"]

    ledger.claim_item("party")
    assert [i.id for i in ledger.get_choice_pool()] == ["monocle"]


def test_random_choices_small_pool_returns_whole_pool(tmp_path):
    ledger = make_ledger(tmp_path, xp=900)
    assert [i.id for i in ledger.get_random_choices(3)] == ["party", "monocle"]


def test_random_choices_are_distinct_and_from_pool(tmp_path):
    ledger = make_ledger(tmp_path, xp=xp_for_level(50), registry=get_item_registry())
    pool_ids = {i.id for i in ledger.get_choice_pool()}
    for _ in range(50):
        choices = ledger.get_random_choices(3)
        ids = [i.id for i in choices]
        assert len(ids) == 3
        assert len(set(ids)) == 3
        assert set(ids) <= pool_ids


def test_random_choices_deterministic_under_seed(tmp_path):
    registry = get_item_registry()
    a = make_ledger(tmp_path, xp=xp_for_level(30), seed=7, registry=registry)
    b = make_ledger(tmp_path, xp=xp_for_level(30), seed=7, registry=registry)
    assert [i.id for i in a.get_random_choices(3)] == [i.id for i in b.get_random_choices(3)]


def test_random_choices_roughly_uniform(tmp_path):
    ledger = make_ledger(tmp_path, xp=xp_for_level(10), seed=3)  # pool: party, monocle, crown
    counts = Counter(ledger.get_random_choices(1)[0].id for _ in range(3000))
    assert set(counts) == {"party", "monocle", "crown"}
    for count in counts.values():
        assert 800 < count < 1200


def test_claim_item(tmp_path):
    ledger = make_ledger(tmp_path, xp=400)
    assert ledger.profile.pending_choice is False
    ledger.profile.pending_choice = True

    item = ledger.claim_item("party")
    assert item.name == "Party Hat"
    assert ledger.profile.is_owned("party")
    assert ledger.profile.pending_choice is False

    with pytest.raises(KeyError):
        ledger.claim_item("no_such_item")


def test_owned_and_locked_by_slot(tmp_path):
    ledger = make_ledger(tmp_path, xp=400)
    ledger.claim_item("party")
    assert [i.id for i in ledger.owned_items(ItemSlot.HAT)] == ["wizard", "party"]
    assert [i.id for i in ledger.locked_items(ItemSlot.HAT)] == ["crown"]
    assert [i.id for i in ledger.locked_items(ItemSlot.FACE)] == ["monocle"]
    assert ledger.get_item("crown").min_level == 10
    assert ledger.get_item("nope") is None


# ============================================================
# PERSISTENCE
# ============================================================

def test_save_load_round_trip(tmp_path):
    ledger = make_ledger(tmp_path, xp=400)
    ledger.claim_item("party")
    ledger.profile.record_thinking(ThinkLevel.ULTRA)
    ledger.profile.sessions_started = 4
    ledger.save()

    raw = json.loads((tmp_path / "profile.json").read_text())
    assert raw["owned_items"] == ["party", "wizard"]
    assert raw["xp"] == 445

    loaded = ProgressionLedger.load(tmp_path / "profile.json", registry=REGISTRY)
    assert loaded.profile.xp == 445
    assert loaded.profile.level == 2
    assert loaded.profile.owned_items == {"wizard", "party"}
    assert loaded.profile.total_thinking == {"ultra": 1}
    assert loaded.profile.sessions_started == 4
    assert loaded.profile.first_seen == ledger.profile.first_seen


def test_missing_profile_starts_fresh(tmp_path):
    ledger = ProgressionLedger.load(tmp_path / "absent.json", registry=REGISTRY)
    assert ledger.profile.xp == 0
    assert ledger.profile.owned_items == {"wizard"}


def test_corrupt_profile_starts_fresh(tmp_path, caplog):
    path = tmp_path / "profile.json"
    path.write_text("{ this is not json")
    with caplog.at_level("WARNING"):
        ledger = ProgressionLedger.load(path, registry=REGISTRY)
    assert ledger.profile.xp == 0
    assert ledger.profile.is_owned("wizard")
    assert "corrupt" in caplog.text


def test_undecodable_profile_starts_fresh(tmp_path, caplog):
    path = tmp_path / "profile.json"
    path.write_bytes(b"\xff\xfe\x00garbage")
    with caplog.at_level("WARNING"):
        ledger = ProgressionLedger.load(path, registry=REGISTRY)
    assert ledger.profile.xp == 0
    assert ledger.profile.owned_items == {"wizard"}
    assert "corrupt" in caplog.text


def test_legacy_ownership_map_and_stale_level(tmp_path):
    path = tmp_path / "profile.json"
    path.write_text(json.dumps({
        "xp": 450,
        "level": 99,
        "owned_items": {"party": True, "crown": False},
        "total_thinking": None,
    }))
    ledger = ProgressionLedger.load(path, registry=REGISTRY)
    assert ledger.profile.level == 2
    assert ledger.profile.owned_items == {"wizard", "party"}
    assert ledger.profile.total_thinking == {}


def test_starters_regranted_on_load(tmp_path):
    path = tmp_path / "profile.json"
    path.write_text(json.dumps({"xp": 100, "owned_items": []}))
    ledger = ProgressionLedger.load(path, registry=REGISTRY)
    assert ledger.profile.is_owned("wizard")


def test_save_into_unwritable_location_raises(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    ledger = ProgressionLedger(CareerProfile(), REGISTRY, blocker / "profile.json")

    with pytest.raises(ProfileWriteError) as excinfo:
        ledger.save()
    assert isinstance(excinfo.value, OSError)


def test_failed_replace_keeps_previous_file(tmp_path, monkeypatch):
    ledger = make_ledger(tmp_path, xp=100)
    ledger.save()
    before = (tmp_path / "profile.json").read_text()

    def refuse(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(progression.os, "replace", refuse)
    ledger.profile.add_xp(5000)
    with pytest.raises(ProfileWriteError):
        ledger.save()

    assert (tmp_path / "profile.json").read_text() == before
    assert os.listdir(tmp_path) == ["profile.json"]
