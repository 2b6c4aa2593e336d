"""
Quest Companion — tests/test_integration_loop.py
Events in, XP and chests out, progress persisted.
"""

import json
import random

import pytest

from companion.chest import ChestState
from companion.config import CompanionConfig
from companion.data_loader import get_item_registry
from companion.events import Event, EventType, ThinkLevel, TodoItem, TokenUsage
from companion.loop import CompanionLoop
from companion.progression import CareerProfile, ProgressionLedger, level_from_xp
from companion.rewards import RewardEngine


def make_loop(tmp_path, profile=None, seed=3, bonus=False):
    config = CompanionConfig(profile_path=tmp_path / "profile.json", projects_root=tmp_path / "projects")
    rng = random.Random(seed)
    if profile is None:
        ledger = ProgressionLedger.load(config.profile_path, registry=get_item_registry(), rng=rng)
    else:
        ledger = ProgressionLedger(profile, get_item_registry(), config.profile_path, rng=rng)
    loop = CompanionLoop(config, ledger=ledger, rng=rng)
    if not bonus:
        loop.rewards = RewardEngine(ledger, triggers=(), rng=rng)
    return loop


def push(loop, *events):
    for event in events:
        loop.watcher.events.put(event)
    loop.update(0.0)


def run_until(loop, condition, dt=0.25, limit=400):
    for _ in range(limit):
        if condition():
            return
        loop.update(dt)
    raise AssertionError("condition never met")


def read_event():
    return Event(type=EventType.READING, tool_name="Read")


def test_reads_flow_peak_and_level_up_chests(tmp_path):
    loop = make_loop(tmp_path)
    loop.open_session()

    push(loop, *[read_event() for _ in range(20)])
    profile = loop.ledger.profile
    assert loop.session.reads == 20
    assert loop.session.flow_peak_reached
    assert profile.peak_flow_count == 1
    assert profile.xp == 20 * 5 + 100
    assert profile.level == 1

    # Level 1 unlocks nothing, so the first chest is empty and pays XP instead.
    first = loop.active_chest
    assert first is not None and first.items == []
    run_until(loop, lambda: loop.active_chest is not first)
    assert profile.xp == 700
    assert profile.level == 2

    # That XP reached level 2: a second chest with the level-2 hat follows.
    run_until(loop, lambda: loop.active_chest is not None)
    second = loop.active_chest
    assert [i.id for i in second.items] == ["party"]
    run_until(loop, lambda: loop.active_chest is None)

    assert profile.is_owned("party")
    assert profile.pending_choice is False

    saved = json.loads((tmp_path / "profile.json").read_text())
    assert saved["xp"] == 700
    assert "party" in saved["owned_items"]
    assert saved["sessions_started"] == 1


def test_player_choice_is_claimed(tmp_path):
    loop = make_loop(tmp_path, profile=CareerProfile(xp=890, level=level_from_xp(890)))
    push(loop, Event(type=EventType.WRITING, tool_name="Edit"))
    assert loop.ledger.profile.level == 3

    run_until(loop, lambda: loop.active_chest is not None and loop.active_chest.is_interactive)
    chest = loop.active_chest
    assert [i.id for i in chest.items] == ["party", "dealwithit"]

    loop.select_next()
    picked = chest.items[1]
    loop.confirm_selection()
    assert chest.state == ChestState.CLAIMING
    run_until(loop, lambda: loop.active_chest is None)

    assert loop.ledger.profile.is_owned(picked.id)
    assert not loop.ledger.profile.is_owned(chest.items[0].id)


def test_skip_chest_jumps_to_opening(tmp_path):
    loop = make_loop(tmp_path, profile=CareerProfile(xp=400, level=2, pending_choice=True))
    loop.update(0.0)
    assert loop.active_chest.state == ChestState.CLOSED
    loop.skip_chest()
    assert loop.active_chest.state == ChestState.OPENING


def test_pending_choice_from_last_run_spawns_chest(tmp_path):
    loop = make_loop(tmp_path, profile=CareerProfile(xp=900, level=3, pending_choice=True))
    assert loop.pending_level_up
    loop.update(0.0)
    assert loop.active_chest is not None


def test_bash_streak_broken_by_tool_error(tmp_path):
    loop = make_loop(tmp_path)
    push(loop, *[Event(type=EventType.BASH, tool_name="Bash") for _ in range(3)])
    assert loop.session.current_bash_streak == 3
    assert loop.ledger.profile.xp == 15 + 20 + 20

    push(loop, Event(type=EventType.ERROR, tool_name="Bash", is_error=True))
    assert loop.session.current_bash_streak == 0
    assert loop.session.best_bash_streak == 3

    # Errors from other tools leave the streak alone
    push(loop, Event(type=EventType.BASH, tool_name="Bash"))
    push(loop, Event(type=EventType.ERROR, tool_name="Read", is_error=True))
    assert loop.session.current_bash_streak == 1


def test_only_new_todo_completions_count(tmp_path):
    loop = make_loop(tmp_path)

    def todos(*statuses):
        return Event(
            type=EventType.TODO_UPDATE,
            todo_items=[TodoItem(content=f"task {i}", status=s) for i, s in enumerate(statuses)],
        )

    push(loop, todos("completed", "pending"))
    push(loop, todos("completed", "completed"))
    push(loop, todos("completed", "completed"))

    assert loop.session.todos_completed == 2
    assert loop.ledger.profile.todos_completed == 2
    assert loop.ledger.profile.xp == 40
    assert [t.status for t in loop.todos] == ["completed", "completed"]


def test_thinking_and_agents(tmp_path):
    loop = make_loop(tmp_path)
    push(loop, Event(type=EventType.THINK_HARD, details="think harder", think_level=ThinkLevel.HARDER))
    push(loop, Event(type=EventType.AGENT_COMPLETE, details="Explore"))
    assert loop.ledger.profile.xp == 35 + 30
    assert loop.quest_text == "think harder"
    assert [entry.amount for entry in loop.xp_feed] == [35, 30]


def test_display_state_expires(tmp_path):
    loop = make_loop(tmp_path)
    push(loop, Event(type=EventType.QUEST, details="Add a login page"))
    push(loop, Event(type=EventType.THINKING, thought_text="Maybe use sessions"))
    assert loop.quest_text == "Add a login page"
    assert loop.thought_text == "Maybe use sessions"

    loop.update(9.5)
    assert loop.quest_text == ""
    assert loop.thought_text == "Maybe use sessions"
    loop.update(3.0)
    assert loop.thought_text == ""
    assert loop.xp_feed == []


def test_mana_tracks_token_usage(tmp_path):
    loop = make_loop(tmp_path)
    usage = TokenUsage(input_tokens=1000, cache_read_input_tokens=4000, output_tokens=50)
    push(loop, Event(type=EventType.THINKING, token_usage=usage))
    assert loop.mana_total == 5000
    assert loop.ledger.profile.tokens_consumed == 5000

    push(loop, Event(type=EventType.COMPACT))
    assert loop.mana_total == 0


def test_activity_timeout_goes_inactive(tmp_path):
    loop = make_loop(tmp_path)
    push(loop, read_event())
    assert loop.is_active
    loop.update(61.0)
    assert not loop.is_active


def test_bonus_chest_follows_level_up_chest(tmp_path):
    loop = make_loop(tmp_path, profile=CareerProfile(xp=900, level=3, pending_choice=True))
    loop.pending_bonus = "Marathon"
    loop.update(0.0)
    assert loop.active_chest.reason == ""

    run_until(loop, lambda: loop.active_chest is not None and loop.active_chest.is_interactive)
    loop.confirm_selection()
    run_until(loop, lambda: loop.active_chest is not None and loop.active_chest.reason == "Marathon")
    assert len(loop.active_chest.items) == 1


def test_failed_save_is_logged_and_retried(tmp_path, caplog):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    config = CompanionConfig(profile_path=blocker / "profile.json", autosave_interval=1.0)
    ledger = ProgressionLedger(CareerProfile(), get_item_registry(), config.profile_path)
    loop = CompanionLoop(config, ledger=ledger)

    with caplog.at_level("WARNING"):
        loop.open_session()
        push(loop, read_event())
    assert "Profile save failed" in caplog.text
    assert loop._dirty

    # Once the location becomes writable, the autosave catches up.
    blocker.unlink()
    loop.update(1.5)
    assert not loop._dirty
    assert json.loads((blocker / "profile.json").read_text())["xp"] == 5


def test_replay_through_the_loop(tmp_path):
    transcript = tmp_path / "session.jsonl"
    lines = [
        {"type": "user", "message": {"content": "Fix the flaky test"}},
        {"type": "assistant", "message": {"content": [{"type": "tool_use", "name": "Read", "id": "r1", "input": {}}]}},
        {"type": "assistant", "message": {"content": [{"type": "tool_use", "name": "Edit", "id": "e1", "input": {}}]}},
    ]
    transcript.write_text("".join(json.dumps(line) + "\n" for line in lines))

    loop = make_loop(tmp_path)
    loop.start_replay(transcript, delay=0)
    loop.watcher.join(timeout=5)
    loop.update(0.0)
    loop.stop()

    assert loop.session.reads == 1
    assert loop.session.writes == 1
    assert loop.quest_text == "Fix the flaky test"
    assert loop.ledger.profile.xp == 15

    saved = json.loads((tmp_path / "profile.json").read_text())
    assert saved["xp"] == 15
    assert saved["sessions_started"] == 1


def test_start_live_watch_missing_project(tmp_path):
    loop = make_loop(tmp_path)
    with pytest.raises(FileNotFoundError):
        loop.start_live_watch(tmp_path / "not-a-project")
