import pytest

from factories import seed_title, seed_user
from terminal.models import CombatLog, Title, User, ITEM_USED, PLAYER_ATTACK
from terminal.storage import USERS, activity_logs_path, combat_logs_path
from terminal.titles import (
    HonorPointsTrigger, ItemDamageTrigger, TRIGGER_TYPES, TitleEngine, trigger_from_dict,
)


def honor_title(value=100, **overrides):
    return Title(id="veteran", name="Veteran", trigger={"type": "honor_points", "value": value}, **overrides)


def user(**overrides):
    fields = dict(id="u1", role_name="Ash", faction_id="yelu", race_id="human")
    fields.update(overrides)
    return User(**fields)


def test_trigger_from_dict_parses_every_known_tag():
    assert trigger_from_dict({"type": "honor_points", "value": 5}) == HonorPointsTrigger(5)
    assert trigger_from_dict(
        {"type": "item_damage", "item_id": "bomb", "damage_threshold": 10, "value": 2}
    ) == ItemDamageTrigger("bomb", 10, 2)
    assert trigger_from_dict({"type": "moon_phase", "value": 1}) is None
    assert trigger_from_dict({"type": "item_used", "value": 1}) is None
    assert trigger_from_dict(None) is None
    assert len(TRIGGER_TYPES) == 7


async def test_exact_threshold_qualifies_and_one_below_does_not(store):
    engine = TitleEngine(store)
    assert await engine.evaluate(user(honor_points=100), [honor_title()]) == [honor_title()]
    assert await engine.evaluate(user(honor_points=99), [honor_title()]) == []


async def test_owned_manual_and_triggerless_titles_are_skipped(store):
    engine = TitleEngine(store)
    rich = user(honor_points=500, titles=["veteran"])
    assert await engine.evaluate(rich, [honor_title()]) == []

    manual = Title(id="hero", name="Hero", is_manual=True, trigger={"type": "honor_points", "value": 1})
    bare = Title(id="plain", name="Plain")
    assert await engine.evaluate(user(honor_points=500), [manual, bare]) == []


@pytest.mark.parametrize("trigger, fields", [
    ({"type": "currency", "value": 50}, {"currency": 50}),
    ({"type": "tasks_submitted", "value": 2}, {"tasks": [{"task_id": "t1"}, {"task_id": "t2"}]}),
    ({"type": "battles_participated", "value": 1}, {"participated_battle_ids": ["b1"]}),
    ({"type": "battles_hp_zero", "value": 3}, {"hp_zero_count": 3}),
    ({"type": "item_used", "item_id": "tonic", "value": 2}, {"item_use_count": {"tonic": 2}}),
])
async def test_counter_triggers(store, trigger, fields):
    title = Title(id="t", name="T", trigger=trigger)
    engine = TitleEngine(store)
    assert await engine.evaluate(user(**fields), [title]) == [title]
    assert await engine.evaluate(user(), [title]) == []


async def test_item_damage_counts_qualifying_logs(store):
    logs = [
        CombatLog(id="l1", encounter_id="b1", message="", turn=0, type=ITEM_USED, item_id="bomb", damage=12),
        CombatLog(id="l2", encounter_id="b1", message="", turn=0, type=ITEM_USED, item_id="bomb", damage=15),
        CombatLog(id="l3", encounter_id="b1", message="", turn=0, type=ITEM_USED, item_id="bomb", damage=4),
        CombatLog(id="l4", encounter_id="b1", message="", turn=0, type=ITEM_USED, item_id="other", damage=50),
        CombatLog(id="l5", encounter_id="b1", message="", turn=0, type=PLAYER_ATTACK, damage=90),
    ]
    for log in logs:
        await store.set(combat_logs_path("b1"), log.id, log.to_dict())

    def title(value):
        return Title(id=f"bomber{value}", name="Bomber", trigger={
            "type": "item_damage", "item_id": "bomb", "damage_threshold": 10, "value": value,
        })

    engine = TitleEngine(store)
    assert await engine.evaluate(user(), [title(2)], battle_id="b1") == [title(2)]
    assert await engine.evaluate(user(), [title(3)], battle_id="b1") == []
    assert await engine.evaluate(user(), [title(1)]) == []


async def test_check_user_awards_once_with_activity_log(store):
    await seed_user(store, honor_points=150)
    await seed_title(store, "veteran", trigger={"type": "honor_points", "value": 100})
    engine = TitleEngine(store)

    first = await engine.check_user("u1")
    second = await engine.check_user("u1")

    assert [t.id for t in first] == ["veteran"]
    assert second == []
    assert User.from_dict(await store.get(USERS, "u1")).titles == ["veteran"]
    logs = await store.query(activity_logs_path("u1"))
    assert len(logs) == 1
    assert "Veteran" in logs[0]["change"]
