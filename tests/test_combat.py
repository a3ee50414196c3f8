import random

from factories import seed_battle, seed_item, seed_user
from terminal.combat import CombatLogic
from terminal.models import (
    ActiveBuff, AttributeEffect, CombatEncounter, Monster, Participant, Skill, TriggeredEffect, User,
    ADD, CLOSED, CONSUMABLE, DAMAGE_ENEMY, DICE, ENDED, HEAL, ITEM_USED, PLAYER_ATTACK, PREPARING,
    SKILL_USED, ATK_BUFF,
)
from terminal.storage import ENCOUNTERS, SKILLS, USERS, battle_buffer_key, combat_logs_path


async def load_battle(store, battle_id="b1"):
    return CombatEncounter.from_dict(await store.get(ENCOUNTERS, battle_id))


async def load_user(store, user_id="u1"):
    return User.from_dict(await store.get(USERS, user_id))


async def test_scenario_repeated_attacks_defeat_the_monster(store, rng):
    await seed_user(store)
    await seed_battle(store)
    combat = CombatLogic(store, rng)

    result = await combat.perform_attack("u1", "b1", "m1")
    assert result.success
    assert result.data["monster_damage"] == 20
    assert (await load_battle(store)).monsters[0].hp == 30

    await combat.perform_attack("u1", "b1", "m1")
    await combat.perform_attack("u1", "b1", "m1")
    assert (await load_battle(store)).monsters[0].hp == 0

    fourth = await combat.perform_attack("u1", "b1", "m1")
    assert not fourth.success
    assert "defeated" in fourth.error
    assert (await load_battle(store)).monsters[0].hp == 0


async def test_attack_adds_equipped_bonuses(store, rng):
    await seed_user(store, items={"sword": 1, "charm": 1})
    await seed_item(store, "sword", effects=[AttributeEffect("atk", ADD, 7), AttributeEffect("def", ADD, 50)])
    await seed_item(store, "charm", effects=[AttributeEffect("atk", DICE, 4)])
    await seed_battle(store, monsters=[Monster(id="m1", name="Husk", hp=500, original_hp=500)])

    result = await CombatLogic(store, rng).perform_attack("u1", "b1", "m1", ["sword", "charm"])

    assert result.success
    assert 28 <= result.data["monster_damage"] <= 31
    assert (await load_battle(store)).monsters[0].hp == 500 - result.data["monster_damage"]


async def test_attack_records_participant_and_log(store, rng):
    await seed_user(store, faction_id="wanderer")
    await seed_battle(store)

    result = await CombatLogic(store, rng).perform_attack("u1", "b1", "m1", supported_faction="yelu")

    battle = await load_battle(store)
    participant = battle.participants["u1"]
    assert participant.hp == 100 and participant.max_hp == 100
    assert participant.supported_faction == "yelu"
    # counter damage is reported only
    assert 5 == result.data["player_damage"]

    logs = await store.query(combat_logs_path("b1"))
    assert len(logs) == 1
    assert logs[0]["type"] == PLAYER_ATTACK
    assert logs[0]["user_id"] == "u1"
    assert logs[0]["damage"] == 20
    assert logs[0]["timestamp"]


async def test_attack_rejections_leave_state_untouched(store, rng):
    await seed_user(store)
    await seed_battle(store, status=PREPARING)
    combat = CombatLogic(store, rng)

    assert "not in progress" in (await combat.perform_attack("u1", "b1", "m1")).error
    assert not (await combat.perform_attack("ghost", "b1", "m1")).success
    assert not (await combat.perform_attack("u1", "missing", "m1")).success

    await seed_battle(store, battle_id="b2")
    assert not (await combat.perform_attack("u1", "b2", "nope")).success
    assert not (await combat.perform_attack("u1", "b2", "m1", ["unowned"])).success
    assert (await load_battle(store, "b2")).monsters[0].hp == 50
    assert await store.query(combat_logs_path("b2")) == []


async def test_knocked_out_participant_cannot_attack(store, rng):
    await seed_user(store)
    await seed_battle(store, participants={"u1": Participant(hp=0, max_hp=100, role_name="Player u1", faction_id="yelu")})
    result = await CombatLogic(store, rng).perform_attack("u1", "b1", "m1")
    assert not result.success


async def test_use_battle_item_consumes_one_and_mirrors_log(store, rng):
    await seed_user(store, items={"bomb": 2})
    await seed_item(store, "bomb", item_type=CONSUMABLE,
                    effects=[TriggeredEffect(DAMAGE_ENEMY, 12, probability=100)])
    await seed_battle(store)

    result = await CombatLogic(store, rng).use_battle_item("u1", "b1", "bomb", "m1")

    assert result.success
    assert result.data["damage"] == 12
    user = await load_user(store)
    assert user.items == {"bomb": 1}
    assert user.item_use_count == {"bomb": 1}
    battle = await load_battle(store)
    assert battle.monsters[0].hp == 38
    assert battle.participants["u1"].hp == 100

    logs = await store.query(combat_logs_path("b1"))
    buffered = await store.read_buffer(battle_buffer_key("b1"))
    assert [log["type"] for log in logs] == [ITEM_USED]
    assert buffered[0]["id"] == logs[0]["id"]
    assert buffered[0]["damage"] == 12


async def test_last_item_is_removed_from_inventory(store, rng):
    await seed_user(store, items={"tonic": 1})
    await seed_item(store, "tonic", item_type=CONSUMABLE, effects=[TriggeredEffect(HEAL, 10)])
    await seed_battle(store)

    await CombatLogic(store, rng).use_battle_item("u1", "b1", "tonic")
    assert "tonic" not in (await load_user(store)).items

    again = await CombatLogic(store, rng).use_battle_item("u1", "b1", "tonic")
    assert not again.success


async def test_failed_item_target_aborts_without_consuming(store, rng):
    await seed_user(store, items={"bomb": 1})
    await seed_item(store, "bomb", item_type=CONSUMABLE, effects=[TriggeredEffect(DAMAGE_ENEMY, 12)])
    await seed_battle(store)

    result = await CombatLogic(store, rng).use_battle_item("u1", "b1", "bomb")

    assert not result.success
    assert (await load_user(store)).items == {"bomb": 1}
    assert await store.query(combat_logs_path("b1")) == []


async def seed_skill(store, cooldown=2):
    skill = Skill(id="rally", name="Rally", cooldown=cooldown,
                  effects=[TriggeredEffect(ATK_BUFF, 5, duration=2), TriggeredEffect(DAMAGE_ENEMY, 8)])
    await store.set(SKILLS, skill.id, skill.to_dict())


async def test_skill_requires_participation_and_then_cools_down(store, rng):
    await seed_user(store)
    await seed_skill(store)
    await seed_battle(store)
    combat = CombatLogic(store, rng)

    assert not (await combat.use_skill("u1", "b1", "rally", "m1")).success

    await combat.perform_attack("u1", "b1", "m1")
    used = await combat.use_skill("u1", "b1", "rally", "m1")
    assert used.success
    battle = await load_battle(store)
    participant = battle.participants["u1"]
    assert participant.skill_cooldowns == {"rally": 2}
    assert [b.effect_type for b in participant.active_buffs] == [ATK_BUFF]
    assert battle.monsters[0].hp == 50 - 20 - 8

    blocked = await combat.use_skill("u1", "b1", "rally", "m1")
    assert not blocked.success
    assert "cooling down" in blocked.error

    logs = await store.query(combat_logs_path("b1"))
    assert [log["type"] for log in logs] == [PLAYER_ATTACK, SKILL_USED]


async def test_advance_turn_counts_down_buffs_and_cooldowns(store, rng):
    participant = Participant(
        hp=80, max_hp=100, role_name="Ash", faction_id="yelu",
        active_buffs=[ActiveBuff(ATK_BUFF, 5, 1), ActiveBuff(ATK_BUFF, 3, 2)],
        skill_cooldowns={"rally": 1, "slam": 3},
    )
    await seed_battle(store, participants={"u1": participant})
    combat = CombatLogic(store, rng)

    result = await combat.advance_turn("b1")

    assert result.data["turn"] == 1
    ticked = (await load_battle(store)).participants["u1"]
    assert [b.turns_left for b in ticked.active_buffs] == [1]
    assert ticked.skill_cooldowns == {"rally": 0, "slam": 2}


async def test_battle_lifecycle_only_moves_forward(store, admin, player_caller):
    combat = CombatLogic(store, random.Random(5))

    denied = await combat.create_battle(player_caller, "Siege", [{"name": "Husk", "hp": 40}])
    assert not denied.success

    created = await combat.create_battle(admin, "Siege", [{"name": "Husk", "hp": 40, "atk": "2+1d4"}])
    battle_id = created.data["battle_id"]
    battle = await load_battle(store, battle_id)
    assert battle.status == PREPARING
    assert battle.monsters[0].original_hp == 40
    assert battle.start_time and battle.preparation_end_time

    assert not (await combat.close_battle(admin, battle_id)).success
    assert (await combat.start_battle(admin, battle_id)).success
    assert not (await combat.start_battle(admin, battle_id)).success
    assert (await combat.add_monster(admin, battle_id, {"name": "Brute", "hp": 90})).success
    assert (await combat.end_battle(admin, battle_id)).success
    assert not (await combat.start_battle(admin, battle_id)).success
    assert (await combat.close_battle(admin, battle_id)).success

    final = await load_battle(store, battle_id)
    assert final.status == CLOSED
    assert len(final.monsters) == 2
    assert final.end_time


async def test_end_battle_records_participation_and_knockouts(store, admin, rng):
    await seed_user(store, "u1")
    await seed_user(store, "u2")
    await seed_battle(store, participants={
        "u1": Participant(hp=0, max_hp=100, role_name="Player u1", faction_id="yelu"),
        "u2": Participant(hp=40, max_hp=100, role_name="Player u2", faction_id="yelu"),
    })

    result = await CombatLogic(store, rng).end_battle(admin, "b1")

    assert result.success
    assert result.data["processed_count"] == 2
    knocked_out, standing = await load_user(store, "u1"), await load_user(store, "u2")
    assert knocked_out.participated_battle_ids == ["b1"]
    assert knocked_out.hp_zero_count == 1
    assert standing.hp_zero_count == 0
    assert (await load_battle(store)).status == ENDED
