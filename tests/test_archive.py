from factories import seed_battle, seed_user
from terminal.archive import LogArchiver
from terminal.models import PLAYER_ATTACK
from terminal.storage import battle_buffer_key, combat_logs_path


def attack_log(log_id, user_id, damage):
    return {
        "id": log_id, "encounter_id": "b1", "message": f"{user_id} attacked Husk for {damage} damage",
        "turn": 1, "type": PLAYER_ATTACK, "user_id": user_id, "damage": damage,
    }


async def test_archive_moves_buffer_into_combat_logs(store):
    await seed_battle(store)
    await store.push_buffer(battle_buffer_key("b1"), attack_log("l1", "u1", 7))
    await store.push_buffer(battle_buffer_key("b1"), attack_log("l2", "u1", 3))
    archiver = LogArchiver(store)

    assert await archiver.archive_pending() == 2
    assert await store.read_buffer(battle_buffer_key("b1")) == []
    assert await archiver.archive_pending() == 0
    assert sorted(d["id"] for d in await store.query(combat_logs_path("b1"))) == ["l1", "l2"]


async def test_archiving_an_already_written_log_does_not_duplicate_it(store):
    await seed_battle(store)
    entry = attack_log("l1", "u1", 7)
    await store.set(combat_logs_path("b1"), "l1", entry)
    await store.push_buffer(battle_buffer_key("b1"), entry)

    await LogArchiver(store).archive_pending()

    assert len(await store.query(combat_logs_path("b1"))) == 1


async def test_admin_archive_reports_damage_stats(store, admin, player_caller):
    await seed_user(store, "u1", role_name="Aki")
    await seed_user(store, "u2", role_name="Bo", faction_id="association")
    await seed_battle(store)
    await store.push_buffer(battle_buffer_key("b1"), attack_log("l1", "u1", 7))
    await store.push_buffer(battle_buffer_key("b1"), attack_log("l2", "u2", 12))
    archiver = LogArchiver(store)

    assert not (await archiver.archive_battle_logs(player_caller, "b1")).success
    result = await archiver.archive_battle_logs(admin, "b1")

    assert result.success
    assert result.data["archived"] == 2
    assert [(s["role_name"], s["total_damage"]) for s in result.data["stats"]] == [("Bo", 12), ("Aki", 7)]
