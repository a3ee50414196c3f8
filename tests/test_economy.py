from factories import seed_battle, seed_item, seed_user
from terminal.economy import EconomyLogic
from terminal.models import (
    AttributeEffect, CombatEncounter, CraftRecipe, Participant, User,
    ADD, CONSUMABLE, EQUIPMENT, MULTIPLY, PREPARING, SPECIAL, STAT_BOOST,
)
from terminal.storage import ENCOUNTERS, RECIPES, USERS, activity_logs_path


async def load_user(store, user_id="u1"):
    return User.from_dict(await store.get(USERS, user_id))


async def test_scenario_buying_with_exact_currency(store):
    await seed_user(store, currency=100)
    await seed_item(store, "lantern", price=100)
    economy = EconomyLogic(store)

    first = await economy.buy_item("u1", "lantern")
    assert first.success
    user = await load_user(store)
    assert user.currency == 0
    assert user.items == {"lantern": 1}
    assert len(await store.query(activity_logs_path("u1"))) == 1

    second = await economy.buy_item("u1", "lantern")
    assert not second.success
    assert "costs 100" in second.error
    assert (await load_user(store)).items == {"lantern": 1}


async def test_buy_checks_listing_and_restrictions(store):
    await seed_user(store, currency=500, faction_id="yelu", race_id="human")
    await seed_item(store, "hidden", is_published=False)
    await seed_item(store, "esper_gem", race_id="esper")
    await seed_item(store, "assoc_pin", faction_id="association")
    await seed_item(store, "open_pin", faction_id="none", race_id="none")
    economy = EconomyLogic(store)

    assert not (await economy.buy_item("u1", "hidden")).success
    assert not (await economy.buy_item("u1", "esper_gem")).success
    assert not (await economy.buy_item("u1", "assoc_pin")).success
    assert (await economy.buy_item("u1", "open_pin")).success
    assert (await load_user(store)).currency == 490


async def test_stat_boost_is_permanent_and_consumed(store):
    await seed_user(store, items={"elixir": 2})
    await seed_item(store, "elixir", item_type=STAT_BOOST,
                    effects=[AttributeEffect("atk", ADD, 3), AttributeEffect("hp", ADD, 10),
                             AttributeEffect("def", MULTIPLY, 2)])

    result = await EconomyLogic(store).use_item("u1", "elixir")

    assert result.success
    user = await load_user(store)
    assert user.attributes == {"hp": 110, "atk": 23, "def": 10}
    assert user.items == {"elixir": 1}
    assert user.item_use_count == {"elixir": 1}


async def test_only_stat_boosts_with_add_effects_can_be_used(store):
    await seed_user(store, items={"tonic": 1, "dud": 1})
    await seed_item(store, "tonic", item_type=CONSUMABLE)
    await seed_item(store, "dud", item_type=STAT_BOOST, effects=[AttributeEffect("atk", MULTIPLY, 2)])
    economy = EconomyLogic(store)

    assert not (await economy.use_item("u1", "tonic")).success
    assert "no permanent effect" in (await economy.use_item("u1", "dud")).error
    assert (await load_user(store)).items == {"tonic": 1, "dud": 1}


async def seed_recipe(store, **overrides):
    fields = dict(id="r1", name="Tempered Blade", base_item_id="blade", material_item_id="ore",
                  target_item_id="tempered", is_published=True)
    fields.update(overrides)
    recipe = CraftRecipe(**fields)
    await store.set(RECIPES, recipe.id, recipe.to_dict())


async def seed_crafting(store):
    await seed_item(store, "blade", item_type=EQUIPMENT)
    await seed_item(store, "ore", item_type=SPECIAL)
    await seed_item(store, "tempered", item_type=EQUIPMENT, is_published=False)


async def test_craft_consumes_exactly_one_of_each(store):
    await seed_user(store, items={"blade": 2, "ore": 1})
    await seed_crafting(store)
    await seed_recipe(store)
    await seed_battle(store, status=PREPARING, participants={
        "u1": Participant(hp=100, max_hp=100, role_name="Player u1", faction_id="yelu", equipped_items=["blade"]),
    })

    result = await EconomyLogic(store).craft_item("u1", "r1")

    assert result.success
    assert (await load_user(store)).items == {"blade": 1, "tempered": 1}
    battle = CombatEncounter.from_dict(await store.get(ENCOUNTERS, "b1"))
    assert battle.participants["u1"].equipped_items == []


async def test_craft_preconditions(store):
    await seed_user(store, items={"blade": 1})
    await seed_crafting(store)
    await seed_recipe(store)
    await seed_recipe(store, id="draft", is_published=False)
    await seed_recipe(store, id="backwards", base_item_id="ore", material_item_id="blade")
    economy = EconomyLogic(store)

    assert not (await economy.craft_item("u1", "r1")).success
    assert not (await economy.craft_item("u1", "draft")).success
    assert not (await economy.craft_item("u1", "backwards")).success
    assert (await load_user(store)).items == {"blade": 1}


async def test_only_published_recipes_are_listed(store):
    await seed_recipe(store)
    await seed_recipe(store, id="draft", is_published=False)
    assert [r.id for r in await EconomyLogic(store).get_craft_recipes()] == ["r1"]
