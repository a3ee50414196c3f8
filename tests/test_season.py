from terminal.models import FactionTally, Season
from terminal.season import SeasonLogic, contribute, faction_weights
from terminal.storage import CURRENT_SEASON, SEASONS, SEASON_ARCHIVE


def season(yelu=(0, []), association=(0, [])):
    return Season(factions={
        "yelu": FactionTally(raw_score=yelu[0], active_players=list(yelu[1])),
        "association": FactionTally(raw_score=association[0], active_players=list(association[1])),
    })


def test_scenario_weighting_ties_after_rounding():
    weights = faction_weights(season(yelu=(300, ["a", "b", "c"]), association=(100, ["d"])))
    assert weights["yelu"]["weight"] == 4 / 3
    assert weights["association"]["weight"] == 4
    assert weights["yelu"]["weighted_score"] == 400
    assert weights["association"]["weighted_score"] == 400


def test_equal_counts_are_weighted_by_total_over_own():
    weights = faction_weights(season(yelu=(120, ["a", "b"]), association=(80, ["c", "d"])))
    assert weights["yelu"]["weight"] == 2
    assert weights["association"]["weight"] == 2
    assert weights["yelu"]["weighted_score"] == 240
    assert weights["association"]["weighted_score"] == 160


def test_empty_faction_has_weight_one():
    weights = faction_weights(season(yelu=(50, ["a"]), association=(70, [])))
    assert weights["association"]["weight"] == 1
    assert weights["association"]["weighted_score"] == 70
    assert faction_weights(season())["yelu"]["weight"] == 1


def test_weighted_score_rounds_half_up():
    weights = faction_weights(season(yelu=(1, ["a", "b"]), association=(1, ["c", "d", "e"])))
    # 1 * 5/2 = 2.5
    assert weights["yelu"]["weighted_score"] == 3


async def test_contribute_creates_season_and_tracks_players(store):
    async def give(user_id, faction_id, honor, support=None):
        async def body(txn):
            return await contribute(txn, user_id, faction_id, honor, support)
        return await store.run_transaction(body)

    assert await give("a", "yelu", 30) == "yelu"
    assert await give("a", "yelu", 20) == "yelu"
    assert await give("w", "wanderer", 15, "association") == "association"
    assert await give("x", "wanderer", 15) is None
    assert await give("b", "association", 0) is None

    current = Season.from_dict(await store.get(SEASONS, CURRENT_SEASON))
    assert current.tally("yelu").raw_score == 50
    assert current.tally("yelu").active_players == ["a"]
    assert current.tally("association").raw_score == 15
    assert current.tally("association").active_players == []


async def test_reset_archives_and_zeroes_together(store, admin):
    seeded = season(yelu=(300, ["a", "b", "c"]), association=(100, ["d"]))
    seeded.start_date = "2026-01-01T00:00:00.000000+08:00"
    await store.set(SEASONS, CURRENT_SEASON, seeded.to_dict())
    logic = SeasonLogic(store)

    result = await logic.reset_season(admin)

    assert result.success
    archives = await logic.get_archived_seasons()
    assert len(archives) == 1
    archived = archives[0]
    assert archived["id"] == result.data["archive_id"]
    assert archived["start_date"] == seeded.start_date
    assert archived["archived_at"]
    assert archived["factions"]["yelu"] == {"raw_score": 300, "weighted_score": 400, "active_players": ["a", "b", "c"]}
    assert archived["factions"]["association"]["weighted_score"] == 400

    current = Season.from_dict(await store.get(SEASONS, CURRENT_SEASON))
    assert current.tally("yelu").raw_score == 0
    assert current.tally("association").active_players == []
    assert current.start_date != seeded.start_date


async def test_reset_requires_admin_and_a_season(store, admin, player_caller):
    logic = SeasonLogic(store)
    assert not (await logic.reset_season(admin)).success

    await logic.ensure_current_season()
    assert not (await logic.reset_season(player_caller)).success
    assert await store.query(SEASON_ARCHIVE) == []


async def test_conflict_data_reports_live_weights(store):
    logic = SeasonLogic(store)
    await logic.ensure_current_season()
    await logic.ensure_current_season()

    result = await logic.get_conflict_data()

    assert result.success
    assert result.data["factions"]["yelu"] == {
        "raw_score": 0, "active_players": 0, "weight": 1, "weighted_score": 0,
    }
