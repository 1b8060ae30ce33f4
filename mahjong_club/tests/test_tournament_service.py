"""
Tests for the tournament lifecycle: start, results, round ends and reads.
"""
import random
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import text

from mahjong_club.database.models import TournamentStatus
from mahjong_club.services import (
    game_service,
    player_service,
    registry_service,
    tournament_service,
    tournament_store,
)
from mahjong_club.services.errors import (
    ConcurrentModificationError,
    GameAlreadyVerifiedError,
    GameNotFoundError,
    IllegalStateTransitionError,
    InsufficientPlayersError,
    InvalidResultError,
    InvalidScoreTotalError,
    InvalidTournamentError,
    NotRegisteredError,
    PermissionDeniedError,
    ResultAlreadySubmittedError,
    RoundAlreadyClosedError,
    RoundIncompleteError,
    RoundNotFoundError,
    TournamentNotFoundError,
)

DEFAULT_TABLE_SCORES = (32000, 28000, 25000, 15000)

SEAT_DELTAS = (37.0, 13.0, -10.0, -40.0)  # DEFAULT_TABLE_SCORES at a 25000 start


def uma_by_player(tournament):
    return {p["player_id"]: p["uma"] for p in tournament["players"]}


def round_of(tournament, round_number):
    return next(r for r in tournament["rounds"] if r["round_number"] == round_number)


def seated_ids(round_):
    return [
        seat["player_id"]
        for pairing in round_["pairings"]
        for seat in pairing["seats"]
        if not seat["is_filler"]
    ]


def result_lines(pairing, scores=DEFAULT_TABLE_SCORES):
    return [
        {"player_id": seat["player_id"], "filler_slot": seat["filler_slot"], "score": score}
        for seat, score in zip(pairing["seats"], scores)
    ]


# ============================================================================
# Create / update / delete
# ============================================================================

@pytest.mark.asyncio
async def test_create_tournament(db_session, admin, make_tournament):
    tournament = await make_tournament(max_players=16, created_by=admin.id, description="Monthly")

    assert tournament["status"] == "NotStarted"
    assert tournament["starting_point_value"] == 25000
    assert tournament["max_players"] == 16
    assert tournament["round_count"] is None
    assert tournament["created_by"] == admin.id
    assert tournament["rounds"] == []
    assert tournament["current_round"] is None
    assert tournament["version"] == 1


@pytest.mark.asyncio
async def test_create_tournament_validates_settings(db_session, make_tournament):
    with pytest.raises(InvalidTournamentError):
        await make_tournament(name="  ")
    with pytest.raises(InvalidTournamentError):
        await make_tournament(max_players=0)
    with pytest.raises(InvalidTournamentError):
        await make_tournament(starting_point_value=-1)


@pytest.mark.asyncio
async def test_update_tournament(db_session, signed_up):
    tournament, _ = await signed_up(3, max_players=8)

    updated = await tournament_service.update_tournament(
        db_session, tournament["id"], {"name": "Winter Open", "max_players": 4}
    )
    assert updated["name"] == "Winter Open"
    assert updated["max_players"] == 4
    assert updated["version"] > tournament["version"]

    with pytest.raises(InvalidTournamentError):
        await tournament_service.update_tournament(db_session, tournament["id"], {"max_players": 2})
    with pytest.raises(InvalidTournamentError):
        await tournament_service.update_tournament(db_session, tournament["id"], {"owner": 1})


@pytest.mark.asyncio
async def test_update_rejects_clearing_required_settings(db_session, make_tournament):
    tournament = await make_tournament()

    for key in ("starting_point_value", "is_east_only"):
        with pytest.raises(InvalidTournamentError):
            await tournament_service.update_tournament(db_session, tournament["id"], {key: None})

    unchanged = await tournament_service.get_tournament(db_session, tournament["id"])
    assert unchanged["starting_point_value"] == 25000
    assert unchanged["is_east_only"] is False
    assert unchanged["version"] == tournament["version"]

    # Optional settings can still be cleared
    updated = await tournament_service.update_tournament(
        db_session, tournament["id"], {"max_players": None, "location": None}
    )
    assert updated["max_players"] is None


@pytest.mark.asyncio
async def test_settings_frozen_after_start(db_session, signed_up):
    tournament, _ = await signed_up(4)
    await tournament_service.start_tournament(db_session, tournament["id"])

    updated = await tournament_service.update_tournament(
        db_session, tournament["id"], {"location": "Back room", "starting_point_value": 25000}
    )
    assert updated["location"] == "Back room"

    with pytest.raises(IllegalStateTransitionError):
        await tournament_service.update_tournament(
            db_session, tournament["id"], {"starting_point_value": 30000}
        )


@pytest.mark.asyncio
async def test_delete_tournament(db_session, signed_up, settle_round):
    tournament, _ = await signed_up(4)
    await tournament_service.start_tournament(db_session, tournament["id"])
    await settle_round(tournament["id"], 1)

    assert await tournament_service.delete_tournament(db_session, tournament["id"])
    with pytest.raises(TournamentNotFoundError):
        await tournament_service.get_tournament(db_session, tournament["id"])


# ============================================================================
# Start
# ============================================================================

@pytest.mark.asyncio
async def test_start_pairs_round_one(db_session, signed_up):
    tournament, players = await signed_up(8)

    started = await tournament_service.start_tournament(
        db_session, tournament["id"], rng=random.Random(7)
    )

    assert started["status"] == "InProgress"
    assert started["current_round"] == 1
    # No round count configured: ceil((8 - 4) / 12 + 1) = 2, frozen at start
    assert started["round_count"] == 2
    first = round_of(started, 1)
    assert len(first["pairings"]) == 2
    assert sorted(seated_ids(first)) == sorted(p.id for p in players)
    assert all(p["game"] is None for p in first["pairings"])
    assert not first["is_closed"]


@pytest.mark.asyncio
async def test_start_keeps_configured_round_count(db_session, signed_up):
    tournament, _ = await signed_up(4, round_count=4)
    started = await tournament_service.start_tournament(db_session, tournament["id"])
    assert started["round_count"] == 4


@pytest.mark.asyncio
async def test_start_requires_players(db_session, make_tournament):
    tournament = await make_tournament()
    with pytest.raises(InsufficientPlayersError):
        await tournament_service.start_tournament(db_session, tournament["id"])

    reloaded = await tournament_service.get_tournament(db_session, tournament["id"])
    assert reloaded["status"] == "NotStarted"
    assert reloaded["rounds"] == []


@pytest.mark.asyncio
async def test_start_twice_is_rejected(db_session, signed_up):
    tournament, _ = await signed_up(4)
    await tournament_service.start_tournament(db_session, tournament["id"])
    with pytest.raises(IllegalStateTransitionError):
        await tournament_service.start_tournament(db_session, tournament["id"])


@pytest.mark.asyncio
async def test_nine_players_get_one_padded_table(db_session, signed_up, settle_round):
    """9 active players: the third table has 3 filler seats, and fillers earn no UMA."""
    tournament, players = await signed_up(9)
    started = await tournament_service.start_tournament(db_session, tournament["id"])

    tables = round_of(started, 1)["pairings"]
    assert [sum(s["is_filler"] for s in p["seats"]) for p in tables] == [0, 0, 3]
    fillers = [s for s in tables[2]["seats"] if s["is_filler"]]
    assert sorted(s["filler_slot"] for s in fillers) == [1, 2, 3]
    assert all(s["display_name"].startswith("Filler") for s in fillers)

    await settle_round(tournament["id"], 1)
    ended = await tournament_service.end_round(db_session, tournament["id"], 1)

    lone_index = next(i for i, s in enumerate(tables[2]["seats"]) if not s["is_filler"])
    lone_player = tables[2]["seats"][lone_index]["player_id"]
    assert uma_by_player(ended)[lone_player] == SEAT_DELTAS[lone_index]
    assert len(ended["standings"]) == 9
    assert all(row["player_id"] is not None for row in ended["standings"])


# ============================================================================
# Results
# ============================================================================

@pytest.mark.asyncio
async def test_player_submits_and_tablemate_verifies(db_session, signed_up):
    tournament, players = await signed_up(4)
    started = await tournament_service.start_tournament(db_session, tournament["id"])
    pairing = round_of(started, 1)["pairings"][0]
    by_id = {p.id: p for p in players}
    submitter = by_id[pairing["seats"][0]["player_id"]]
    tablemate = by_id[pairing["seats"][1]["player_id"]]

    game = await tournament_service.submit_result(
        db_session, tournament["id"], 1, 1, result_lines(pairing),
        submitted_by=submitter, notes="Close game",
    )
    assert game["verified"] is False
    assert game["submitted_by"] == submitter.id
    assert [line["rank"] for line in game["lines"]] == [1, 2, 3, 4]

    with pytest.raises(PermissionDeniedError):
        await game_service.verify_game(db_session, game["id"], submitter)

    verified = await game_service.verify_game(db_session, game["id"], tablemate)
    assert verified["verified"] is True
    assert verified["verified_by"] == tablemate.id

    with pytest.raises(GameAlreadyVerifiedError):
        await game_service.verify_game(db_session, game["id"], tablemate)


@pytest.mark.asyncio
async def test_submit_result_errors(db_session, signed_up, make_player):
    tournament, players = await signed_up(5)
    started = await tournament_service.start_tournament(db_session, tournament["id"])
    full_table = next(
        p for p in round_of(started, 1)["pairings"] if not any(s["is_filler"] for s in p["seats"])
    )
    at_table = next(p for p in players if p.id == full_table["seats"][0]["player_id"])
    outsider = await make_player()

    with pytest.raises(PermissionDeniedError):
        await tournament_service.submit_result(
            db_session, tournament["id"], 1, full_table["table_number"],
            result_lines(full_table), submitted_by=outsider,
        )
    with pytest.raises(InvalidScoreTotalError):
        await tournament_service.submit_result(
            db_session, tournament["id"], 1, full_table["table_number"],
            result_lines(full_table, (32000, 28000, 25000, 14000)), submitted_by=at_table,
        )
    wrong_lines = result_lines(full_table)
    wrong_lines[0] = {"player_id": outsider.id, "filler_slot": None, "score": 32000}
    with pytest.raises(InvalidResultError):
        await tournament_service.submit_result(
            db_session, tournament["id"], 1, full_table["table_number"],
            wrong_lines, submitted_by=at_table,
        )

    await tournament_service.submit_result(
        db_session, tournament["id"], 1, full_table["table_number"],
        result_lines(full_table, (40000, 30000, 20000, 9000)), submitted_by=at_table,
        points_left_on_table=1000,
    )
    with pytest.raises(ResultAlreadySubmittedError):
        await tournament_service.submit_result(
            db_session, tournament["id"], 1, full_table["table_number"],
            result_lines(full_table), submitted_by=at_table,
        )


@pytest.mark.asyncio
async def test_wrong_result_is_withdrawn_and_resubmitted(db_session, signed_up):
    tournament, players = await signed_up(4)
    started = await tournament_service.start_tournament(db_session, tournament["id"])
    pairing = round_of(started, 1)["pairings"][0]
    by_id = {p.id: p for p in players}
    submitter = by_id[pairing["seats"][0]["player_id"]]
    tablemate = by_id[pairing["seats"][1]["player_id"]]

    wrong = await tournament_service.submit_result(
        db_session, tournament["id"], 1, 1,
        result_lines(pairing, (40000, 30000, 20000, 10000)), submitted_by=submitter,
    )
    with pytest.raises(PermissionDeniedError):
        await game_service.delete_game(db_session, wrong["id"], tablemate)

    before = await tournament_service.get_tournament(db_session, tournament["id"])
    assert await game_service.delete_game(db_session, wrong["id"], submitter) is True

    after = await tournament_service.get_tournament(db_session, tournament["id"])
    assert after["version"] > before["version"]
    assert round_of(after, 1)["pairings"][0]["game_id"] is None
    with pytest.raises(GameNotFoundError):
        await game_service.get_game(db_session, wrong["id"])

    game = await tournament_service.submit_result(
        db_session, tournament["id"], 1, 1, result_lines(pairing), submitted_by=submitter,
    )
    await game_service.verify_game(db_session, game["id"], tablemate)
    with pytest.raises(GameAlreadyVerifiedError):
        await game_service.delete_game(db_session, game["id"], submitter)

    final = await tournament_service.end_round(db_session, tournament["id"], 1)
    assert final["status"] == "Completed"
    assert [row["total"] for row in final["standings"]] == list(SEAT_DELTAS)


@pytest.mark.asyncio
async def test_cancelled_tournament_results_cannot_be_deleted(db_session, signed_up, settle_round, admin):
    tournament, _ = await signed_up(4)
    await tournament_service.start_tournament(db_session, tournament["id"])
    await settle_round(tournament["id"], 1, verify=False)
    cancelled = await tournament_service.cancel_tournament(db_session, tournament["id"])

    game_id = round_of(cancelled, 1)["pairings"][0]["game_id"]
    with pytest.raises(IllegalStateTransitionError):
        await game_service.delete_game(db_session, game_id, admin)


@pytest.mark.asyncio
async def test_pending_verification_lists_tablemates_games(db_session, signed_up):
    tournament, players = await signed_up(8)
    started = await tournament_service.start_tournament(db_session, tournament["id"])
    first_table, second_table = round_of(started, 1)["pairings"]
    by_id = {p.id: p for p in players}
    submitter = by_id[first_table["seats"][0]["player_id"]]
    tablemate = by_id[first_table["seats"][2]["player_id"]]
    elsewhere = by_id[second_table["seats"][0]["player_id"]]

    game = await tournament_service.submit_result(
        db_session, tournament["id"], 1, first_table["table_number"],
        result_lines(first_table), submitted_by=submitter,
    )

    pending = await game_service.list_pending_verification(db_session, tablemate.id)
    assert pending["total"] == 1
    assert pending["pages"] == 1
    item = pending["games"][0]
    assert item["id"] == game["id"]
    assert item["tournament_id"] == tournament["id"]
    assert (item["round_number"], item["table_number"]) == (1, first_table["table_number"])

    assert (await game_service.list_pending_verification(db_session, submitter.id))["total"] == 0
    assert (await game_service.list_pending_verification(db_session, elsewhere.id))["total"] == 0
    assert (await game_service.list_pending_verification(db_session, tablemate.id, page=2))["games"] == []

    await game_service.verify_game(db_session, game["id"], tablemate)
    assert (await game_service.list_pending_verification(db_session, tablemate.id))["total"] == 0


# ============================================================================
# Ending rounds
# ============================================================================

@pytest.mark.asyncio
async def test_missing_table_blocks_end_round(db_session, signed_up, settle_round):
    """Ending round 2 while table 3 has no result fails and changes nothing."""
    tournament, _ = await signed_up(12)
    await tournament_service.start_tournament(db_session, tournament["id"])
    await settle_round(tournament["id"], 1)
    before = await tournament_service.end_round(db_session, tournament["id"], 1)
    await settle_round(tournament["id"], 2, skip_tables=(3,))

    with pytest.raises(RoundIncompleteError) as exc_info:
        await tournament_service.end_round(db_session, tournament["id"], 2)
    assert "3" in str(exc_info.value)

    after = await tournament_service.get_tournament(db_session, tournament["id"])
    assert after["status"] == "InProgress"
    assert uma_by_player(after) == uma_by_player(before)
    assert not round_of(after, 2)["is_closed"]


@pytest.mark.asyncio
async def test_unverified_result_blocks_end_round(db_session, signed_up, settle_round):
    tournament, _ = await signed_up(4)
    await tournament_service.start_tournament(db_session, tournament["id"])
    await settle_round(tournament["id"], 1, verify=False)

    with pytest.raises(RoundIncompleteError):
        await tournament_service.end_round(db_session, tournament["id"], 1)


@pytest.mark.asyncio
async def test_full_tournament_runs_to_completion(db_session, signed_up, settle_round):
    tournament, players = await signed_up(8)
    await tournament_service.start_tournament(db_session, tournament["id"])

    await settle_round(tournament["id"], 1)
    after_first = await tournament_service.end_round(db_session, tournament["id"], 1)
    assert after_first["status"] == "InProgress"
    assert after_first["current_round"] == 2
    assert round_of(after_first, 1)["is_closed"]
    assert sum(uma_by_player(after_first).values()) == 0
    assert sorted(uma_by_player(after_first).values()) == sorted(SEAT_DELTAS * 2)

    await settle_round(tournament["id"], 2)
    final = await tournament_service.end_round(db_session, tournament["id"], 2)
    assert final["status"] == "Completed"
    assert len(final["rounds"]) == 2
    assert all(r["is_closed"] for r in final["rounds"])
    totals = [row["total"] for row in final["standings"]]
    assert totals == sorted(totals, reverse=True)

    with pytest.raises(IllegalStateTransitionError):
        await tournament_service.end_round(db_session, tournament["id"], 2)


@pytest.mark.asyncio
async def test_fractional_uma_sums_to_zero_over_rounds(db_session, signed_up, settle_round):
    tournament, _ = await signed_up(20, round_count=3)
    await tournament_service.start_tournament(db_session, tournament["id"])

    for round_number in (1, 2, 3):
        await settle_round(tournament["id"], round_number, scores=(32100, 27900, 25300, 14700))
        result = await tournament_service.end_round(db_session, tournament["id"], round_number)

    assert result["status"] == "Completed"
    final = await tournament_service.get_tournament(db_session, tournament["id"])
    umas = list(uma_by_player(final).values())
    assert sum(umas) == 0
    assert all(uma * 10 == int(uma * 10) for uma in umas)
    assert sum(row["total"] for row in final["standings"]) == 0


@pytest.mark.asyncio
async def test_round_cannot_end_twice(db_session, signed_up, settle_round):
    tournament, _ = await signed_up(4, round_count=3)
    await tournament_service.start_tournament(db_session, tournament["id"])
    await settle_round(tournament["id"], 1)
    ended = await tournament_service.end_round(db_session, tournament["id"], 1)

    with pytest.raises(RoundAlreadyClosedError):
        await tournament_service.end_round(db_session, tournament["id"], 1)
    after = await tournament_service.get_tournament(db_session, tournament["id"])
    assert uma_by_player(after) == uma_by_player(ended)

    with pytest.raises(RoundNotFoundError):
        await tournament_service.end_round(db_session, tournament["id"], 5)


@pytest.mark.asyncio
async def test_closed_round_rejects_results(db_session, signed_up, settle_round, admin):
    tournament, _ = await signed_up(4, round_count=2)
    started = await tournament_service.start_tournament(db_session, tournament["id"])
    await settle_round(tournament["id"], 1)
    await tournament_service.end_round(db_session, tournament["id"], 1)

    pairing = round_of(started, 1)["pairings"][0]
    with pytest.raises(RoundAlreadyClosedError):
        await tournament_service.submit_result(
            db_session, tournament["id"], 1, 1, result_lines(pairing), submitted_by=admin
        )


@pytest.mark.asyncio
async def test_dropped_player_keeps_uma_and_is_not_paired(db_session, signed_up, settle_round):
    tournament, players = await signed_up(8)
    await tournament_service.start_tournament(db_session, tournament["id"])
    leaver = players[0]
    await registry_service.drop(db_session, tournament["id"], leaver.id)

    # The dropped player's round 1 game still counts
    await settle_round(tournament["id"], 1)
    ended = await tournament_service.end_round(db_session, tournament["id"], 1)

    second = round_of(ended, 2)
    assert leaver.id not in seated_ids(second)
    assert len(seated_ids(second)) == 7
    assert uma_by_player(ended)[leaver.id] in SEAT_DELTAS
    assert ended["standings"][-1]["player_id"] == leaver.id


@pytest.mark.asyncio
async def test_cancel_keeps_applied_uma(db_session, signed_up, settle_round):
    tournament, _ = await signed_up(4, round_count=3)
    await tournament_service.start_tournament(db_session, tournament["id"])
    await settle_round(tournament["id"], 1)
    ended = await tournament_service.end_round(db_session, tournament["id"], 1)

    cancelled = await tournament_service.cancel_tournament(db_session, tournament["id"])

    assert cancelled["status"] == "Cancelled"
    assert uma_by_player(cancelled) == uma_by_player(ended)
    with pytest.raises(IllegalStateTransitionError):
        await tournament_service.end_round(db_session, tournament["id"], 2)
    with pytest.raises(IllegalStateTransitionError):
        await tournament_service.cancel_tournament(db_session, tournament["id"])


# ============================================================================
# Penalties and maintenance
# ============================================================================

@pytest.mark.asyncio
async def test_uma_penalty_shows_in_standings_only(db_session, signed_up, admin, make_player):
    tournament, players = await signed_up(4)
    target = players[2]

    with pytest.raises(IllegalStateTransitionError):
        await tournament_service.add_uma_penalty(db_session, tournament["id"], target.id, -5)

    await tournament_service.start_tournament(db_session, tournament["id"])
    result = await tournament_service.add_uma_penalty(
        db_session, tournament["id"], target.id, -5, reason="Slow play", created_by=admin.id
    )

    row = next(r for r in result["standings"] if r["player_id"] == target.id)
    assert row["penalty"] == -5
    assert row["total"] == -5
    assert row["uma"] == 0
    assert result["standings"][-1]["player_id"] == target.id
    assert result["uma_penalties"][0]["reason"] == "Slow play"

    stranger = await make_player()
    with pytest.raises(NotRegisteredError):
        await tournament_service.add_uma_penalty(db_session, tournament["id"], stranger.id, -5)
    with pytest.raises(InvalidTournamentError):
        await tournament_service.add_uma_penalty(db_session, tournament["id"], target.id, 0)


@pytest.mark.asyncio
async def test_recalculate_restores_uma(db_session, signed_up, settle_round):
    tournament, players = await signed_up(4, round_count=2)
    await tournament_service.start_tournament(db_session, tournament["id"])
    await settle_round(tournament["id"], 1)
    ended = await tournament_service.end_round(db_session, tournament["id"], 1)

    loaded = await tournament_store.load_tournament(db_session, tournament["id"], for_update=True)
    loaded.players[0].uma = Decimal("500")
    await tournament_store.commit_tournament(db_session, loaded)

    preview = await tournament_service.recalculate_tournament_uma(
        db_session, tournament["id"], dry_run=True
    )
    assert preview == {players[0].id: uma_by_player(ended)[players[0].id] - 500}
    drifted = await tournament_service.get_tournament(db_session, tournament["id"])
    assert uma_by_player(drifted)[players[0].id] == 500

    await tournament_service.recalculate_tournament_uma(db_session, tournament["id"])
    fixed = await tournament_service.get_tournament(db_session, tournament["id"])
    assert uma_by_player(fixed) == uma_by_player(ended)
    assert await tournament_service.recalculate_tournament_uma(db_session, tournament["id"]) == {}


@pytest.mark.asyncio
async def test_stale_version_is_rejected(db_session, make_tournament):
    tournament = await make_tournament()
    loaded = await tournament_store.load_tournament(db_session, tournament["id"], for_update=True)

    # Another writer commits first
    await db_session.execute(
        text("UPDATE tournaments SET version = version + 1 WHERE id = :id"),
        {"id": tournament["id"]},
    )
    loaded.name = "Renamed"

    with pytest.raises(ConcurrentModificationError):
        await tournament_store.commit_tournament(db_session, loaded)

    reloaded = await tournament_service.get_tournament(db_session, tournament["id"])
    assert reloaded["name"] == "Autumn Open"


# ============================================================================
# Reads
# ============================================================================

@pytest.mark.asyncio
async def test_public_view_hides_rounds(db_session, signed_up):
    tournament, _ = await signed_up(4)
    await tournament_service.start_tournament(db_session, tournament["id"])

    public = await tournament_service.get_tournament_public(db_session, tournament["id"])

    assert "rounds" not in public
    assert "uma_penalties" not in public
    assert public["current_round"] == 1
    assert len(public["standings"]) == 4


@pytest.mark.asyncio
async def test_list_tournaments_pages_latest_first(db_session, make_tournament, signed_up):
    await make_tournament(name="January", date=datetime(2026, 1, 10))
    await make_tournament(name="March", date=datetime(2026, 3, 10))
    started, _ = await signed_up(4, name="February", date=datetime(2026, 2, 10))
    await tournament_service.start_tournament(db_session, started["id"])

    first_page = await tournament_service.list_tournaments(db_session, page=1, limit=2)
    assert [t["name"] for t in first_page["tournaments"]] == ["March", "February"]
    assert first_page["total"] == 3
    assert first_page["pages"] == 2
    assert first_page["tournaments"][1]["player_count"] == 4

    second_page = await tournament_service.list_tournaments(db_session, page=2, limit=2)
    assert [t["name"] for t in second_page["tournaments"]] == ["January"]

    running = await tournament_service.list_tournaments(
        db_session, status=TournamentStatus.IN_PROGRESS
    )
    assert [t["name"] for t in running["tournaments"]] == ["February"]


@pytest.mark.asyncio
async def test_my_pairing(db_session, signed_up, make_player):
    tournament, players = await signed_up(6)
    me = players[3]

    before = await tournament_service.get_my_pairing(db_session, tournament["id"], me.id)
    assert before["pairing"] is None
    assert before["round_number"] is None

    await tournament_service.start_tournament(db_session, tournament["id"])
    mine = await tournament_service.get_my_pairing(db_session, tournament["id"], me.id)
    assert mine["round_number"] == 1
    assert me.id in [s["player_id"] for s in mine["pairing"]["seats"]]

    stranger = await make_player()
    theirs = await tournament_service.get_my_pairing(db_session, tournament["id"], stranger.id)
    assert theirs["round_number"] == 1
    assert theirs["pairing"] is None


@pytest.mark.asyncio
async def test_player_profile_lists_tournaments(db_session, signed_up):
    tournament, players = await signed_up(2)

    profile = await player_service.get_player_profile(db_session, players[0].id)

    assert profile["display_name"] == players[0].display_name
    assert [t["tournament_id"] for t in profile["tournaments"]] == [tournament["id"]]
    assert await player_service.get_player_profile(db_session, 999) is None
