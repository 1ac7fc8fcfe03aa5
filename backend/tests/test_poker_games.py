"""
Tests for creating, reading, updating and deleting poker games.
"""
import json
import logging

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError

from conftest import make_game
from db.poker_models import PokerGame, PokerFacilitator, PokerParticipant, PokerStory
from models.poker import PokerStorySnapshot
from services.encryption import EncryptionService
from services.poker_errors import (
    GameNotFoundError, FacilitatorCodeNotSetError, InvalidRoundingError, PokerEncodingError,
    PokerStoreError, RefreshedList
)
from services.poker_service import PokerService, decode_point_values, validate_rounding
from services.poker_story_service import PokerStoryService


class TestCreateGame:
    """Game creation seeds the facilitator, participant and stories."""

    @pytest.mark.asyncio
    async def test_creator_is_sole_facilitator(self, game, users):
        assert game.id.startswith("poker_")
        assert game.facilitators == [users["alice"]]
        assert game.voting_locked is True

    @pytest.mark.asyncio
    async def test_returns_plaintext_codes(self, game):
        assert game.join_code == "join-me"
        assert game.facilitator_code == "lead-me"

    @pytest.mark.asyncio
    async def test_codes_are_stored_encrypted(self, session, game, encryption):
        row = (await session.execute(
            select(PokerGame.join_code, PokerGame.leader_code).where(PokerGame.poker_id == game.id)
        )).one()
        assert row.join_code != "join-me"
        assert encryption.decrypt(row.join_code) == "join-me"
        assert encryption.decrypt(row.leader_code) == "lead-me"

    @pytest.mark.asyncio
    async def test_empty_codes_are_stored_as_null(self, session, service, users):
        created = await make_game(service, users["alice"], join_code="", facilitator_code="")
        row = (await session.execute(
            select(PokerGame.join_code, PokerGame.leader_code).where(PokerGame.poker_id == created.id)
        )).one()
        assert row.join_code is None
        assert row.leader_code is None

        fetched = await service.get_game(created.id, users["alice"])
        assert fetched.join_code == ""
        assert fetched.facilitator_code == ""

    @pytest.mark.asyncio
    async def test_creator_is_inactive_participant(self, session, game, users):
        participant = (await session.execute(
            select(PokerParticipant).where(PokerParticipant.poker_id == game.id)
        )).scalar_one()
        assert participant.user_id == users["alice"]
        assert participant.active is False
        assert participant.abandoned is False

    @pytest.mark.asyncio
    async def test_initial_story_and_point_values(self, service, game, users):
        """A single starter story lands at position 0."""
        fetched = await service.get_game(game.id, users["alice"])
        assert fetched.point_values_allowed == ["1", "2", "3", "5"]
        assert len(fetched.stories) == 1
        assert fetched.stories[0].name == "Login flow"
        assert fetched.stories[0].position == 0
        assert [s.id for s in game.stories] == [s.id for s in fetched.stories]

    @pytest.mark.asyncio
    async def test_three_point_scale_round_trip(self, service, users):
        created = await service.create_game(
            users["bob"], "Refinement", ["1", "2", "3"], [PokerStorySnapshot(name="Login flow")],
            True, "round", "", "", False
        )
        fetched = await service.get_game(created.id, users["bob"])
        assert fetched.point_values_allowed == ["1", "2", "3"]
        assert [(s.name, s.position) for s in fetched.stories] == [("Login flow", 0)]
        assert fetched.point_average_rounding == "round"

    @pytest.mark.asyncio
    async def test_stories_are_appended_in_order(self, service, users):
        created = await make_game(service, users["alice"], stories=[
            PokerStorySnapshot(name="First"),
            PokerStorySnapshot(name="Second", type="Bug", reference_id="ABC-1"),
            PokerStorySnapshot(name="Third"),
        ])
        assert [s.position for s in created.stories] == [0, 1, 2]
        assert created.stories[1].type == "Bug"
        assert created.stories[1].reference_id == "ABC-1"

    @pytest.mark.asyncio
    async def test_team_game_stores_team(self, service, users):
        created = await make_game(service, users["alice"], team_id=users["platform"])
        assert created.team_id == users["platform"]
        fetched = await service.get_game(created.id, users["alice"])
        assert fetched.team_id == users["platform"]

    @pytest.mark.asyncio
    async def test_team_game_with_empty_team_has_no_team(self, session, service, users):
        created = await make_game(service, users["alice"], team_id="")
        assert created.team_id == ""
        stored = await session.scalar(select(PokerGame.team_id).where(PokerGame.poker_id == created.id))
        assert stored is None

    @pytest.mark.asyncio
    async def test_unknown_team_fails_without_partial_rows(self, session, service, users):
        """The game row and its facilitator commit together or not at all."""
        with pytest.raises(PokerStoreError):
            await make_game(service, users["alice"], team_id="team_missing")
        assert await session.scalar(select(func.count()).select_from(PokerGame)) == 0
        assert await session.scalar(select(func.count()).select_from(PokerFacilitator)) == 0

    @pytest.mark.asyncio
    async def test_failed_story_is_left_out(self, service, users, monkeypatch, caplog):
        original = PokerStoryService._insert_story

        async def insert_or_fail(self, poker_id, story):
            if story.name == "Broken":
                raise OperationalError("INSERT", {}, Exception("disk I/O error"))
            return await original(self, poker_id, story)

        monkeypatch.setattr(PokerStoryService, "_insert_story", insert_or_fail)
        with caplog.at_level(logging.WARNING):
            created = await make_game(service, users["alice"], stories=[
                PokerStorySnapshot(name="First"),
                PokerStorySnapshot(name="Broken"),
                PokerStorySnapshot(name="Third"),
            ])

        assert [s.name for s in created.stories] == ["First", "Third"]
        fetched = await service.get_game(created.id, users["alice"])
        assert [(s.name, s.position) for s in fetched.stories] == [("First", 0), ("Third", 1)]
        partial = [r for r in caplog.records if getattr(r, "event_type", "") == "poker_story_insert_partial"]
        assert partial and partial[0].levelno == logging.WARNING

    @pytest.mark.asyncio
    async def test_unknown_rounding_is_rejected(self, session, service, users):
        with pytest.raises(InvalidRoundingError) as exc_info:
            await service.create_game(
                users["alice"], "Sprint", ["1", "2"], [], True, "average", "", "", False
            )
        assert exc_info.value.code == "INVALID_POINT_AVERAGE_ROUNDING"
        assert await session.scalar(select(func.count()).select_from(PokerGame)) == 0


class TestGetGame:
    """Reading a game back."""

    @pytest.mark.asyncio
    async def test_facilitator_sees_facilitator_code(self, service, game, users):
        fetched = await service.get_game(game.id, users["alice"])
        assert fetched.facilitator_code == "lead-me"
        assert fetched.join_code == "join-me"

    @pytest.mark.asyncio
    async def test_non_facilitator_does_not_see_facilitator_code(self, service, game, users):
        fetched = await service.get_game(game.id, users["bob"])
        assert fetched.facilitator_code == ""
        assert fetched.join_code == "join-me"

    @pytest.mark.asyncio
    async def test_includes_users(self, service, game, users):
        await service.add_user(game.id, users["bob"])
        fetched = await service.get_game(game.id, users["alice"])
        assert [u.id for u in fetched.users] == [users["alice"], users["bob"]]

    @pytest.mark.asyncio
    async def test_missing_game(self, service, users):
        with pytest.raises(GameNotFoundError):
            await service.get_game("poker_missing", users["alice"])

    @pytest.mark.asyncio
    async def test_codes_from_another_key_fail_to_decode(self, session, game, users):
        other = PokerService(session, EncryptionService("some-other-secret"))
        with pytest.raises(PokerEncodingError):
            await other.get_game(game.id, users["alice"])

    @pytest.mark.asyncio
    async def test_users_are_not_stale_normally(self, service, game, users):
        fetched = await service.get_game(game.id, users["alice"])
        assert fetched.users_stale is False

    @pytest.mark.asyncio
    async def test_failed_user_read_is_flagged(self, service, game, users, monkeypatch):
        async def failed_read(poker_id):
            return RefreshedList(stale=True)

        monkeypatch.setattr(service, "get_users", failed_read)
        fetched = await service.get_game(game.id, users["alice"])
        assert fetched.users == []
        assert fetched.users_stale is True


class TestFacilitatorCode:

    @pytest.mark.asyncio
    async def test_returns_decrypted_code(self, service, game):
        assert await service.get_facilitator_code(game.id) == "lead-me"

    @pytest.mark.asyncio
    async def test_code_not_set(self, service, users):
        created = await make_game(service, users["alice"], facilitator_code="")
        with pytest.raises(FacilitatorCodeNotSetError):
            await service.get_facilitator_code(created.id)

    @pytest.mark.asyncio
    async def test_missing_game(self, service):
        with pytest.raises(GameNotFoundError):
            await service.get_facilitator_code("poker_missing")


class TestUpdateGame:

    @pytest.mark.asyncio
    async def test_overwrites_settings(self, service, game, users):
        await service.update_game(
            game.id,
            name="Sprint 43",
            point_values_allowed=["XS", "S", "M", "L"],
            auto_finish_voting=False,
            point_average_rounding="floor",
            hide_voter_identity=True,
            join_code="new-join",
            facilitator_code="",
            team_id=users["platform"],
        )
        fetched = await service.get_game(game.id, users["alice"])
        assert fetched.name == "Sprint 43"
        assert fetched.point_values_allowed == ["XS", "S", "M", "L"]
        assert fetched.auto_finish_voting is False
        assert fetched.point_average_rounding == "floor"
        assert fetched.hide_voter_identity is True
        assert fetched.join_code == "new-join"
        assert fetched.facilitator_code == ""
        assert fetched.team_id == users["platform"]

    @pytest.mark.asyncio
    async def test_empty_team_clears_team(self, service, users):
        created = await make_game(service, users["alice"], team_id=users["platform"])
        await service.update_game(
            created.id, "Renamed", ["1"], True, "ceil", False, "", "", ""
        )
        fetched = await service.get_game(created.id, users["alice"])
        assert fetched.team_id == ""

    @pytest.mark.asyncio
    async def test_set_voting_locked(self, service, game, users):
        await service.set_voting_locked(game.id, False)
        assert (await service.get_game(game.id, users["alice"])).voting_locked is False

    @pytest.mark.asyncio
    async def test_unknown_rounding_is_rejected(self, service, game, users):
        with pytest.raises(InvalidRoundingError):
            await service.update_game(
                game.id, "Renamed", ["1"], True, "median", False, "", "", ""
            )
        fetched = await service.get_game(game.id, users["alice"])
        assert fetched.name == game.name


class TestDeleteGame:

    @pytest.mark.asyncio
    async def test_delete_cascades(self, session, service, game, users):
        await service.add_user(game.id, users["bob"])
        await service.delete_game(game.id)

        with pytest.raises(GameNotFoundError):
            await service.get_game(game.id, users["alice"])
        for model in (PokerFacilitator, PokerParticipant, PokerStory):
            count = await session.scalar(
                select(func.count()).select_from(model).where(model.poker_id == game.id)
            )
            assert count == 0


class TestValidateRounding:

    def test_accepts_known_modes(self):
        assert [validate_rounding(v) for v in ("ceil", "round", "floor")] == ["ceil", "round", "floor"]

    def test_rejects_unknown_mode(self):
        with pytest.raises(InvalidRoundingError):
            validate_rounding("Ceil")


class TestDecodePointValues:

    def test_decodes_list(self):
        assert decode_point_values(json.dumps(["1", "2", "?"])) == ["1", "2", "?"]

    def test_empty_is_empty_list(self):
        assert decode_point_values(None) == []
        assert decode_point_values("") == []

    def test_rejects_non_list(self):
        with pytest.raises(ValueError):
            decode_point_values('{"a": 1}')

    def test_rejects_malformed_json(self):
        with pytest.raises(ValueError):
            decode_point_values("[1, 2")
