"""
Planning Poker Story Service
Persists the estimation items of a game and the votes cast on them.
Vote tallying and averaging live in the realtime layer, not here.
"""
import logging
from dataclasses import dataclass
from typing import Optional, List, Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, insert, update, delete, func, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import aliased

from db.models import generate_uuid, utc_now
from db.poker_models import PokerGame, PokerParticipant, PokerStory
from models.poker import PokerStorySnapshot, PokerVote
from services.poker_errors import PokerStoreError, StoryNotFoundError, VotingClosedError

logger = logging.getLogger(__name__)


@dataclass
class StoryInsertResult:
    """Outcome of inserting one story of a batch"""
    story: PokerStorySnapshot
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def next_story_position(poker_id: str):
    """coalesce(max(position), -1) + 1 evaluated by the INSERT itself"""
    existing = aliased(PokerStory)
    return (
        select(func.coalesce(func.max(existing.position), -1) + 1)
        .where(existing.poker_id == poker_id)
        .scalar_subquery()
    )


def story_to_snapshot(row: PokerStory) -> PokerStorySnapshot:
    return PokerStorySnapshot(
        id=row.story_id,
        poker_id=row.poker_id,
        name=row.name,
        type=row.type,
        reference_id=row.reference_id,
        link=row.link,
        description=row.description,
        acceptance_criteria=row.acceptance_criteria,
        position=row.position,
        points=row.points,
        active=row.active,
        skipped=row.skipped,
        votes=[PokerVote(**v) for v in (row.votes or [])],
        vote_start_time=row.vote_start_time,
        vote_end_time=row.vote_end_time,
    )


class PokerStoryService:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ============================================
    # READS
    # ============================================

    async def get_stories(self, poker_id: str) -> List[PokerStorySnapshot]:
        """Get a game's stories ordered by position"""
        try:
            result = await self.session.execute(
                select(PokerStory)
                .where(PokerStory.poker_id == poker_id)
                .order_by(PokerStory.position.asc())
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"get poker stories query error: {e}") from e

        return [story_to_snapshot(row) for row in result.scalars().all()]

    async def _get_story_row(self, poker_id: str, story_id: str, for_update: bool = False) -> PokerStory:
        query = select(PokerStory).where(and_(
            PokerStory.poker_id == poker_id,
            PokerStory.story_id == story_id
        )).execution_options(populate_existing=True)
        if for_update:
            query = query.with_for_update()

        story = (await self.session.execute(query)).scalar_one_or_none()
        if not story:
            await self.session.rollback()
            raise StoryNotFoundError(f"story {story_id} not found in poker {poker_id}")
        return story

    # ============================================
    # CREATE / UPDATE / DELETE
    # ============================================

    async def _insert_story(self, poker_id: str, story: PokerStorySnapshot) -> PokerStorySnapshot:
        story_id = generate_uuid("story_")
        await self.session.execute(
            insert(PokerStory).values(
                story_id=story_id,
                poker_id=poker_id,
                name=story.name,
                type=story.type,
                reference_id=story.reference_id,
                link=story.link,
                description=story.description,
                acceptance_criteria=story.acceptance_criteria,
                position=next_story_position(poker_id),
            )
        )
        position = await self.session.scalar(
            select(PokerStory.position).where(PokerStory.story_id == story_id)
        )
        return story.model_copy(update={
            "id": story_id,
            "poker_id": poker_id,
            "position": position,
            "votes": [],
        })

    async def create_stories(
        self,
        poker_id: str,
        stories: Sequence[PokerStorySnapshot]
    ) -> List[StoryInsertResult]:
        """Insert a batch of stories, one savepoint per story.

        Runs inside the caller's transaction; the caller commits. A failed
        story is rolled back on its own and reported in its result.
        """
        results = []
        for story in stories:
            try:
                async with self.session.begin_nested():
                    created = await self._insert_story(poker_id, story)
                results.append(StoryInsertResult(story=created))
            except SQLAlchemyError as e:
                logger.error(
                    "insert poker story error",
                    extra={"poker_id": poker_id, "story_name": story.name},
                    exc_info=True
                )
                results.append(StoryInsertResult(story=story, error=e))
        return results

    async def create_story(
        self,
        poker_id: str,
        name: str,
        type: str = "Story",
        reference_id: str = "",
        link: str = "",
        description: str = "",
        acceptance_criteria: str = ""
    ) -> List[PokerStorySnapshot]:
        """Append a story to the game and return the game's stories"""
        story = PokerStorySnapshot(
            name=name,
            type=type,
            reference_id=reference_id,
            link=link,
            description=description,
            acceptance_criteria=acceptance_criteria,
        )
        try:
            await self._insert_story(poker_id, story)
            await self._touch_game(poker_id)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"create poker story query error: {e}") from e

        return await self.get_stories(poker_id)

    async def update_story(
        self,
        poker_id: str,
        story_id: str,
        name: str,
        type: str,
        reference_id: str,
        link: str,
        description: str,
        acceptance_criteria: str
    ) -> List[PokerStorySnapshot]:
        """Overwrite a story's editable fields"""
        try:
            result = await self.session.execute(
                update(PokerStory)
                .where(and_(PokerStory.poker_id == poker_id, PokerStory.story_id == story_id))
                .values(
                    name=name,
                    type=type,
                    reference_id=reference_id,
                    link=link,
                    description=description,
                    acceptance_criteria=acceptance_criteria,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self.session.rollback()
                raise StoryNotFoundError(f"story {story_id} not found in poker {poker_id}")
            await self._touch_game(poker_id)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"update poker story query error: {e}") from e

        return await self.get_stories(poker_id)

    async def delete_story(self, poker_id: str, story_id: str) -> List[PokerStorySnapshot]:
        """Delete a story, close the position gap and clear it as the active story"""
        try:
            story = await self._get_story_row(poker_id, story_id, for_update=True)
            deleted_position = story.position

            await self.session.execute(
                delete(PokerStory)
                .where(PokerStory.story_id == story_id)
                .execution_options(synchronize_session=False)
            )
            await self.session.execute(
                update(PokerStory)
                .where(and_(PokerStory.poker_id == poker_id, PokerStory.position > deleted_position))
                .values(position=PokerStory.position - 1)
                .execution_options(synchronize_session=False)
            )
            await self.session.execute(
                update(PokerGame)
                .where(and_(PokerGame.poker_id == poker_id, PokerGame.active_story_id == story_id))
                .values(active_story_id=None, voting_locked=True)
                .execution_options(synchronize_session=False)
            )
            await self._touch_game(poker_id)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"delete poker story query error: {e}") from e

        return await self.get_stories(poker_id)

    async def arrange_story(self, poker_id: str, story_id: str, before_story_id: str) -> List[PokerStorySnapshot]:
        """Move a story in front of before_story_id, or to the end when it is empty.

        Positions are renumbered from 0 without gaps.
        """
        try:
            result = await self.session.execute(
                select(PokerStory.story_id)
                .where(PokerStory.poker_id == poker_id)
                .order_by(PokerStory.position.asc())
                .with_for_update()
            )
            ordered = list(result.scalars().all())
            if story_id not in ordered:
                await self.session.rollback()
                raise StoryNotFoundError(f"story {story_id} not found in poker {poker_id}")
            if before_story_id and before_story_id not in ordered:
                await self.session.rollback()
                raise StoryNotFoundError(f"story {before_story_id} not found in poker {poker_id}")

            ordered.remove(story_id)
            if before_story_id:
                ordered.insert(ordered.index(before_story_id), story_id)
            else:
                ordered.append(story_id)

            for position, sid in enumerate(ordered):
                await self.session.execute(
                    update(PokerStory)
                    .where(PokerStory.story_id == sid)
                    .values(position=position)
                    .execution_options(synchronize_session=False)
                )
            await self._touch_game(poker_id)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"arrange poker story query error: {e}") from e

        return await self.get_stories(poker_id)

    # ============================================
    # VOTING
    # ============================================

    async def activate_story_voting(self, poker_id: str, story_id: str) -> List[PokerStorySnapshot]:
        """Make story_id the active story, reset its votes and unlock voting"""
        try:
            story = await self._get_story_row(poker_id, story_id, for_update=True)

            await self.session.execute(
                update(PokerStory)
                .where(and_(PokerStory.poker_id == poker_id, PokerStory.story_id != story_id))
                .values(active=False)
                .execution_options(synchronize_session=False)
            )
            story.active = True
            story.skipped = False
            story.votes = []
            story.vote_start_time = utc_now()
            story.vote_end_time = None

            await self.session.execute(
                update(PokerGame)
                .where(PokerGame.poker_id == poker_id)
                .values(active_story_id=story_id, voting_locked=False, last_active=utc_now())
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"activate poker story voting query error: {e}") from e

        return await self.get_stories(poker_id)

    async def set_vote(self, poker_id: str, user_id: str, story_id: str, vote: str) -> bool:
        """Record or replace the user's vote.

        Returns True once every active, non spectator participant has voted.
        Raises VotingClosedError unless the story is the active one and voting
        is unlocked.
        """
        try:
            story = await self._get_story_row(poker_id, story_id, for_update=True)
            await self._ensure_voting_open(poker_id, story_id)
            votes = [v for v in (story.votes or []) if v.get("user_id") != user_id]
            votes.append({"user_id": user_id, "vote": vote})
            # Reassign so the JSON column is flagged dirty
            story.votes = votes
            await self._touch_game(poker_id)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"set poker vote query error: {e}") from e

        try:
            result = await self.session.execute(
                select(PokerParticipant.user_id).where(and_(
                    PokerParticipant.poker_id == poker_id,
                    PokerParticipant.active == True,
                    PokerParticipant.spectator == False
                ))
            )
            voters = set(result.scalars().all())
        except SQLAlchemyError:
            await self.session.rollback()
            logger.error(
                "poker all voted check error",
                extra={"poker_id": poker_id, "story_id": story_id},
                exc_info=True
            )
            return False

        voted = {v["user_id"] for v in votes}
        return bool(voters) and voters.issubset(voted)

    async def retract_vote(self, poker_id: str, user_id: str, story_id: str) -> None:
        """Remove the user's vote from the story while its voting is open"""
        try:
            story = await self._get_story_row(poker_id, story_id, for_update=True)
            await self._ensure_voting_open(poker_id, story_id)
            story.votes = [v for v in (story.votes or []) if v.get("user_id") != user_id]
            await self._touch_game(poker_id)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"retract poker vote query error: {e}") from e

    async def end_story_voting(self, poker_id: str, story_id: str) -> None:
        """Lock voting on the active story"""
        try:
            story = await self._get_story_row(poker_id, story_id, for_update=True)
            story.vote_end_time = utc_now()
            await self._set_game_state(poker_id, voting_locked=True)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"end poker story voting query error: {e}") from e

    async def skip_story(self, poker_id: str, story_id: str) -> None:
        """Discard the votes, mark the story skipped and clear the active story"""
        try:
            story = await self._get_story_row(poker_id, story_id, for_update=True)
            story.votes = []
            story.skipped = True
            story.active = False
            story.vote_end_time = utc_now()
            await self._set_game_state(poker_id, voting_locked=True, active_story_id=None)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"skip poker story query error: {e}") from e

    async def finalize_story(self, poker_id: str, story_id: str, points: str) -> None:
        """Store the agreed points and clear the active story"""
        try:
            story = await self._get_story_row(poker_id, story_id, for_update=True)
            story.points = points
            story.active = False
            await self._set_game_state(poker_id, voting_locked=True, active_story_id=None)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"finalize poker story query error: {e}") from e

    # ============================================
    # HELPERS
    # ============================================

    async def _ensure_voting_open(self, poker_id: str, story_id: str) -> None:
        result = await self.session.execute(
            select(PokerGame.active_story_id, PokerGame.voting_locked)
            .where(PokerGame.poker_id == poker_id)
        )
        game = result.first()
        if game is None or game.active_story_id != story_id or game.voting_locked:
            await self.session.rollback()
            raise VotingClosedError(f"voting is not open on story {story_id} in poker {poker_id}")

    async def _touch_game(self, poker_id: str) -> None:
        await self.session.execute(
            update(PokerGame)
            .where(PokerGame.poker_id == poker_id)
            .values(last_active=utc_now())
            .execution_options(synchronize_session=False)
        )

    async def _set_game_state(self, poker_id: str, **values) -> None:
        values["last_active"] = utc_now()
        await self.session.execute(
            update(PokerGame)
            .where(PokerGame.poker_id == poker_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
