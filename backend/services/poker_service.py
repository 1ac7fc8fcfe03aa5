"""
Planning Poker Service
Persists games, their participants and facilitators, and reads them back as
snapshots for the realtime layer.

Failure policy:
- single row lookups and mutations raise a PokerError subclass
- list re-reads after a successful mutation are advisory and come back as a
  RefreshedList flagged stale when they fail
"""
import hashlib
import json
import logging
from datetime import timedelta
from typing import Optional, List, Dict, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, and_, or_, Text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from db.models import User, UserType, Team, TeamUser, utc_now
from db.poker_models import PokerGame, PokerFacilitator, PokerParticipant, PokerStory, PointAverageRounding
from models.poker import PokerGameSnapshot, PokerStorySnapshot, PokerUserSnapshot
from services.encryption import EncryptionService, get_encryption_service
from services.logging_service import log_operation
from services.poker_errors import (
    PokerEncodingError, GameNotFoundError, ParticipantNotFoundError,
    UserNotFoundError, FacilitatorCodeNotSetError, NotFacilitatorError,
    OnlyFacilitatorError, DuplicateActiveUserError, InvalidRoundingError, PokerStoreError,
    RefreshedList
)
from services.poker_story_service import PokerStoryService

logger = logging.getLogger(__name__)


def create_gravatar_hash(value: str) -> str:
    """md5 of the trimmed, lower-cased email (or user id)"""
    return hashlib.md5(value.strip().lower().encode()).hexdigest()


def sanitize_email(email: str) -> str:
    return email.strip().lower()


def validate_rounding(value: str) -> str:
    """Return the rounding mode value, rejecting anything but ceil, round or floor"""
    try:
        return PointAverageRounding(value).value
    except ValueError as e:
        raise InvalidRoundingError(f"invalid point_average_rounding: {value!r}") from e


def decode_point_values(raw: Optional[str]) -> List[str]:
    """Decode the point_values_allowed column, raising ValueError when malformed"""
    values = json.loads(raw or "[]")
    if not isinstance(values, list):
        raise ValueError(f"point_values_allowed is not a list: {raw!r}")
    return [str(v) for v in values]


class PokerService:
    def __init__(self, session: AsyncSession, encryption: Optional[EncryptionService] = None):
        self.session = session
        self.encryption = encryption or get_encryption_service()
        self.stories = PokerStoryService(session)

    # ============================================
    # CREATE / UPDATE
    # ============================================

    async def create_game(
        self,
        facilitator_id: str,
        name: str,
        point_values_allowed: List[str],
        stories: Sequence[PokerStorySnapshot],
        auto_finish_voting: bool,
        point_average_rounding: str,
        join_code: str,
        facilitator_code: str,
        hide_voter_identity: bool
    ) -> PokerGameSnapshot:
        """Create a game with the creator as its only facilitator"""
        return await self._create_game(
            "create poker", None, facilitator_id, name, point_values_allowed, stories,
            auto_finish_voting, point_average_rounding, join_code, facilitator_code,
            hide_voter_identity
        )

    async def team_create_game(
        self,
        team_id: str,
        facilitator_id: str,
        name: str,
        point_values_allowed: List[str],
        stories: Sequence[PokerStorySnapshot],
        auto_finish_voting: bool,
        point_average_rounding: str,
        join_code: str,
        facilitator_code: str,
        hide_voter_identity: bool
    ) -> PokerGameSnapshot:
        """Create a game owned by a team"""
        return await self._create_game(
            "team create poker", team_id or None, facilitator_id, name, point_values_allowed,
            stories, auto_finish_voting, point_average_rounding, join_code, facilitator_code,
            hide_voter_identity
        )

    async def _create_game(
        self,
        operation: str,
        team_id: Optional[str],
        facilitator_id: str,
        name: str,
        point_values_allowed: List[str],
        stories: Sequence[PokerStorySnapshot],
        auto_finish_voting: bool,
        point_average_rounding: str,
        join_code: str,
        facilitator_code: str,
        hide_voter_identity: bool
    ) -> PokerGameSnapshot:
        point_average_rounding = validate_rounding(point_average_rounding)
        encrypted_join_code = self._encrypt_code(join_code, operation, "join_code")
        encrypted_leader_code = self._encrypt_code(facilitator_code, operation, "leader_code")

        game = PokerGame(
            name=name,
            voting_locked=True,
            point_values_allowed=json.dumps(list(point_values_allowed)),
            auto_finish_voting=auto_finish_voting,
            point_average_rounding=point_average_rounding,
            hide_voter_identity=hide_voter_identity,
            join_code=encrypted_join_code,
            leader_code=encrypted_leader_code,
            team_id=team_id,
        )

        try:
            self.session.add(game)
            await self.session.flush()

            # Creator is seeded as facilitator and as an (inactive) participant
            self.session.add(PokerFacilitator(poker_id=game.poker_id, user_id=facilitator_id))
            self.session.add(PokerParticipant(poker_id=game.poker_id, user_id=facilitator_id))
            await self.session.flush()

            results = await self.stories.create_stories(game.poker_id, stories or [])
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"{operation} query error: {e}") from e

        failed = [r for r in results if not r.ok]
        if failed:
            logger.warning(
                f"{operation}: {len(failed)} of {len(results)} stories were not saved",
                extra={"poker_id": game.poker_id, "event_type": "poker_story_insert_partial"}
            )

        return PokerGameSnapshot(
            id=game.poker_id,
            name=name,
            voting_locked=True,
            point_values_allowed=list(point_values_allowed),
            auto_finish_voting=auto_finish_voting,
            point_average_rounding=point_average_rounding,
            hide_voter_identity=hide_voter_identity,
            facilitators=[facilitator_id],
            join_code=join_code,
            facilitator_code=facilitator_code,
            team_id=team_id or "",
            stories=[r.story for r in results if r.ok],
            created_at=game.created_at,
            updated_at=game.updated_at,
        )

    async def update_game(
        self,
        poker_id: str,
        name: str,
        point_values_allowed: List[str],
        auto_finish_voting: bool,
        point_average_rounding: str,
        hide_voter_identity: bool,
        join_code: str,
        facilitator_code: str,
        team_id: str
    ) -> None:
        """Overwrite a game's settings. Codes arrive as plaintext; empty clears them."""
        point_average_rounding = validate_rounding(point_average_rounding)
        encrypted_join_code = self._encrypt_code(join_code, "update poker", "join_code")
        encrypted_leader_code = self._encrypt_code(facilitator_code, "update poker", "leader_code")

        try:
            await self.session.execute(
                update(PokerGame)
                .where(PokerGame.poker_id == poker_id)
                .values(
                    name=name,
                    point_values_allowed=json.dumps(list(point_values_allowed)),
                    auto_finish_voting=auto_finish_voting,
                    point_average_rounding=point_average_rounding,
                    hide_voter_identity=hide_voter_identity,
                    join_code=encrypted_join_code,
                    leader_code=encrypted_leader_code,
                    team_id=team_id or None,
                    updated_at=utc_now(),
                    last_active=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"update poker query error: {e}") from e

    async def set_voting_locked(self, poker_id: str, voting_locked: bool) -> None:
        try:
            await self.session.execute(
                update(PokerGame)
                .where(PokerGame.poker_id == poker_id)
                .values(voting_locked=voting_locked, last_active=utc_now())
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"set poker voting locked query error: {e}") from e

    # ============================================
    # READS
    # ============================================

    async def get_facilitator_code(self, poker_id: str) -> str:
        """Get the decrypted facilitator code of a game"""
        try:
            result = await self.session.execute(
                select(PokerGame.leader_code).where(PokerGame.poker_id == poker_id)
            )
            row = result.first()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"get poker facilitator code query error: {e}") from e

        if row is None:
            raise GameNotFoundError(f"poker {poker_id} not found")
        if not row.leader_code:
            raise FacilitatorCodeNotSetError("poker facilitator code not set")

        return self._decrypt_code(row.leader_code, "get poker facilitator code", "leader_code")

    async def get_game(self, poker_id: str, user_id: str) -> PokerGameSnapshot:
        """Get a game with its facilitators, users and stories.

        The facilitator code is only decrypted for facilitators of the game.
        """
        try:
            result = await self.session.execute(
                select(PokerGame)
                .options(selectinload(PokerGame.facilitators))
                .where(PokerGame.poker_id == poker_id)
                .execution_options(populate_existing=True)
            )
            game = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"get poker query error: {e}") from e

        if not game:
            raise GameNotFoundError(f"poker {poker_id} not found")

        facilitators = [f.user_id for f in game.facilitators]
        try:
            point_values = decode_point_values(game.point_values_allowed)
        except ValueError as e:
            raise PokerEncodingError(f"get poker decode point_values_allowed error: {e}") from e

        snapshot = self._to_snapshot(game, point_values, facilitators)

        if game.join_code:
            snapshot.join_code = self._decrypt_code(game.join_code, "get poker", "join_code")

        if game.leader_code and user_id in facilitators:
            snapshot.facilitator_code = self._decrypt_code(game.leader_code, "get poker", "leader_code")

        users = await self.get_users(poker_id)
        snapshot.users = list(users)
        snapshot.users_stale = users.stale
        snapshot.stories = await self.stories.get_stories(poker_id)

        return snapshot

    async def get_games_by_user(self, user_id: str, limit: int, offset: int) -> Tuple[List[PokerGameSnapshot], int]:
        """Get the games a user joined (and has not abandoned) or that belong to one of the user's teams.

        Count and page are read by separate queries and can disagree when
        games change in between.
        """
        user_teams = select(TeamUser.team_id).where(TeamUser.user_id == user_id)
        user_games = select(PokerParticipant.poker_id).where(and_(
            PokerParticipant.user_id == user_id,
            PokerParticipant.abandoned == False
        ))
        visible = or_(
            PokerGame.poker_id.in_(user_games),
            PokerGame.team_id.in_(user_teams)
        )

        try:
            count = await self.session.scalar(
                select(func.count()).select_from(PokerGame).where(visible)
            )
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"get poker by user count query error: {e}") from e

        try:
            result = await self.session.execute(
                select(PokerGame, Team.name)
                # Team names are only shown for the user's own teams
                .outerjoin(Team, and_(Team.team_id == PokerGame.team_id, Team.team_id.in_(user_teams)))
                .where(visible)
                .order_by(PokerGame.created_at.desc())
                .limit(limit)
                .offset(offset)
                .execution_options(populate_existing=True)
            )
            rows = result.all()
            poker_ids = [game.poker_id for game, _ in rows]
            facilitators = await self._load_facilitators(poker_ids)
            points = await self._load_story_points(poker_ids)
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"get poker by user query error: {e}") from e

        games = []
        for game, team_name in rows:
            snapshot = self._decode_listing_row(game, facilitators)
            if snapshot is None:
                continue
            snapshot.team_name = team_name or ""
            snapshot.stories = points.get(game.poker_id, [])
            games.append(snapshot)

        return games, count or 0

    async def get_games(self, limit: int, offset: int) -> Tuple[List[PokerGameSnapshot], int]:
        """Get a page of all games, newest first"""
        return await self._list_games("get poker games", None, limit, offset)

    async def get_active_games(self, limit: int, offset: int) -> Tuple[List[PokerGameSnapshot], int]:
        """Get a page of games with at least one connected user"""
        active_games = select(PokerParticipant.poker_id).where(PokerParticipant.active == True)
        return await self._list_games(
            "get active poker games", PokerGame.poker_id.in_(active_games), limit, offset
        )

    async def _list_games(self, operation: str, criteria, limit: int, offset: int) -> Tuple[List[PokerGameSnapshot], int]:
        count_query = select(func.count()).select_from(PokerGame)
        page_query = select(PokerGame).order_by(PokerGame.created_at.desc())
        if criteria is not None:
            count_query = count_query.where(criteria)
            page_query = page_query.where(criteria)

        try:
            count = await self.session.scalar(count_query)
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"{operation} count query error: {e}") from e

        try:
            result = await self.session.execute(
                page_query.limit(limit).offset(offset).execution_options(populate_existing=True)
            )
            rows = list(result.scalars().all())
            facilitators = await self._load_facilitators([g.poker_id for g in rows])
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"{operation} query error: {e}") from e

        games = []
        for game in rows:
            snapshot = self._decode_listing_row(game, facilitators)
            if snapshot is not None:
                games.append(snapshot)

        return games, count or 0

    # ============================================
    # AUTHORIZATION / STATUS
    # ============================================

    async def confirm_facilitator(self, poker_id: str, user_id: str) -> None:
        """Confirm the user is a facilitator of the game or an admin"""
        try:
            role = await self.session.scalar(select(User.type).where(User.user_id == user_id))
            if role is None:
                raise UserNotFoundError(f"user {user_id} not found")
            if role == UserType.ADMIN.value:
                return

            facilitator_id = await self.session.scalar(
                select(PokerFacilitator.user_id).where(and_(
                    PokerFacilitator.poker_id == poker_id,
                    PokerFacilitator.user_id == user_id
                ))
            )
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"confirm poker facilitator query error: {e}") from e

        if facilitator_id is None:
            raise NotFacilitatorError(f"user {user_id} is not a facilitator of poker {poker_id}")

    async def get_user_active_status(self, poker_id: str, user_id: str) -> None:
        """Fail if the user never joined the game or is already connected to it"""
        try:
            result = await self.session.execute(
                select(PokerParticipant.active).where(and_(
                    PokerParticipant.poker_id == poker_id,
                    PokerParticipant.user_id == user_id
                ))
            )
            row = result.first()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"poker get user active status query error: {e}") from e

        if row is None:
            raise ParticipantNotFoundError(f"user {user_id} has not joined poker {poker_id}")
        if row.active:
            raise DuplicateActiveUserError("DUPLICATE_BATTLE_USER")

    # ============================================
    # PARTICIPANTS
    # ============================================

    async def get_users(self, poker_id: str) -> RefreshedList:
        """Get the game's users ordered by name"""
        return await self._select_users(poker_id, active_only=False)

    async def get_active_users(self, poker_id: str) -> RefreshedList:
        """Get the game's connected users ordered by name"""
        return await self._select_users(poker_id, active_only=True)

    async def _select_users(self, poker_id: str, active_only: bool) -> RefreshedList:
        query = (
            select(
                User.user_id, User.name, User.type, User.avatar, User.email, User.picture,
                PokerParticipant.active, PokerParticipant.spectator
            )
            .join(User, User.user_id == PokerParticipant.user_id)
            .where(PokerParticipant.poker_id == poker_id)
            .order_by(User.name.asc())
        )
        if active_only:
            query = query.where(PokerParticipant.active == True)

        try:
            result = await self.session.execute(query)
            rows = result.all()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.error(
                f"error getting {'active ' if active_only else ''}poker users",
                extra={"poker_id": poker_id},
                exc_info=True
            )
            return RefreshedList(stale=True)

        return RefreshedList(
            PokerUserSnapshot(
                id=row.user_id,
                name=row.name,
                type=row.type,
                avatar=row.avatar or "",
                gravatar_hash=create_gravatar_hash(row.email or row.user_id),
                active=row.active,
                spectator=row.spectator,
                picture_url=row.picture or "",
            )
            for row in rows
        )

    async def add_user(self, poker_id: str, user_id: str) -> RefreshedList:
        """Add the user to the game as connected, or reconnect a returning user"""
        insert = self._dialect_insert()
        stmt = insert(PokerParticipant).values(
            poker_id=poker_id,
            user_id=user_id,
            active=True,
            abandoned=False,
            spectator=False,
        ).on_conflict_do_update(
            index_elements=[PokerParticipant.poker_id, PokerParticipant.user_id],
            set_={"active": True, "abandoned": False},
        )

        try:
            await self.session.execute(stmt)
            await self._touch_game(poker_id)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"poker add user query error: {e}") from e

        return await self.get_users(poker_id)

    async def retreat_user(self, poker_id: str, user_id: str) -> RefreshedList:
        """Mark the user disconnected. Never raises; failures are logged."""
        try:
            await self.session.execute(
                update(PokerParticipant)
                .where(and_(PokerParticipant.poker_id == poker_id, PokerParticipant.user_id == user_id))
                .values(active=False)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.error("error updating poker user to active false",
                         extra={"poker_id": poker_id, "user_id": user_id}, exc_info=True)

        await self._stamp_user_last_active(user_id)

        return await self.get_users(poker_id)

    async def abandon_game(self, poker_id: str, user_id: str) -> RefreshedList:
        """Mark the user disconnected and abandoned so the game leaves their list"""
        try:
            await self.session.execute(
                update(PokerParticipant)
                .where(and_(PokerParticipant.poker_id == poker_id, PokerParticipant.user_id == user_id))
                .values(active=False, abandoned=True)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"error updating game user to abandoned: {e}") from e

        try:
            await self.session.execute(
                update(User)
                .where(User.user_id == user_id)
                .values(last_active=utc_now())
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"error updating user last active timestamp: {e}") from e

        return await self.get_users(poker_id)

    async def toggle_spectator(self, poker_id: str, user_id: str, spectator: bool) -> RefreshedList:
        """Set whether the user is excluded from voting"""
        try:
            await self.session.execute(
                update(PokerParticipant)
                .where(and_(PokerParticipant.poker_id == poker_id, PokerParticipant.user_id == user_id))
                .values(spectator=spectator)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"poker toggle spectator query error: {e}") from e

        await self._stamp_user_last_active(user_id)

        return await self.get_users(poker_id)

    # ============================================
    # FACILITATORS
    # ============================================

    async def add_facilitator(self, poker_id: str, user_id: str) -> RefreshedList:
        """Make a user a facilitator of the game"""
        try:
            self.session.add(PokerFacilitator(poker_id=poker_id, user_id=user_id))
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"poker add facilitator query error: {e}") from e

        return await self._refresh_facilitators(poker_id)

    async def remove_facilitator(self, poker_id: str, user_id: str) -> RefreshedList:
        """Remove a user from the game's facilitators, keeping at least one.

        The count check and the delete share one transaction with the
        facilitator rows locked, so concurrent removals cannot empty the set.
        """
        try:
            result = await self.session.execute(
                select(PokerFacilitator.user_id)
                .where(PokerFacilitator.poker_id == poker_id)
                .with_for_update()
            )
            current = list(result.scalars().all())
            if len(current) == 1:
                await self.session.rollback()
                raise OnlyFacilitatorError("ONLY_FACILITATOR")

            await self.session.execute(
                delete(PokerFacilitator)
                .where(and_(PokerFacilitator.poker_id == poker_id, PokerFacilitator.user_id == user_id))
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"poker remove facilitator query error: {e}") from e

        return await self._refresh_facilitators(poker_id)

    async def add_facilitators_by_email(self, poker_id: str, facilitator_emails: List[str]) -> List[str]:
        """Add every registered user matching one of the emails as facilitator"""
        emails = ",".join(sanitize_email(email) for email in facilitator_emails)

        try:
            encoded = await self._facilitator_add_by_email(poker_id, emails)
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"error adding poker facilitator by email: {e}") from e

        try:
            return json.loads(encoded) if encoded else []
        except ValueError as e:
            raise PokerEncodingError(f"poker facilitator by email decode error: {e}") from e

    async def _facilitator_add_by_email(self, poker_id: str, emails: str) -> Optional[str]:
        """Bulk resolver: resolve comma separated emails to users, insert the
        missing facilitator rows and return the full list as a JSON array
        aggregated by the database."""
        addresses = [e for e in emails.split(",") if e]

        if addresses:
            existing = select(PokerFacilitator.user_id).where(PokerFacilitator.poker_id == poker_id)
            result = await self.session.execute(
                select(User.user_id).where(and_(
                    func.lower(User.email).in_(addresses),
                    User.user_id.not_in(existing)
                ))
            )
            for new_id in result.scalars().all():
                self.session.add(PokerFacilitator(poker_id=poker_id, user_id=new_id))
            await self.session.flush()

        encoded = await self.session.scalar(
            select(self._json_array_agg(PokerFacilitator.user_id))
            .where(PokerFacilitator.poker_id == poker_id)
        )
        await self.session.commit()
        return encoded

    async def _refresh_facilitators(self, poker_id: str) -> RefreshedList:
        try:
            result = await self.session.execute(
                select(PokerFacilitator.user_id)
                .where(PokerFacilitator.poker_id == poker_id)
                .order_by(PokerFacilitator.created_at.asc())
            )
            return RefreshedList(result.scalars().all())
        except SQLAlchemyError:
            await self.session.rollback()
            logger.error("poker facilitator refresh query error", extra={"poker_id": poker_id}, exc_info=True)
            return RefreshedList(stale=True)

    # ============================================
    # DELETE / PURGE
    # ============================================

    async def delete_game(self, poker_id: str) -> None:
        """Delete a game; users, facilitators and stories go with it via cascade"""
        try:
            await self.session.execute(
                delete(PokerGame)
                .where(PokerGame.poker_id == poker_id)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"poker delete query error: {e}") from e

    @log_operation("purge_old_poker_games")
    async def purge_old_games(self, days_old: int) -> None:
        """Delete every game inactive for more than days_old days"""
        cutoff = utc_now() - timedelta(days=days_old)
        try:
            await self.session.execute(
                delete(PokerGame)
                .where(PokerGame.last_active < cutoff)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PokerStoreError(f"clean poker games query error: {e}") from e

    # ============================================
    # HELPERS
    # ============================================

    def _encrypt_code(self, code: str, operation: str, field: str) -> Optional[str]:
        # An empty code means "no code set" and is stored as NULL
        if not code:
            return None
        try:
            return self.encryption.encrypt(code)
        except (TypeError, ValueError) as e:
            raise PokerEncodingError(f"{operation} encrypt {field} error: {e}") from e

    def _decrypt_code(self, encrypted: str, operation: str, field: str) -> str:
        try:
            return self.encryption.decrypt(encrypted)
        except ValueError as e:
            raise PokerEncodingError(f"{operation} decode {field} error: {e}") from e

    def _dialect_insert(self):
        if self.session.get_bind().dialect.name == "postgresql":
            return pg_insert
        return sqlite_insert

    def _json_array_agg(self, column):
        if self.session.get_bind().dialect.name == "postgresql":
            return func.json_agg(column, type_=Text)
        return func.json_group_array(column, type_=Text)

    async def _touch_game(self, poker_id: str) -> None:
        await self.session.execute(
            update(PokerGame)
            .where(PokerGame.poker_id == poker_id)
            .values(last_active=utc_now())
            .execution_options(synchronize_session=False)
        )

    async def _stamp_user_last_active(self, user_id: str) -> None:
        try:
            await self.session.execute(
                update(User)
                .where(User.user_id == user_id)
                .values(last_active=utc_now())
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.error("error updating user last active timestamp", extra={"user_id": user_id}, exc_info=True)

    async def _load_facilitators(self, poker_ids: List[str]) -> Dict[str, List[str]]:
        facilitators: Dict[str, List[str]] = {}
        if not poker_ids:
            return facilitators
        result = await self.session.execute(
            select(PokerFacilitator.poker_id, PokerFacilitator.user_id)
            .where(PokerFacilitator.poker_id.in_(poker_ids))
        )
        for poker_id, user_id in result.all():
            facilitators.setdefault(poker_id, []).append(user_id)
        return facilitators

    async def _load_story_points(self, poker_ids: List[str]) -> Dict[str, List[PokerStorySnapshot]]:
        stories: Dict[str, List[PokerStorySnapshot]] = {}
        if not poker_ids:
            return stories
        result = await self.session.execute(
            select(PokerStory.story_id, PokerStory.poker_id, PokerStory.points)
            .where(PokerStory.poker_id.in_(poker_ids))
            .order_by(PokerStory.position.asc())
        )
        for story_id, poker_id, points in result.all():
            stories.setdefault(poker_id, []).append(
                PokerStorySnapshot(id=story_id, poker_id=poker_id, points=points)
            )
        return stories

    def _decode_listing_row(self, game: PokerGame, facilitators: Dict[str, List[str]]) -> Optional[PokerGameSnapshot]:
        try:
            point_values = decode_point_values(game.point_values_allowed)
        except ValueError:
            logger.warning(
                "skipping poker game with undecodable point values",
                extra={"poker_id": game.poker_id},
                exc_info=True
            )
            return None
        return self._to_snapshot(game, point_values, facilitators.get(game.poker_id, []))

    def _to_snapshot(self, game: PokerGame, point_values: List[str], facilitators: List[str]) -> PokerGameSnapshot:
        return PokerGameSnapshot(
            id=game.poker_id,
            name=game.name,
            voting_locked=game.voting_locked,
            active_story_id=game.active_story_id or "",
            point_values_allowed=point_values,
            auto_finish_voting=game.auto_finish_voting,
            point_average_rounding=game.point_average_rounding,
            hide_voter_identity=game.hide_voter_identity,
            facilitators=facilitators,
            team_id=game.team_id or "",
            created_at=game.created_at,
            updated_at=game.updated_at,
        )
