"""create planning poker tables

Revision ID: 7e1f0c2a9b34
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7e1f0c2a9b34'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users/teams and the poker game, facilitator, participant and story tables."""
    op.create_table('users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=50), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False, server_default='GUEST'),
        sa.Column('avatar', sa.String(length=100), nullable=False, server_default='robohash'),
        sa.Column('picture', sa.String(length=500), nullable=True),
        sa.Column('last_active', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
        sa.UniqueConstraint('email')
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=False)

    op.create_table('teams',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('team_id', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('team_id')
    )

    op.create_table('team_users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('team_id', sa.String(length=50), nullable=False),
        sa.Column('user_id', sa.String(length=50), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='MEMBER'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['team_id'], ['teams.team_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('team_id', 'user_id', name='uq_team_users_team_user')
    )
    op.create_index('idx_team_users_user_id', 'team_users', ['user_id'], unique=False)

    op.create_table('poker_games',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('poker_id', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=256), nullable=False),
        sa.Column('voting_locked', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('active_story_id', sa.String(length=50), nullable=True),
        sa.Column('point_values_allowed', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('auto_finish_voting', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('point_average_rounding', sa.String(length=10), nullable=False, server_default='ceil'),
        sa.Column('hide_voter_identity', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('join_code', sa.Text(), nullable=True),
        sa.Column('leader_code', sa.Text(), nullable=True),
        sa.Column('team_id', sa.String(length=50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('last_active', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['team_id'], ['teams.team_id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('poker_id')
    )
    op.create_index('idx_poker_games_team_id', 'poker_games', ['team_id'], unique=False)
    op.create_index('idx_poker_games_last_active', 'poker_games', ['last_active'], unique=False)

    op.create_table('poker_facilitators',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('poker_id', sa.String(length=50), nullable=False),
        sa.Column('user_id', sa.String(length=50), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['poker_id'], ['poker_games.poker_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('poker_id', 'user_id', name='uq_poker_facilitators_game_user')
    )

    op.create_table('poker_users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('poker_id', sa.String(length=50), nullable=False),
        sa.Column('user_id', sa.String(length=50), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('abandoned', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('spectator', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(['poker_id'], ['poker_games.poker_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.user_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('poker_id', 'user_id', name='uq_poker_users_game_user')
    )
    op.create_index('idx_poker_users_user_id', 'poker_users', ['user_id'], unique=False)

    op.create_table('poker_stories',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('story_id', sa.String(length=50), nullable=False),
        sa.Column('poker_id', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=256), nullable=False),
        sa.Column('type', sa.String(length=64), nullable=False, server_default='Story'),
        sa.Column('reference_id', sa.String(length=128), nullable=False, server_default=''),
        sa.Column('link', sa.Text(), nullable=False, server_default=''),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('acceptance_criteria', sa.Text(), nullable=False, server_default=''),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('points', sa.String(length=10), nullable=False, server_default=''),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('skipped', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('votes', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('vote_start_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('vote_end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['poker_id'], ['poker_games.poker_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('story_id')
    )
    op.create_index('idx_poker_stories_poker_position', 'poker_stories', ['poker_id', 'position'], unique=False)


def downgrade() -> None:
    """Drop the poker tables, then users/teams."""
    op.drop_index('idx_poker_stories_poker_position', table_name='poker_stories')
    op.drop_table('poker_stories')
    op.drop_index('idx_poker_users_user_id', table_name='poker_users')
    op.drop_table('poker_users')
    op.drop_table('poker_facilitators')
    op.drop_index('idx_poker_games_last_active', table_name='poker_games')
    op.drop_index('idx_poker_games_team_id', table_name='poker_games')
    op.drop_table('poker_games')
    op.drop_index('idx_team_users_user_id', table_name='team_users')
    op.drop_table('team_users')
    op.drop_table('teams')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
