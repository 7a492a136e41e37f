"""weekly arena schema: users, tournaments, entries, game scores, payouts

Revision ID: weekly_arena_001
Revises:
Create Date: 2026-10-16

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = 'weekly_arena_001'
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(12, 4)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Create the tournament tables."""
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('wallet', sa.String(64), nullable=False),
        sa.Column('username', sa.String(50), nullable=True),
        sa.Column('last_verified_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_verified_tournament_id', sa.String(36), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_users_wallet', 'users', ['wallet'], unique=True)

    op.create_table(
        'tournaments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('cycle_key', sa.Date, nullable=False, comment='Boundary date closing the cycle'),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('player_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('total_collected', MONEY, nullable=False, server_default='0'),
        sa.Column('prize_pool', MONEY, nullable=False, server_default='0'),
        sa.Column('admin_fee', MONEY, nullable=False, server_default='0'),
        sa.Column('guarantee_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('total_games_played', sa.Integer, nullable=False, server_default='0'),
        *_timestamps(),
        sa.UniqueConstraint('cycle_key', name='uq_tournaments_cycle_key'),
    )

    # At most one active tournament
    op.create_index(
        'uq_tournaments_single_active',
        'tournaments',
        ['is_active'],
        unique=True,
        postgresql_where=sa.text('is_active'),
    )

    op.create_table(
        'participant_entries',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('tournament_id', sa.String(36), sa.ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('wallet', sa.String(64), nullable=False),
        sa.Column('display_name', sa.String(50), nullable=True),
        sa.Column('highest_score', sa.Integer, nullable=False, server_default='0'),
        sa.Column('first_score_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('total_games_played', sa.Integer, nullable=False, server_default='0'),
        sa.Column('verified_paid', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('standard_paid', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('verified_paid_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('standard_paid_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('continue_paid_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('verified_at_entry', sa.Boolean, nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'tournament_id', name='uq_entry_user_tournament'),
    )
    op.create_index('ix_participant_entries_tournament_id', 'participant_entries', ['tournament_id'])

    # Standings read: score desc, earliest first_score_at first
    op.create_index(
        'ix_entry_standings',
        'participant_entries',
        ['tournament_id', 'highest_score', 'first_score_at'],
    )

    op.create_table(
        'game_scores',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('tournament_id', sa.String(36), sa.ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('score', sa.Integer, nullable=False),
        sa.Column('game_duration_ms', sa.Integer, nullable=False),
        sa.Column('session_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_game_scores_tournament_id', 'game_scores', ['tournament_id'])

    op.create_table(
        'payouts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('tournament_id', sa.String(36), sa.ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('kind', sa.String(10), nullable=False),
        sa.Column('rank', sa.Integer, nullable=True),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('payout_reference', sa.String(128), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'tournament_id', 'kind', name='uq_payout_user_tournament_kind'),
    )
    op.create_index('ix_payouts_tournament_id', 'payouts', ['tournament_id'])


def downgrade() -> None:
    """Drop the tournament tables."""
    op.drop_index('ix_payouts_tournament_id')
    op.drop_table('payouts')
    op.drop_index('ix_game_scores_tournament_id')
    op.drop_table('game_scores')
    op.drop_index('ix_entry_standings')
    op.drop_index('ix_participant_entries_tournament_id')
    op.drop_table('participant_entries')
    op.drop_index('uq_tournaments_single_active')
    op.drop_table('tournaments')
    op.drop_index('ix_users_wallet')
    op.drop_table('users')
