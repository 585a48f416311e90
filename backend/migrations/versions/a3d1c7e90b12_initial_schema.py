"""Initial schema: users, sessions, session events, streaks, urgency status, notifications

Revision ID: a3d1c7e90b12
Revises:
Create Date: 2026-10-19 10:12:31.204518
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a3d1c7e90b12'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BigIntPK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', BigIntPK, primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('password_hash', sa.Text(), nullable=True),
        sa.Column('role', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=False),
        sa.Column('last_name', sa.String(), nullable=False),
        sa.Column('specialization', sa.String(), nullable=True),
        sa.Column('therapist_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("role in ('patient','therapist')", name='ck_users_role'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_therapist_id', 'users', ['therapist_id'])

    op.create_table(
        'sessions',
        sa.Column('id', BigIntPK, primary_key=True),
        sa.Column('user_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('therapist_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('therapist_name', sa.String(), nullable=True),
        sa.Column('scheduled_for', sa.DateTime(timezone=True), nullable=False),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "status in ('Scheduled','Confirmed','Completed','Canceled','Rescheduled')",
            name='ck_sessions_status',
        ),
        sa.CheckConstraint('duration > 0', name='ck_sessions_duration'),
    )
    op.create_index('idx_sessions_user_scheduled', 'sessions', ['user_id', 'scheduled_for'])
    op.create_index('idx_sessions_therapist_scheduled', 'sessions', ['therapist_id', 'scheduled_for'])

    op.create_table(
        'session_events',
        sa.Column('id', BigIntPK, primary_key=True),
        sa.Column('session_id', sa.BigInteger(), sa.ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('actor', sa.String(32), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_session_events_session', 'session_events', ['session_id', 'at'])

    op.create_table(
        'daily_streaks',
        sa.Column('id', BigIntPK, primary_key=True),
        sa.Column('user_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('current_streak', sa.Integer(), nullable=False),
        sa.Column('longest_streak', sa.Integer(), nullable=False),
        sa.Column('last_checkin', sa.DateTime(timezone=True), nullable=True),
        sa.Column('activities', sa.JSON(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.CheckConstraint('current_streak >= 0', name='ck_daily_streaks_current'),
        sa.CheckConstraint('longest_streak >= current_streak', name='ck_daily_streaks_longest'),
    )

    op.create_table(
        'therapist_urgency_status',
        sa.Column('id', BigIntPK, primary_key=True),
        sa.Column('therapist_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('is_available_for_urgent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_updated', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('available_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('max_waiting_time', sa.Integer(), nullable=True),
    )

    op.create_table(
        'notifications',
        sa.Column('id', BigIntPK, primary_key=True),
        sa.Column('user_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('related_id', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_notifications_user_time', 'notifications', ['user_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('idx_notifications_user_time', table_name='notifications')
    op.drop_table('notifications')
    op.drop_table('therapist_urgency_status')
    op.drop_table('daily_streaks')
    op.drop_index('idx_session_events_session', table_name='session_events')
    op.drop_table('session_events')
    op.drop_index('idx_sessions_therapist_scheduled', table_name='sessions')
    op.drop_index('idx_sessions_user_scheduled', table_name='sessions')
    op.drop_table('sessions')
    op.drop_index('ix_users_therapist_id', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
