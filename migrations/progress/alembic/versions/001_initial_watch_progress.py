"""initial watch progress schema

Revision ID: 001_initial_watch_progress
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = '001_initial_watch_progress'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

lesson_attempt_status = postgresql.ENUM(
    'IN_PROGRESS', 'COMPLETED',
    name='lesson_attempt_status', create_type=False,
)


def upgrade() -> None:
    op.execute("CREATE TYPE lesson_attempt_status AS ENUM ('IN_PROGRESS', 'COMPLETED')")

    # --- lesson_attempts ---
    op.create_table('lesson_attempts',
        sa.Column('attempt_id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('lesson_id', sa.UUID(), nullable=False),
        sa.Column('attempt_no', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', lesson_attempt_status, nullable=False, server_default='IN_PROGRESS'),
        sa.Column('is_assigned', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('max_verified_second', sa.Integer(), nullable=False, server_default='0'),
        sa.Column(
            'total_effective_seconds', sa.Numeric(precision=12, scale=3),
            nullable=False, server_default='0',
        ),
        sa.Column('coverage_seconds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('skip_event_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lesson_duration_secs', sa.Integer(), nullable=True),
        sa.Column(
            'flags', postgresql.JSONB(astext_type=sa.Text()),
            nullable=False, server_default='{}',
        ),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_at', postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', postgresql.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text("now()")),
        sa.Column('updated_at', postgresql.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint('attempt_id'),
        sa.UniqueConstraint(
            'user_id', 'lesson_id', 'attempt_no', name='uq_lesson_attempts_user_lesson_no',
        ),
    )
    op.create_index(
        'ix_lesson_attempts_user_lesson', 'lesson_attempts', ['user_id', 'lesson_id'], unique=False,
    )
    op.create_index(
        'uq_lesson_attempts_one_in_progress', 'lesson_attempts', ['user_id', 'lesson_id'],
        unique=True,
        postgresql_where=sa.text("status = 'IN_PROGRESS'"),
    )

    # --- watch_sessions ---
    op.create_table('watch_sessions',
        sa.Column('session_id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('lesson_id', sa.UUID(), nullable=False),
        sa.Column('lesson_attempt_id', sa.UUID(), nullable=True),
        sa.Column('client_info', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('started_at', postgresql.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text("now()")),
        sa.Column('last_heartbeat_at', postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('closed_at', postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('aggregated_at', postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('credited_attempt_id', sa.UUID(), nullable=True),
        sa.ForeignKeyConstraint(
            ['lesson_attempt_id'], ['lesson_attempts.attempt_id'], ondelete='SET NULL',
        ),
        sa.ForeignKeyConstraint(
            ['credited_attempt_id'], ['lesson_attempts.attempt_id'], ondelete='SET NULL',
        ),
        sa.PrimaryKeyConstraint('session_id'),
    )
    op.create_index('ix_watch_sessions_attempt', 'watch_sessions', ['lesson_attempt_id'], unique=False)
    op.create_index(
        'ix_watch_sessions_user_lesson_started', 'watch_sessions',
        ['user_id', 'lesson_id', 'started_at'], unique=False,
    )
    op.create_index(
        'ix_watch_sessions_credited_attempt', 'watch_sessions', ['credited_attempt_id'], unique=False,
    )

    # --- watch_segments ---
    op.create_table('watch_segments',
        sa.Column('segment_id', sa.UUID(), nullable=False),
        sa.Column('session_id', sa.UUID(), nullable=False),
        sa.Column('client_event_id', sa.String(length=100), nullable=False),
        sa.Column('start_second', sa.Integer(), nullable=False),
        sa.Column('end_second', sa.Integer(), nullable=False),
        sa.Column('speed', sa.Numeric(precision=4, scale=2), nullable=False, server_default='1.0'),
        sa.Column('created_at', postgresql.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(['session_id'], ['watch_sessions.session_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('segment_id'),
        sa.UniqueConstraint(
            'session_id', 'client_event_id', name='uq_watch_segments_session_event',
        ),
    )
    op.create_index('ix_watch_segments_session_id', 'watch_segments', ['session_id'], unique=False)

    # --- seek_events ---
    op.create_table('seek_events',
        sa.Column('seek_id', sa.UUID(), nullable=False),
        sa.Column('session_id', sa.UUID(), nullable=False),
        sa.Column('client_event_id', sa.String(length=100), nullable=True),
        sa.Column('from_second', sa.Integer(), nullable=False),
        sa.Column('to_second', sa.Integer(), nullable=False),
        sa.Column('allowed', sa.Boolean(), nullable=False),
        sa.Column('reason', sa.String(length=100), nullable=False),
        sa.Column('is_skip', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('skip_distance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', postgresql.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(['session_id'], ['watch_sessions.session_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('seek_id'),
        sa.UniqueConstraint('session_id', 'client_event_id', name='uq_seek_events_session_event'),
    )
    op.create_index(
        'ix_seek_events_session_skip', 'seek_events', ['session_id', 'is_skip'], unique=False,
    )

    # --- lesson_coverage_intervals ---
    op.create_table('lesson_coverage_intervals',
        sa.Column('interval_id', sa.UUID(), nullable=False),
        sa.Column('lesson_attempt_id', sa.UUID(), nullable=False),
        sa.Column('start_second', sa.Integer(), nullable=False),
        sa.Column('end_second', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(
            ['lesson_attempt_id'], ['lesson_attempts.attempt_id'], ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('interval_id'),
    )
    op.create_index(
        'ix_lesson_coverage_intervals_attempt_start', 'lesson_coverage_intervals',
        ['lesson_attempt_id', 'start_second'], unique=False,
    )


def downgrade() -> None:
    op.drop_index('ix_lesson_coverage_intervals_attempt_start', table_name='lesson_coverage_intervals')
    op.drop_table('lesson_coverage_intervals')
    op.drop_index('ix_seek_events_session_skip', table_name='seek_events')
    op.drop_table('seek_events')
    op.drop_index('ix_watch_segments_session_id', table_name='watch_segments')
    op.drop_table('watch_segments')
    op.drop_index('ix_watch_sessions_credited_attempt', table_name='watch_sessions')
    op.drop_index('ix_watch_sessions_user_lesson_started', table_name='watch_sessions')
    op.drop_index('ix_watch_sessions_attempt', table_name='watch_sessions')
    op.drop_table('watch_sessions')
    op.drop_index('uq_lesson_attempts_one_in_progress', table_name='lesson_attempts')
    op.drop_index('ix_lesson_attempts_user_lesson', table_name='lesson_attempts')
    op.drop_table('lesson_attempts')
    op.execute("DROP TYPE IF EXISTS lesson_attempt_status")
