"""create digest_preferences and digest_history tables

Revision ID: a7c2e4f1b9d3
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a7c2e4f1b9d3'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if 'digest_preferences' not in existing_tables:
        op.create_table(
            'digest_preferences',
            sa.Column('id', sa.UUID(), nullable=False),
            sa.Column('user_id', sa.String(length=64), nullable=False),
            sa.Column('email_address', sa.String(length=320), nullable=True),
            sa.Column('timezone', sa.String(length=64), nullable=False, server_default='America/New_York'),
            sa.Column('daily_digest_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('daily_send_time', sa.String(length=5), nullable=False, server_default='07:00'),
            sa.Column('weekly_digest_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('weekly_send_day', sa.String(length=10), nullable=False, server_default='monday'),
            sa.Column('weekly_send_time', sa.String(length=5), nullable=False, server_default='08:00'),
            sa.Column('immediate_digest_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('immediate_threshold', sa.Integer(), nullable=False, server_default='5'),
            sa.Column('business_hours_start', sa.Integer(), nullable=False, server_default='8'),
            sa.Column('business_hours_end', sa.Integer(), nullable=False, server_default='18'),
            sa.Column('paused_until', sa.DateTime(timezone=True), nullable=True),
            sa.Column('include_appointments', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('include_followups', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('include_stale_deals', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('include_pipeline_summary', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('include_recent_wins', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('include_quarterly_checkins', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('include_new_referrals', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('appointment_lookahead_days', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('stale_deal_threshold_days', sa.Integer(), nullable=False, server_default='7'),
            sa.Column('last_daily_sent_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('last_weekly_sent_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('last_immediate_sent_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('total_emails_sent', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_digest_preferences_user_id', 'digest_preferences', ['user_id'], unique=True)

    if 'digest_history' not in existing_tables:
        op.create_table(
            'digest_history',
            sa.Column('id', sa.UUID(), nullable=False),
            sa.Column('user_id', sa.String(length=64), nullable=False),
            sa.Column('cadence', sa.String(length=10), nullable=False),
            sa.Column('reason', sa.String(length=10), nullable=False, server_default='scheduled'),
            sa.Column('status', sa.String(length=20), nullable=False),
            sa.Column('item_counts', sa.JSON(), nullable=False),
            sa.Column('pipeline_value', sa.Float(), nullable=True),
            sa.Column('error', sa.Text(), nullable=True),
            sa.Column('subject_line', sa.String(length=255), nullable=True),
            sa.Column('provider_message_id', sa.String(length=255), nullable=True),
            sa.Column('sent_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_digest_history_user_sent', 'digest_history', ['user_id', 'sent_at'])


def downgrade() -> None:
    op.drop_index('ix_digest_history_user_sent', table_name='digest_history')
    op.drop_table('digest_history')
    op.drop_index('ix_digest_preferences_user_id', table_name='digest_preferences')
    op.drop_table('digest_preferences')
