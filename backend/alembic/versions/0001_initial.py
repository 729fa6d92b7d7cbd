"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


BroadcastStatus = sa.Enum('DRAFT', 'ACTIVE', 'PAUSED', 'COMPLETED', name='broadcaststatus')
IvrMode = sa.Enum('DTMF', 'AI_CONVERSATIONAL', name='ivrmode')
AmdAction = sa.Enum('HANGUP', 'LEAVE_MESSAGE', name='amdaction')
CallerIdPolicy = sa.Enum('AUTO', 'FIXED', name='calleridpolicy')
RoutingPolicy = sa.Enum('DIRECT', 'TRUNK', name='routingpolicy')
QueueStatus = sa.Enum(
    'PENDING', 'CALLING', 'ANSWERED', 'TRANSFERRED', 'CALLBACK', 'DNC', 'COMPLETED', 'FAILED', 'CANCELLED',
    name='queuestatus'
)


def upgrade() -> None:
    op.create_table(
        'broadcasts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('status', BroadcastStatus, nullable=False),
        sa.Column('message_text', sa.Text(), nullable=True),
        sa.Column('voice_id', sa.String(length=128), nullable=True),
        sa.Column('audio_url', sa.String(length=1000), nullable=True),
        sa.Column('voicemail_audio_url', sa.String(length=1000), nullable=True),
        sa.Column('ivr_mode', IvrMode, nullable=False),
        sa.Column('dtmf_actions', sa.JSON(), nullable=False),
        sa.Column('calls_per_minute', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=False),
        sa.Column('calling_hours_start', sa.Time(), nullable=False),
        sa.Column('calling_hours_end', sa.Time(), nullable=False),
        sa.Column('bypass_calling_hours', sa.Boolean(), nullable=False),
        sa.Column('caller_id_policy', CallerIdPolicy, nullable=False),
        sa.Column('caller_id_number', sa.String(length=32), nullable=True),
        sa.Column('enable_local_presence', sa.Boolean(), nullable=False),
        sa.Column('amd_enabled', sa.Boolean(), nullable=False),
        sa.Column('amd_action', AmdAction, nullable=False),
        sa.Column('routing', RoutingPolicy, nullable=False),
        sa.Column('total_leads', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('calls_made', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('calls_answered', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('transfers_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('callbacks_scheduled', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('dnc_requests', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.String(length=1000), nullable=True),
        sa.Column('last_error_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('emergency_stopped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_broadcasts_id'), 'broadcasts', ['id'], unique=False)
    op.create_index(op.f('ix_broadcasts_account_id'), 'broadcasts', ['account_id'], unique=False)

    op.create_table(
        'queue_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('broadcast_id', sa.Integer(), sa.ForeignKey('broadcasts.id'), nullable=False),
        sa.Column('lead_id', sa.String(length=64), nullable=True),
        sa.Column('lead_name', sa.String(length=255), nullable=True),
        sa.Column('phone_number', sa.String(length=32), nullable=False),
        sa.Column('status', QueueStatus, nullable=False),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('dtmf_digit', sa.String(length=4), nullable=True),
        sa.Column('callback_scheduled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('provider_call_id', sa.String(length=128), nullable=True),
        sa.Column('caller_id_used', sa.String(length=32), nullable=True),
        sa.Column('claim_batch_id', sa.String(length=64), nullable=True),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('amd_result', sa.String(length=32), nullable=True),
        sa.Column('call_duration_seconds', sa.Integer(), nullable=True),
        sa.Column('last_error', sa.String(length=1000), nullable=True),
        sa.Column('callback_of_id', sa.Integer(), sa.ForeignKey('queue_items.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_call_id'),
    )
    op.create_index(op.f('ix_queue_items_id'), 'queue_items', ['id'], unique=False)
    op.create_index(op.f('ix_queue_items_broadcast_id'), 'queue_items', ['broadcast_id'], unique=False)
    op.create_index(op.f('ix_queue_items_lead_id'), 'queue_items', ['lead_id'], unique=False)
    op.create_index(op.f('ix_queue_items_phone_number'), 'queue_items', ['phone_number'], unique=False)
    op.create_index('ix_queue_items_broadcast_status', 'queue_items', ['broadcast_id', 'status'], unique=False)
    open_where = sa.text("status IN ('PENDING', 'CALLING', 'ANSWERED')")
    op.create_index(
        'uq_queue_items_open_phone',
        'queue_items',
        ['broadcast_id', 'phone_number'],
        unique=True,
        postgresql_where=open_where,
        sqlite_where=open_where,
    )

    op.create_table(
        'call_attempts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('queue_item_id', sa.Integer(), sa.ForeignKey('queue_items.id'), nullable=False),
        sa.Column('broadcast_id', sa.Integer(), sa.ForeignKey('broadcasts.id'), nullable=False),
        sa.Column('provider_call_id', sa.String(length=128), nullable=True),
        sa.Column('from_number', sa.String(length=32), nullable=True),
        sa.Column('outcome', sa.String(length=32), nullable=False),
        sa.Column('reason', sa.String(length=1000), nullable=True),
        sa.Column('attempted_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_call_attempts_queue_item_id'), 'call_attempts', ['queue_item_id'], unique=False)
    op.create_index(op.f('ix_call_attempts_broadcast_id'), 'call_attempts', ['broadcast_id'], unique=False)

    op.create_table(
        'dialer_batches',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('broadcast_id', sa.Integer(), sa.ForeignKey('broadcasts.id'), nullable=False),
        sa.Column('source', sa.String(length=32), nullable=False),
        sa.Column('requested_size', sa.Integer(), nullable=False),
        sa.Column('returned_size', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_dialer_batches_broadcast_id'), 'dialer_batches', ['broadcast_id'], unique=False)

    op.create_table(
        'caller_ids',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.String(length=64), nullable=False),
        sa.Column('number', sa.String(length=32), nullable=False),
        sa.Column('area_code', sa.String(length=8), nullable=True),
        sa.Column('on_trunk', sa.Boolean(), nullable=False),
        sa.Column('rotation_enabled', sa.Boolean(), nullable=False),
        sa.Column('is_spam', sa.Boolean(), nullable=False),
        sa.Column('quarantine_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reserved_for_inbound', sa.Boolean(), nullable=False),
        sa.Column('max_daily_calls', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('daily_calls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('usage_date', sa.Date(), nullable=True),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trunk_issue', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'number', name='uq_caller_ids_account_number'),
    )
    op.create_index(op.f('ix_caller_ids_id'), 'caller_ids', ['id'], unique=False)
    op.create_index(op.f('ix_caller_ids_account_id'), 'caller_ids', ['account_id'], unique=False)
    op.create_index(op.f('ix_caller_ids_area_code'), 'caller_ids', ['area_code'], unique=False)

    op.create_table(
        'processed_callbacks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider_call_id', sa.String(length=128), nullable=False),
        sa.Column('event_key', sa.String(length=64), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_call_id', 'event_key', name='uq_processed_callbacks_call_event'),
    )
    op.create_index(
        op.f('ix_processed_callbacks_provider_call_id'), 'processed_callbacks', ['provider_call_id'], unique=False
    )

    op.create_table(
        'dnc_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.String(length=64), nullable=False),
        sa.Column('phone_number', sa.String(length=32), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'phone_number', name='uq_dnc_entries_account_phone'),
    )
    op.create_index(op.f('ix_dnc_entries_account_id'), 'dnc_entries', ['account_id'], unique=False)

    op.create_table(
        'dnc_retries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('lead_id', sa.String(length=64), nullable=True),
        sa.Column('phone_number', sa.String(length=32), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.String(length=1000), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'broadcast_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('broadcast_id', sa.Integer(), sa.ForeignKey('broadcasts.id'), nullable=False),
        sa.Column('kind', sa.String(length=64), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_broadcast_events_broadcast_id'), 'broadcast_events', ['broadcast_id'], unique=False)


def downgrade() -> None:
    op.drop_table('broadcast_events')
    op.drop_table('dnc_retries')
    op.drop_table('dnc_entries')
    op.drop_table('processed_callbacks')
    op.drop_table('caller_ids')
    op.drop_table('dialer_batches')
    op.drop_table('call_attempts')
    op.drop_table('queue_items')
    op.drop_table('broadcasts')
    for enum in (QueueStatus, RoutingPolicy, CallerIdPolicy, AmdAction, IvrMode, BroadcastStatus):
        enum.drop(op.get_bind(), checkfirst=True)
