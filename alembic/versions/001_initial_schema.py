"""Initial SpotCheck schema: parents, devices, policies, events, extra time, pairing, push tokens

Revision ID: 001
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table('parents',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('apple_sub', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_parents_apple_sub'), 'parents', ['apple_sub'], unique=True)

    op.create_table('devices',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('parent_id', sa.String(length=36), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('icon', sa.String(length=60), nullable=True),
        sa.Column('device_token', sa.String(length=64), nullable=False),
        sa.Column('device_secret', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['parent_id'], ['parents.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_devices_parent_id'), 'devices', ['parent_id'], unique=False)
    op.create_index(op.f('ix_devices_device_token'), 'devices', ['device_token'], unique=True)
    op.create_index(op.f('ix_devices_device_secret'), 'devices', ['device_secret'], unique=True)
    op.create_index(op.f('ix_devices_created_at'), 'devices', ['created_at'], unique=False)

    op.create_table('device_policies',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('device_id', sa.String(length=36), nullable=False),
        sa.Column('lock_apps', sa.Boolean(), nullable=False),
        sa.Column('hotspot_off', sa.Boolean(), nullable=False),
        sa.Column('wifi_off', sa.Boolean(), nullable=False),
        sa.Column('mobile_data_off', sa.Boolean(), nullable=False),
        sa.Column('rotate_password', sa.Boolean(), nullable=False),
        sa.Column('quiet_start', sa.String(length=20), nullable=True),
        sa.Column('quiet_end', sa.String(length=20), nullable=True),
        sa.Column('quiet_days', sa.Text(), nullable=True),
        sa.Column('tz', sa.String(length=60), nullable=True),
        sa.Column('gap_ms', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['device_id'], ['devices.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('device_id')
    )

    op.create_table('device_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('device_id', sa.String(length=36), nullable=False),
        sa.Column('ts', sa.BigInteger(), nullable=False),
        sa.Column('trigger', sa.String(length=100), nullable=False),
        sa.Column('shortcut_version', sa.String(length=50), nullable=True),
        sa.Column('actions_attempted', sa.Text(), nullable=True),
        sa.Column('result_ok', sa.Boolean(), nullable=False),
        sa.Column('result_errors', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['device_id'], ['devices.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_device_events_device_id'), 'device_events', ['device_id'], unique=False)
    op.create_index(op.f('ix_device_events_ts'), 'device_events', ['ts'], unique=False)

    op.create_table('extra_time_requests',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('device_id', sa.String(length=36), nullable=False),
        sa.Column('requested_minutes', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=300), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('requested_at', sa.BigInteger(), nullable=False),
        sa.Column('resolved_at', sa.BigInteger(), nullable=True),
        sa.Column('resolved_by', sa.String(length=64), nullable=True),
        sa.Column('granted_minutes', sa.Integer(), nullable=True),
        sa.Column('starts_at', sa.BigInteger(), nullable=True),
        sa.Column('ends_at', sa.BigInteger(), nullable=True),
        sa.ForeignKeyConstraint(['device_id'], ['devices.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_extra_time_requests_device_id'), 'extra_time_requests', ['device_id'], unique=False)
    op.create_index(op.f('ix_extra_time_requests_status'), 'extra_time_requests', ['status'], unique=False)
    op.create_index(op.f('ix_extra_time_requests_ends_at'), 'extra_time_requests', ['ends_at'], unique=False)

    op.create_table('pairing_codes',
        sa.Column('code', sa.String(length=8), nullable=False),
        sa.Column('device_id', sa.String(length=36), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expires_at', sa.BigInteger(), nullable=False),
        sa.Column('redeemed_at', sa.BigInteger(), nullable=True),
        sa.Column('redeemed_ip', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['device_id'], ['devices.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('code')
    )
    op.create_index(op.f('ix_pairing_codes_device_id'), 'pairing_codes', ['device_id'], unique=False)
    op.create_index(op.f('ix_pairing_codes_expires_at'), 'pairing_codes', ['expires_at'], unique=False)

    op.create_table('parent_push_tokens',
        sa.Column('token', sa.String(length=512), nullable=False),
        sa.Column('parent_id', sa.String(length=36), nullable=False),
        sa.Column('platform', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('last_used_at', sa.BigInteger(), nullable=True),
        sa.ForeignKeyConstraint(['parent_id'], ['parents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('token')
    )
    op.create_index(op.f('ix_parent_push_tokens_parent_id'), 'parent_push_tokens', ['parent_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_parent_push_tokens_parent_id'), table_name='parent_push_tokens')
    op.drop_table('parent_push_tokens')
    op.drop_index(op.f('ix_pairing_codes_expires_at'), table_name='pairing_codes')
    op.drop_index(op.f('ix_pairing_codes_device_id'), table_name='pairing_codes')
    op.drop_table('pairing_codes')
    op.drop_index(op.f('ix_extra_time_requests_ends_at'), table_name='extra_time_requests')
    op.drop_index(op.f('ix_extra_time_requests_status'), table_name='extra_time_requests')
    op.drop_index(op.f('ix_extra_time_requests_device_id'), table_name='extra_time_requests')
    op.drop_table('extra_time_requests')
    op.drop_index(op.f('ix_device_events_ts'), table_name='device_events')
    op.drop_index(op.f('ix_device_events_device_id'), table_name='device_events')
    op.drop_table('device_events')
    op.drop_table('device_policies')
    op.drop_index(op.f('ix_devices_created_at'), table_name='devices')
    op.drop_index(op.f('ix_devices_device_secret'), table_name='devices')
    op.drop_index(op.f('ix_devices_device_token'), table_name='devices')
    op.drop_index(op.f('ix_devices_parent_id'), table_name='devices')
    op.drop_table('devices')
    op.drop_index(op.f('ix_parents_apple_sub'), table_name='parents')
    op.drop_table('parents')
