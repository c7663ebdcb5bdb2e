"""create_meter_ledger

Revision ID: b1d4e7a20c93
Revises:
Create Date: 2026-10-19 10:00:00.000000

Meters, phase mapping, raw three-phase buffer, counter cache,
active readings ledger and reset history.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = 'b1d4e7a20c93'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

meter_kind = postgresql.ENUM('WATER', 'ENERGY', 'ENERGY_3PH', name='meterkind', create_type=False)
phase = postgresql.ENUM('A', 'B', 'C', name='phase', create_type=False)
reading_kind = postgresql.ENUM('WATER', 'ENERGY', name='readingkind', create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    meter_kind.create(bind, checkfirst=True)
    phase.create(bind, checkfirst=True)
    reading_kind.create(bind, checkfirst=True)

    # --- meters ---
    op.create_table(
        'meters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('kind', meter_kind, nullable=False),
        sa.Column('token', sa.String(64), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_meters')),
        sa.UniqueConstraint('token', name=op.f('uq_meters_token')),
    )

    # --- phase_mappings ---
    op.create_table(
        'phase_mappings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('parent_meter_id', sa.Integer(), nullable=False),
        sa.Column('phase', phase, nullable=False),
        sa.Column('child_meter_id', sa.Integer(), nullable=False),
        sa.Column('label', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_phase_mappings')),
        sa.UniqueConstraint('parent_meter_id', 'phase', name='uq_phase_mappings_parent_phase'),
        sa.ForeignKeyConstraint(
            ['parent_meter_id'], ['meters.id'],
            name=op.f('fk_phase_mappings_parent_meter_id_meters'), ondelete='CASCADE',
        ),
        sa.ForeignKeyConstraint(
            ['child_meter_id'], ['meters.id'],
            name=op.f('fk_phase_mappings_child_meter_id_meters'), ondelete='CASCADE',
        ),
    )

    # --- raw_telemetry_samples ---
    op.create_table(
        'raw_telemetry_samples',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('parent_meter_id', sa.Integer(), nullable=False),
        sa.Column('raw_payload', sa.JSON(), nullable=False),
        sa.Column('received_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_raw_telemetry_samples')),
        sa.ForeignKeyConstraint(
            ['parent_meter_id'], ['meters.id'],
            name=op.f('fk_raw_telemetry_samples_parent_meter_id_meters'), ondelete='CASCADE',
        ),
    )
    op.create_index(
        'ix_raw_telemetry_samples_parent_received', 'raw_telemetry_samples',
        ['parent_meter_id', 'received_at'],
    )

    # --- phase_counter_state ---
    op.create_table(
        'phase_counter_state',
        sa.Column('parent_meter_id', sa.Integer(), nullable=False),
        sa.Column('phase', phase, nullable=False),
        sa.Column('last_value', sa.Float(), nullable=False),
        sa.Column('source_field', sa.String(20), nullable=False),
        sa.Column('sample_id', sa.Integer(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('parent_meter_id', 'phase', name=op.f('pk_phase_counter_state')),
        sa.ForeignKeyConstraint(
            ['parent_meter_id'], ['meters.id'],
            name=op.f('fk_phase_counter_state_parent_meter_id_meters'), ondelete='CASCADE',
        ),
    )

    # --- readings ---
    op.create_table(
        'readings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('meter_id', sa.Integer(), nullable=False),
        sa.Column('meter_name', sa.String(100), nullable=False),
        sa.Column('kind', reading_kind, nullable=False),
        sa.Column('value', sa.Float(), nullable=False),
        sa.Column('volume_liters', sa.Float(), nullable=True),
        sa.Column('flow_lph', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_readings')),
        sa.ForeignKeyConstraint(
            ['meter_id'], ['meters.id'],
            name=op.f('fk_readings_meter_id_meters'), ondelete='CASCADE',
        ),
    )
    op.create_index('ix_readings_meter_created', 'readings', ['meter_id', 'created_at'])
    op.create_index('ix_readings_created', 'readings', ['created_at'])

    # --- readings_history ---
    op.create_table(
        'readings_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('original_reading_id', sa.Integer(), nullable=False),
        sa.Column('meter_id', sa.Integer(), nullable=False),
        sa.Column('meter_name', sa.String(100), nullable=False),
        sa.Column('kind', reading_kind, nullable=False),
        sa.Column('value', sa.Float(), nullable=False),
        sa.Column('volume_liters', sa.Float(), nullable=True),
        sa.Column('flow_lph', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('cycle_tag', sa.String(100), nullable=False),
        sa.Column('backup_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_readings_history')),
        sa.ForeignKeyConstraint(
            ['meter_id'], ['meters.id'],
            name=op.f('fk_readings_history_meter_id_meters'), ondelete='CASCADE',
        ),
    )
    op.create_index('ix_readings_history_meter_cycle', 'readings_history', ['meter_id', 'cycle_tag'])


def downgrade() -> None:
    op.drop_index('ix_readings_history_meter_cycle', table_name='readings_history')
    op.drop_table('readings_history')
    op.drop_index('ix_readings_created', table_name='readings')
    op.drop_index('ix_readings_meter_created', table_name='readings')
    op.drop_table('readings')
    op.drop_table('phase_counter_state')
    op.drop_index('ix_raw_telemetry_samples_parent_received', table_name='raw_telemetry_samples')
    op.drop_table('raw_telemetry_samples')
    op.drop_table('phase_mappings')
    op.drop_table('meters')

    bind = op.get_bind()
    reading_kind.drop(bind, checkfirst=True)
    phase.drop(bind, checkfirst=True)
    meter_kind.drop(bind, checkfirst=True)
