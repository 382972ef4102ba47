"""create readings, prediction_entries and pattern_records

Revision ID: 4f1c2a9e7b30
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '4f1c2a9e7b30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

source_enum = sa.Enum('SOLAR', 'GRID', 'BATTERY', 'LOAD', name='source')
impact_enum = sa.Enum('LOW', 'MEDIUM', 'HIGH', name='impact')


def upgrade() -> None:
    op.create_table(
        'readings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('source', source_enum, nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('value_kw', sa.Float(), nullable=False),
        sa.Column('received_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source', 'timestamp', name='uq_readings_source_timestamp'),
    )
    op.create_index(op.f('ix_readings_id'), 'readings', ['id'], unique=False)
    op.create_index('ix_readings_source_timestamp', 'readings', ['source', 'timestamp'], unique=False)
    op.create_index('ix_readings_source_received_at', 'readings', ['source', 'received_at'], unique=False)

    op.create_table(
        'prediction_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('predicted_kw', sa.Float(), nullable=False),
        sa.Column('confidence_pct', sa.Float(), nullable=False),
        sa.Column('actual_kw', sa.Float(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_prediction_entries_id'), 'prediction_entries', ['id'], unique=False)
    op.create_index(op.f('ix_prediction_entries_timestamp'), 'prediction_entries', ['timestamp'], unique=True)

    op.create_table(
        'pattern_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('frequency_pct', sa.Float(), nullable=False),
        sa.Column('impact', impact_enum, nullable=False),
        sa.Column('last_seen_at', sa.DateTime(), nullable=False),
        sa.Column('first_seen_at', sa.DateTime(), nullable=False),
        sa.Column('observation_count', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_pattern_records_id'), 'pattern_records', ['id'], unique=False)
    op.create_index(op.f('ix_pattern_records_name'), 'pattern_records', ['name'], unique=True)


def downgrade() -> None:
    op.drop_index(op.f('ix_pattern_records_name'), table_name='pattern_records')
    op.drop_index(op.f('ix_pattern_records_id'), table_name='pattern_records')
    op.drop_table('pattern_records')
    op.drop_index(op.f('ix_prediction_entries_timestamp'), table_name='prediction_entries')
    op.drop_index(op.f('ix_prediction_entries_id'), table_name='prediction_entries')
    op.drop_table('prediction_entries')
    op.drop_index('ix_readings_source_received_at', table_name='readings')
    op.drop_index('ix_readings_source_timestamp', table_name='readings')
    op.drop_index(op.f('ix_readings_id'), table_name='readings')
    op.drop_table('readings')
    impact_enum.drop(op.get_bind(), checkfirst=True)
    source_enum.drop(op.get_bind(), checkfirst=True)
