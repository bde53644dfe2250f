"""create simulator, device and room tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '202610190001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'simulators',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('url', sa.String(), nullable=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_seen', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_simulators_id', 'simulators', ['id'])
    # Not unique: duplicate urls are merged by the identity resolver
    op.create_index('ix_simulators_url', 'simulators', ['url'])

    op.create_table(
        'devices',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('simulator_id', sa.String(), nullable=False),
        sa.Column('on', sa.Boolean(), nullable=False),
        sa.Column('rebooting', sa.Boolean(), nullable=False),
        sa.Column('action', sa.String(), nullable=True),
        sa.Column('broker', sa.String(), nullable=True),
        sa.Column('last_updated', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['simulator_id'], ['simulators.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_devices_id', 'devices', ['id'])
    op.create_index('ix_devices_simulator_id', 'devices', ['simulator_id'])

    op.create_table(
        'rooms',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_rooms_id', 'rooms', ['id'])

    op.create_table(
        'room_simulators',
        sa.Column('room_id', sa.String(), nullable=False),
        sa.Column('simulator_id', sa.String(), nullable=False),
        sa.ForeignKeyConstraint(['room_id'], ['rooms.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['simulator_id'], ['simulators.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('room_id', 'simulator_id')
    )
    op.create_index('ix_room_simulators_simulator_id', 'room_simulators', ['simulator_id'])


def downgrade() -> None:
    op.drop_index('ix_room_simulators_simulator_id', table_name='room_simulators')
    op.drop_table('room_simulators')
    op.drop_index('ix_rooms_id', table_name='rooms')
    op.drop_table('rooms')
    op.drop_index('ix_devices_simulator_id', table_name='devices')
    op.drop_index('ix_devices_id', table_name='devices')
    op.drop_table('devices')
    op.drop_index('ix_simulators_url', table_name='simulators')
    op.drop_index('ix_simulators_id', table_name='simulators')
    op.drop_table('simulators')
