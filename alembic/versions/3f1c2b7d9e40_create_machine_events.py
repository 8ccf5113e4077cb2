"""Create machine_events

Revision ID: 3f1c2b7d9e40
Revises:
Create Date: 2026-10-18 09:12:41.305117

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2b7d9e40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        'machine_events',
        sa.Column('event_id', sa.String(), primary_key=True),
        sa.Column('machine_id', sa.String(), nullable=False),
        sa.Column('event_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('received_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('duration_ms', sa.BigInteger(), nullable=False),
        sa.Column('defect_count', sa.Integer(), nullable=False),
    )
    # Windowed stats per machine, and top-lines scans by time
    op.create_index('idx_machine_event_time', 'machine_events', ['machine_id', 'event_time'])
    op.create_index('ix_machine_events_event_time', 'machine_events', ['event_time'])


def downgrade():
    op.drop_index('ix_machine_events_event_time', 'machine_events')
    op.drop_index('idx_machine_event_time', 'machine_events')
    op.drop_table('machine_events')
