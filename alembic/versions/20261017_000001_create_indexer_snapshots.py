"""Create indexer_snapshots table.

Revision ID: 20261017_000001
Revises:
Create Date: 2026-10-17

Stores persisted indexing session snapshots keyed by snapshot key.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261017_000001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create indexer_snapshots table."""
    op.create_table(
        'indexer_snapshots',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            'key',
            sa.String(length=255),
            nullable=False,
            comment='Snapshot key (indexer-<user_id>)'
        ),
        sa.Column(
            'payload',
            sa.JSON(),
            nullable=False,
            comment='Serialized session snapshot'
        ),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_indexer_snapshots_key',
        'indexer_snapshots',
        ['key'],
        unique=True,
    )


def downgrade() -> None:
    """Drop indexer_snapshots table."""
    op.drop_index('ix_indexer_snapshots_key', table_name='indexer_snapshots')
    op.drop_table('indexer_snapshots')
