"""create room_snapshot

Revision ID: 5c2d9e71b0aa
Revises:
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2d9e71b0aa'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    # create_app may already have created the table on first boot
    if 'room_snapshot' in set(insp.get_table_names()):
        return
    op.create_table(
        'room_snapshot',
        sa.Column('code', sa.String(length=6), primary_key=True),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=False),
    )


def downgrade():
    op.drop_table('room_snapshot')
