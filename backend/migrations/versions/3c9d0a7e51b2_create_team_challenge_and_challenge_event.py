"""create team, challenge and challenge_event tables

Revision ID: 3c9d0a7e51b2
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c9d0a7e51b2'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'team' not in existing_tables:
        op.create_table(
            'team',
            sa.Column('id', sa.String(length=64), primary_key=True),
            sa.Column('name', sa.String(length=128), nullable=True),
            sa.Column('endpoint', sa.String(length=512), nullable=True),
        )

    if 'challenge' not in existing_tables:
        op.create_table(
            'challenge',
            sa.Column('id', sa.String(length=32), primary_key=True),
            sa.Column('team', sa.String(length=64), nullable=False),
            sa.Column('initiator', sa.String(length=64), nullable=False),
            sa.Column('issued_at', sa.BigInteger(), nullable=True),
            sa.Column('responses', sa.Text(), nullable=False, server_default='{}'),
            sa.Column('closed', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('broadcast_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('scoreboard_sent', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('created_at', sa.Float(), nullable=False),
        )
        op.create_index('ix_challenge_team', 'challenge', ['team'])

    if 'challenge_event' not in existing_tables:
        op.create_table(
            'challenge_event',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('challenge_id', sa.String(length=32), nullable=False),
            sa.Column('kind', sa.String(length=16), nullable=False),
            sa.Column('created_at', sa.Float(), nullable=False),
        )
        op.create_index('ix_challenge_event_challenge_id', 'challenge_event', ['challenge_id'])


def downgrade():
    op.drop_index('ix_challenge_event_challenge_id', table_name='challenge_event')
    op.drop_table('challenge_event')
    op.drop_index('ix_challenge_team', table_name='challenge')
    op.drop_table('challenge')
    op.drop_table('team')
