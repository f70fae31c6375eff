"""initial schema: team and member

Revision ID: 001
Revises: 
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import mysql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Microsecond precision on MySQL so updated_at can be strictly later than created_at
AUDIT_TIMESTAMP = sa.DateTime(timezone=True).with_variant(mysql.DATETIME(fsp=6), 'mysql')


def upgrade() -> None:
    op.create_table(
        'team',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # No ON DELETE action: deleting a team that members still reference fails
    op.create_table(
        'member',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=255), nullable=False),
        sa.Column('age', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('team_id', sa.Integer(), nullable=True),
        sa.Column('created_at', AUDIT_TIMESTAMP, nullable=True),
        sa.Column('updated_at', AUDIT_TIMESTAMP, nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.Column('updated_by', sa.String(length=100), nullable=True),
        sa.ForeignKeyConstraint(['team_id'], ['team.id'], name='fk_member_team'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_member_username'), 'member', ['username'], unique=False)
    op.create_index(op.f('ix_member_team_id'), 'member', ['team_id'], unique=False)


def downgrade() -> None:
    # Drop the FK before its index (MySQL backs FKs with an index)
    op.drop_constraint('fk_member_team', 'member', type_='foreignkey')
    op.drop_index(op.f('ix_member_team_id'), table_name='member')
    op.drop_index(op.f('ix_member_username'), table_name='member')
    op.drop_table('member')
    op.drop_table('team')
