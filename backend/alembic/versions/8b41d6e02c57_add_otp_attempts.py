"""Add otp_attempts to users

Revision ID: 8b41d6e02c57
Revises: 3f9c2a1d7e10
Create Date: 2026-10-20 09:31:07.118402

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# Revision identifiers used by Alembic
revision: str = '8b41d6e02c57'
down_revision: Union[str, Sequence[str], None] = '3f9c2a1d7e10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    with op.batch_alter_table('users') as batch_op:
        batch_op.add_column(sa.Column('otp_attempts', sa.Integer(), nullable=False, server_default='0'))


def downgrade() -> None:
    """Downgrade schema."""
    with op.batch_alter_table('users') as batch_op:
        batch_op.drop_column('otp_attempts')
