"""Optimistic locking for return requests

Revision ID: 20261020_return_version
Revises: 20261019_initial
Create Date: 2026-10-20
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261020_return_version"
down_revision = "20261019_initial"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("return_requests") as batch_op:
        batch_op.add_column(
            sa.Column("version_id", sa.Integer(), nullable=False, server_default="1")
        )


def downgrade():
    with op.batch_alter_table("return_requests") as batch_op:
        batch_op.drop_column("version_id")
