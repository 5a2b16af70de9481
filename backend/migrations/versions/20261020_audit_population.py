"""Add population_item_ids to audit documents

Revision ID: 20261020_audit_population
Revises: 20261019_inventory_workflow
Create Date: 2026-10-20
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261020_audit_population"
down_revision = "20261019_inventory_workflow"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("inventory_audit_documents", schema=None) as batch_op:
        batch_op.add_column(sa.Column("population_item_ids", sa.JSON(), nullable=True))


def downgrade():
    with op.batch_alter_table("inventory_audit_documents", schema=None) as batch_op:
        batch_op.drop_column("population_item_ids")
