"""add notification preferences

Revision ID: 202601201500
Revises: 202601121000
Create Date: 2026-01-20 15:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601201500"
down_revision = "202601121000"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "notification_preferences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("warning_threshold", sa.Float(), nullable=False),
        sa.Column("danger_threshold", sa.Float(), nullable=False),
        sa.Column(
            "enable_notifications", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column(
            "enable_email_notifications",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", name="uq_notification_preferences_user"),
    )


def downgrade():
    op.drop_table("notification_preferences")
