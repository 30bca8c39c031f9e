"""initial_work_order_schema

Create users, work_orders, findings, actions, action_dates, spare_parts
and notifications.

Revision ID: 7c1e2f3a4b50
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "7c1e2f3a4b50"
down_revision = None
branch_labels = None
depends_on = None

_STATUSES = ("pending", "ongoing", "completion_requested", "completed", "rejected")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("username", sa.String(length=50), nullable=False),
            sa.Column("first_name", sa.String(length=100), nullable=False),
            sa.Column("last_name", sa.String(length=100), nullable=False),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="user"),
            sa.Column("first_login", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.CheckConstraint("role IN ('user', 'admin', 'superadmin')", name="ck_users_role"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_users_username", "users", ["username"], unique=True)

    if "work_orders" not in existing_tables:
        op.create_table(
            "work_orders",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("work_order_no", sa.String(length=50), nullable=False),
            sa.Column("work_order_date", sa.Date(), nullable=False),
            sa.Column("equipment_number", sa.String(length=100), nullable=False, server_default=""),
            sa.Column("km_hrs", sa.Integer(), nullable=True),
            sa.Column("requested_by", sa.String(length=100), nullable=False, server_default=""),
            sa.Column("requested_by_id", sa.Integer(), nullable=True),
            sa.Column("work_type", sa.String(length=100), nullable=False, server_default=""),
            sa.Column("job_allocation_time", sa.DateTime(), nullable=True),
            sa.Column("description", sa.Text(), nullable=False, server_default=""),
            sa.Column("reference_document", sa.String(length=255), nullable=True),
            sa.Column(
                "status",
                sa.Enum(*_STATUSES, name="work_order_status", native_enum=False, length=30),
                nullable=False,
                server_default="pending",
            ),
            sa.Column("approved_by", sa.Integer(), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            sa.Column("work_completed_date", sa.Date(), nullable=True),
            sa.Column("completion_requested_by", sa.Integer(), nullable=True),
            sa.Column("completion_requested_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completion_approved_by", sa.Integer(), nullable=True),
            sa.Column("completion_approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completion_rejection_reason", sa.Text(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["requested_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["approved_by"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["completion_requested_by"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["completion_approved_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_work_orders_work_order_no", "work_orders", ["work_order_no"], unique=True)
        op.create_index("ix_work_orders_status", "work_orders", ["status"])
        op.create_index("ix_work_orders_requested_by_id", "work_orders", ["requested_by_id"])

    if "findings" not in existing_tables:
        op.create_table(
            "findings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("work_order_id", sa.Integer(), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("reference_image", sa.String(length=255), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["work_order_id"], ["work_orders.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_findings_work_order_id", "findings", ["work_order_id"])

    if "actions" not in existing_tables:
        op.create_table(
            "actions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("finding_id", sa.Integer(), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("remarks", sa.Text(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["finding_id"], ["findings.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_actions_finding_id", "actions", ["finding_id"])

    if "action_dates" not in existing_tables:
        op.create_table(
            "action_dates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("action_id", sa.Integer(), nullable=False),
            sa.Column("action_date", sa.Date(), nullable=False),
            sa.Column("start_time", sa.Time(), nullable=False),
            sa.Column("end_time", sa.Time(), nullable=True),
            sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(),
            sa.ForeignKeyConstraint(["action_id"], ["actions.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("action_id", "action_date", name="uq_action_dates_action_date"),
        )
        op.create_index("ix_action_dates_action_id", "action_dates", ["action_id"])

    if "spare_parts" not in existing_tables:
        op.create_table(
            "spare_parts",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("action_id", sa.Integer(), nullable=False),
            sa.Column("part_name", sa.String(length=200), nullable=False),
            sa.Column("part_number", sa.String(length=100), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            *_timestamps(),
            sa.CheckConstraint("quantity > 0", name="ck_spare_parts_quantity_positive"),
            sa.ForeignKeyConstraint(["action_id"], ["actions.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_spare_parts_action_id", "spare_parts", ["action_id"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("message", sa.Text(), nullable=False, server_default=""),
            sa.Column("kind", sa.String(length=20), nullable=False, server_default="info"),
            sa.Column("related_entity_type", sa.String(length=50), nullable=True),
            sa.Column("related_entity_id", sa.Integer(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint(
                "kind IN ('approval', 'rejection', 'completion', 'info')",
                name="ck_notifications_kind",
            ),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
        op.create_index("ix_notifications_created_at", "notifications", ["created_at"])
        op.create_index("ix_notifications_expires_at", "notifications", ["expires_at"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in ("notifications", "spare_parts", "action_dates", "actions",
                  "findings", "work_orders", "users"):
        if table in existing_tables:
            op.drop_table(table)
