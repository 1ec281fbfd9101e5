"""initial permit workflow schema

Revision ID: a0c1d2e3f4a5
Revises:
Create Date: 2026-10-18 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = 'a0c1d2e3f4a5'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=False), nullable=nullable)


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    existing_tables = set(inspect(bind).get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("email", sa.String(length=320), nullable=False, unique=True),
            sa.Column("full_name", sa.String(length=255), nullable=False, server_default=""),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
        )

    if "roles" not in existing_tables:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("key", sa.String(length=64), nullable=False, unique=True),
            sa.Column("name", sa.String(length=128), nullable=False),
            _ts("created_at"),
        )

    if "permissions" not in existing_tables:
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("key", sa.String(length=128), nullable=False, unique=True),
            sa.Column("name", sa.String(length=128), nullable=False),
            _ts("created_at"),
        )

    if "user_roles" not in existing_tables:
        op.create_table(
            "user_roles",
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        )

    if "role_permissions" not in existing_tables:
        op.create_table(
            "role_permissions",
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
            sa.Column(
                "permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True
            ),
        )

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            _ts("created_at"),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_user_email", sa.String(length=320), nullable=True),
            sa.Column("action", sa.String(length=128), nullable=False),
            sa.Column("entity_type", sa.String(length=128), nullable=True),
            sa.Column("entity_id", sa.String(length=128), nullable=True),
            sa.Column("reason", sa.String(length=512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("client_ip", sa.String(length=64), nullable=True),
        )

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("facility_address", sa.Text(), nullable=False),
            sa.Column("jurisdiction", sa.String(length=255), nullable=False),
            sa.Column("jurisdiction_address", sa.Text(), nullable=True),
            sa.Column("client_name", sa.String(length=255), nullable=False),
            sa.Column("contact_email", sa.String(length=320), nullable=True),
            sa.Column("contact_phone", sa.String(length=64), nullable=True),
            sa.Column("permit_number", sa.String(length=32), nullable=True),
            sa.Column("zip_code", sa.String(length=16), nullable=True),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="not_started"),
            _ts("deadline", nullable=True),
            _ts("created_at"),
            sa.Column(
                "created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
            ),
        )
        op.create_index("idx_projects_status", "projects", ["status"])
        op.create_index("idx_projects_created_by", "projects", ["created_by_user_id"])

    if "documents" not in existing_tables:
        op.create_table(
            "documents",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
            sa.Column("category", sa.String(length=64), nullable=False),
            sa.Column("file_name", sa.String(length=255), nullable=False),
            sa.Column("file_type", sa.String(length=128), nullable=False),
            sa.Column("file_size", sa.Integer(), nullable=False),
            sa.Column("content", sa.LargeBinary(), nullable=False),
            sa.Column("sha256", sa.String(length=64), nullable=False),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="pending_review"),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column(
                "uploaded_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
            ),
            _ts("uploaded_at"),
            sa.Column(
                "reviewed_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
            ),
            _ts("reviewed_at", nullable=True),
            sa.Column("comments", sa.Text(), nullable=True),
            sa.UniqueConstraint("project_id", "category", "file_name", "version", name="uq_document_version"),
        )
        op.create_index("idx_documents_project_category", "documents", ["project_id", "category"])
        op.create_index("idx_documents_status", "documents", ["status"])

    if "document_checklist_items" not in existing_tables:
        op.create_table(
            "document_checklist_items",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column(
                "document_id", sa.Integer(), sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False
            ),
            sa.Column("item_key", sa.String(length=64), nullable=False),
            sa.Column("label", sa.String(length=512), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("checked", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("updated_at"),
            sa.UniqueConstraint("document_id", "item_key", name="uq_document_checklist_item"),
        )

    if "project_stakeholders" not in existing_tables:
        op.create_table(
            "project_stakeholders",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("roles_json", sa.Text(), nullable=False, server_default="[]"),
            sa.Column("assigned_categories_json", sa.Text(), nullable=False, server_default="[]"),
            sa.Column(
                "added_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
            ),
            _ts("added_at"),
            sa.UniqueConstraint("project_id", "user_id", name="uq_project_stakeholder"),
        )

    if "stakeholder_tasks" not in existing_tables:
        op.create_table(
            "stakeholder_tasks",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column(
                "stakeholder_id",
                sa.Integer(),
                sa.ForeignKey("project_stakeholders.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("task_type", sa.String(length=32), nullable=False),
            sa.Column("document_category", sa.String(length=64), nullable=True),
            sa.Column("description", sa.Text(), nullable=False, server_default=""),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
            _ts("due_date", nullable=True),
            sa.Column("notification_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column(
                "created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
            ),
            _ts("created_at"),
            _ts("completed_at", nullable=True),
        )
        op.create_index("idx_stakeholder_tasks_stakeholder", "stakeholder_tasks", ["stakeholder_id"])
        op.create_index("idx_stakeholder_tasks_status", "stakeholder_tasks", ["status"])

    if "activity_logs" not in existing_tables:
        op.create_table(
            "activity_logs",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("activity_type", sa.String(length=64), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            _ts("created_at"),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
        )
        op.create_index("idx_activity_logs_project_created", "activity_logs", ["project_id", "created_at"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("type", sa.String(length=64), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            _ts("created_at"),
        )
        op.create_index("idx_notifications_user_read", "notifications", ["user_id", "is_read"])

    if "commodities" not in existing_tables:
        op.create_table(
            "commodities",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
            sa.Column("commodity_types_json", sa.Text(), nullable=False, server_default="[]"),
            sa.Column("storage_method", sa.String(length=32), nullable=False),
            sa.Column("classification", sa.String(length=32), nullable=False),
            sa.Column(
                "created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
            ),
            _ts("created_at"),
            _ts("updated_at", nullable=True),
        )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("commodities")
    op.drop_index("idx_notifications_user_read", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("idx_activity_logs_project_created", table_name="activity_logs")
    op.drop_table("activity_logs")
    op.drop_index("idx_stakeholder_tasks_status", table_name="stakeholder_tasks")
    op.drop_index("idx_stakeholder_tasks_stakeholder", table_name="stakeholder_tasks")
    op.drop_table("stakeholder_tasks")
    op.drop_table("project_stakeholders")
    op.drop_table("document_checklist_items")
    op.drop_index("idx_documents_status", table_name="documents")
    op.drop_index("idx_documents_project_category", table_name="documents")
    op.drop_table("documents")
    op.drop_index("idx_projects_created_by", table_name="projects")
    op.drop_index("idx_projects_status", table_name="projects")
    op.drop_table("projects")
    op.drop_table("audit_events")
    op.drop_table("role_permissions")
    op.drop_table("user_roles")
    op.drop_table("permissions")
    op.drop_table("roles")
    op.drop_table("users")
