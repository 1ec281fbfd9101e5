from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.permits.models import Base, User


class ProjectStakeholder(Base):
    __tablename__ = "project_stakeholders"
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_stakeholder"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    # JSON lists: stakeholder roles and the document categories this member is responsible for
    roles_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    assigned_categories_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")

    added_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped[User] = relationship("User", foreign_keys=[user_id], lazy="selectin")
    tasks: Mapped[list["StakeholderTask"]] = relationship(
        "StakeholderTask",
        back_populates="stakeholder",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="StakeholderTask.created_at",
    )


class StakeholderTask(Base):
    __tablename__ = "stakeholder_tasks"
    __table_args__ = (
        Index("idx_stakeholder_tasks_stakeholder", "stakeholder_id"),
        Index("idx_stakeholder_tasks_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    stakeholder_id: Mapped[int] = mapped_column(
        ForeignKey("project_stakeholders.id", ondelete="CASCADE"),
        nullable=False,
    )
    task_type: Mapped[str] = mapped_column(String(32), nullable=False)
    document_category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # pending -> in_progress -> completed
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    notification_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    stakeholder: Mapped[ProjectStakeholder] = relationship("ProjectStakeholder", back_populates="tasks")
