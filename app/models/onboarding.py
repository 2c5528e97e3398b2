"""
Onboarding workflows, task templates, assignments and tasks.

A workflow is a set of task templates. Assigning a workflow to a user
expands the templates matching the user's department and roles into
concrete tasks with due dates.
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional, List, TYPE_CHECKING
from sqlalchemy import (
    String, Boolean, DateTime, ForeignKey, Enum, Text, Integer, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.user import Department
from app.models.staff import PDCategory

if TYPE_CHECKING:
    from app.models.user import User


class AssignmentStatus(str, PyEnum):
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"


class TaskStatus(str, PyEnum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    SKIPPED = "Skipped"


DONE_TASK_STATUSES = (TaskStatus.COMPLETED, TaskStatus.SKIPPED)


class OnboardingWorkflow(Base):
    __tablename__ = "onboarding_workflows"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Null department means the workflow applies to everyone
    department: Mapped[Optional[Department]] = mapped_column(Enum(Department), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    templates: Mapped[List["OnboardingTaskTemplate"]] = relationship(
        "OnboardingTaskTemplate",
        back_populates="workflow",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OnboardingTaskTemplate.order_index",
    )

    def __repr__(self) -> str:
        return f"<OnboardingWorkflow {self.name}>"


class OnboardingTaskTemplate(Base):
    __tablename__ = "onboarding_task_templates"

    id: Mapped[int] = mapped_column(primary_key=True)
    workflow_id: Mapped[int] = mapped_column(
        ForeignKey("onboarding_workflows.id", ondelete="CASCADE"), index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    task_type: Mapped[str] = mapped_column(String(50), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    days_to_complete: Mapped[int] = mapped_column(Integer, default=7)
    department: Mapped[Optional[Department]] = mapped_column(Enum(Department), nullable=True)
    role: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    sop_id: Mapped[Optional[int]] = mapped_column(ForeignKey("sops.id", ondelete="SET NULL"), nullable=True)
    pd_category: Mapped[Optional[PDCategory]] = mapped_column(Enum(PDCategory), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    workflow: Mapped["OnboardingWorkflow"] = relationship("OnboardingWorkflow", back_populates="templates")

    def applies_to(self, department: Optional[str], role_names: list[str]) -> bool:
        """Templates without a department/role apply to everyone."""
        dept_match = self.department is None or self.department == department
        role_match = not self.role or self.role in role_names
        return dept_match and role_match


class OnboardingAssignment(Base):
    __tablename__ = "onboarding_assignments"
    __table_args__ = (UniqueConstraint("user_id", "workflow_id", name="uq_assignment_user_workflow"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    workflow_id: Mapped[int] = mapped_column(
        ForeignKey("onboarding_workflows.id", ondelete="CASCADE"), index=True
    )
    status: Mapped[AssignmentStatus] = mapped_column(
        Enum(AssignmentStatus), default=AssignmentStatus.IN_PROGRESS, index=True
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notification_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    user: Mapped["User"] = relationship("User", lazy="selectin")
    workflow: Mapped["OnboardingWorkflow"] = relationship("OnboardingWorkflow", lazy="selectin")
    tasks: Mapped[List["OnboardingTask"]] = relationship(
        "OnboardingTask",
        back_populates="assignment",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OnboardingTask.order_index",
    )

    @property
    def progress(self) -> int:
        """Percentage of tasks completed, rounded."""
        if not self.tasks:
            return 0
        completed = sum(1 for task in self.tasks if task.status == TaskStatus.COMPLETED)
        return round(completed / len(self.tasks) * 100)

    @property
    def all_tasks_done(self) -> bool:
        return all(task.status in DONE_TASK_STATUSES for task in self.tasks)


class OnboardingTask(Base):
    __tablename__ = "onboarding_tasks"

    id: Mapped[int] = mapped_column(primary_key=True)
    assignment_id: Mapped[int] = mapped_column(
        ForeignKey("onboarding_assignments.id", ondelete="CASCADE"), index=True
    )
    template_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("onboarding_task_templates.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    task_type: Mapped[str] = mapped_column(String(50), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    sop_id: Mapped[Optional[int]] = mapped_column(ForeignKey("sops.id", ondelete="SET NULL"), nullable=True)
    status: Mapped[TaskStatus] = mapped_column(Enum(TaskStatus), default=TaskStatus.PENDING)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    assignment: Mapped["OnboardingAssignment"] = relationship("OnboardingAssignment", back_populates="tasks")
