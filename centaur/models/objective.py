"""
Objective and Task Models

Objectives are a foundry's OKR-style goals; tasks are the work items
under them. Two-level foundry isolation chain:
    Foundry -> Objective -> Task

Task rows carry foundry_id too so they can be filtered without a join.
"""
from sqlalchemy import Column, String, Text, Boolean, Date, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from centaur.database import Base
import uuid


class Objective(Base):
    __tablename__ = "objectives"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    foundry_id = Column(
        String(36),
        ForeignKey("foundries.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Owner must be in the same foundry (enforced at application level)
    owner_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), default="active", nullable=False, index=True)  # active, completed, archived
    target_date = Column(Date, nullable=True)

    # Soft delete; admins can restore
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    foundry = relationship("Foundry", back_populates="objectives")
    tasks = relationship("Task", back_populates="objective", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_objective_foundry_status', 'foundry_id', 'is_deleted', 'status'),
        Index('idx_objective_owner', 'owner_id', 'is_deleted'),
    )

    def __repr__(self):
        return f"<Objective {self.title} (foundry={self.foundry_id})>"

    def soft_delete(self):
        self.is_deleted = True
        self.deleted_at = datetime.utcnow()

    @property
    def progress(self) -> int:
        """Percentage of tasks marked done."""
        if not self.tasks:
            return 0
        done = sum(1 for task in self.tasks if task.status == "done")
        return round(done * 100 / len(self.tasks))


class Task(Base):
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    foundry_id = Column(
        String(36),
        ForeignKey("foundries.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    objective_id = Column(
        String(36),
        ForeignKey("objectives.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    assignee_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), default="todo", nullable=False, index=True)  # todo, in_progress, done, blocked
    due_date = Column(Date, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    objective = relationship("Objective", back_populates="tasks")

    __table_args__ = (
        Index('idx_task_objective', 'objective_id', 'created_at'),
        Index('idx_task_foundry_assignee', 'foundry_id', 'assignee_id'),
    )

    def __repr__(self):
        return f"<Task {self.title} status={self.status} (foundry={self.foundry_id})>"
