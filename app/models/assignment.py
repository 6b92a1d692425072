"""
Snippet-to-category-page assignments and their append-only audit trail.
"""
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from app.database import Base
from app.models.base import new_id, utcnow

ASSIGNMENT_STATUSES = ("PENDING", "ACTIVE", "FAILED", "ARCHIVED")
HISTORY_ACTIONS = ("CREATED", "UPDATED", "DELETED")


def _iso(value):
    return value.isoformat() if value else None


class SnippetAssignment(Base):
    __tablename__ = "snippet_assignments"
    __table_args__ = (
        # At most one assignment per (snippet, category type, slug)
        UniqueConstraint("snippet_id", "cat_type", "slug", name="uq_snippet_assignment_key"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    snippet_id = Column(String(36), ForeignKey("snippets.id", ondelete="CASCADE"), nullable=False, index=True)
    cat_type = Column(String(100), nullable=False, index=True)
    slug = Column(String(255), nullable=False)

    # Status: PENDING → ACTIVE | FAILED, ARCHIVED by hand
    status = Column(String(20), nullable=False, default="PENDING", index=True)

    created_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    updated_by = Column(String(36), ForeignKey("users.id"), nullable=True)

    # Last payload reported back by the execution backend
    sync_metadata = Column(JSON, nullable=True)
    last_sync_at = Column(DateTime, nullable=True)

    assigned_at = Column(DateTime, default=utcnow, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    snippet = relationship("Snippet", back_populates="assignments")
    created_user = relationship("User", foreign_keys=[created_by])
    updated_user = relationship("User", foreign_keys=[updated_by])
    history = relationship(
        "AssignmentHistory",
        back_populates="assignment",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="AssignmentHistory.created_at.desc()",
    )

    @property
    def key(self):
        return (self.cat_type, self.slug)

    def to_dict(self):
        return {
            "id": self.id,
            "snippetId": self.snippet_id,
            "catType": self.cat_type,
            "slug": self.slug,
            "status": self.status,
            "createdBy": self.created_by,
            "updatedBy": self.updated_by,
            "syncMetadata": self.sync_metadata,
            "lastSyncAt": _iso(self.last_sync_at),
            "assignedAt": _iso(self.assigned_at),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class AssignmentHistory(Base):
    """Never updated after insert."""
    __tablename__ = "assignment_history"

    id = Column(String(36), primary_key=True, default=new_id)
    assignment_id = Column(
        String(36),
        ForeignKey("snippet_assignments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action = Column(String(20), nullable=False)  # one of HISTORY_ACTIONS
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)

    assignment = relationship("SnippetAssignment", back_populates="history")
    user = relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "assignmentId": self.assignment_id,
            "action": self.action,
            "userId": self.user_id,
            "oldValues": self.old_values,
            "newValues": self.new_values,
            "metadata": self.meta,
            "createdAt": _iso(self.created_at),
        }
