from sqlalchemy import Column, String, DateTime, Boolean
from app.database import Base
from app.models.base import new_id, utcnow


class User(Base):
    """Admin user; referenced for assignment attribution"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)

    # Roles: 'ADMIN', 'EDITOR', 'VIEWER'
    role = Column(String(20), nullable=False, default="EDITOR")
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    def to_summary(self):
        return {"id": self.id, "name": self.name, "email": self.email}
