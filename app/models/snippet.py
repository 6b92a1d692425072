from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from app.database import Base
from app.models.base import new_id, utcnow

# Sub-snippet variation types
VARIATION_TYPES = ("SLIM", "EVERGREEN", "DYNAMIC")


class Snippet(Base):
    """
    A marketing content block. `component` is the business type
    (CTA / FAQ / DESCRIPTION).
    """
    __tablename__ = "snippets"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String, nullable=False)
    component = Column(String(32), nullable=False, default="DESCRIPTION")

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    sub_snippets = relationship("SubSnippet", back_populates="snippet", cascade="all, delete-orphan")
    assignments = relationship("SnippetAssignment", back_populates="snippet", cascade="all, delete-orphan")

    def to_summary(self):
        return {"id": self.id, "title": self.title, "component": self.component}


class SubSnippet(Base):
    __tablename__ = "sub_snippets"

    id = Column(String(36), primary_key=True, default=new_id)
    snippet_id = Column(String(36), ForeignKey("snippets.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(20), nullable=False)  # one of VARIATION_TYPES
    base = Column(Text, nullable=True)

    snippet = relationship("Snippet", back_populates="sub_snippets")
    paragraphs = relationship(
        "Paragraph",
        back_populates="sub_snippet",
        cascade="all, delete-orphan",
        order_by="Paragraph.order",
    )


class Paragraph(Base):
    __tablename__ = "paragraphs"

    id = Column(String(36), primary_key=True, default=new_id)
    sub_snippet_id = Column(String(36), ForeignKey("sub_snippets.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=True)
    order = Column(Integer, nullable=False, default=0)

    sub_snippet = relationship("SubSnippet", back_populates="paragraphs")
    variations = relationship(
        "Variation",
        back_populates="paragraph",
        cascade="all, delete-orphan",
        order_by="Variation.order",
    )


class Variation(Base):
    __tablename__ = "variations"

    id = Column(String(36), primary_key=True, default=new_id)
    paragraph_id = Column(String(36), ForeignKey("paragraphs.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=True)
    order = Column(Integer, nullable=False, default=0)

    paragraph = relationship("Paragraph", back_populates="variations")
