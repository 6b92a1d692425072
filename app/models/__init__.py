# Database models package
from app.models.user import User
from app.models.snippet import Snippet, SubSnippet, Paragraph, Variation
from app.models.assignment import SnippetAssignment, AssignmentHistory

__all__ = [
    "User",
    "Snippet",
    "SubSnippet",
    "Paragraph",
    "Variation",
    "SnippetAssignment",
    "AssignmentHistory",
]
