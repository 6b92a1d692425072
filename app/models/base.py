from datetime import datetime, timezone
import uuid


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp (columns are stored without tz on SQLite)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
