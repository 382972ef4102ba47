from datetime import datetime


def serialize_utc(dt: datetime):
    """Naive datetimes are UTC inside the engine; say so on the wire."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.isoformat() + 'Z'
    return dt.isoformat()
