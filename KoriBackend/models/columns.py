import uuid
from datetime import datetime, timezone


def new_id() -> str:
    return str(uuid.uuid4())


# All timestamps are stored as naive UTC
def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
