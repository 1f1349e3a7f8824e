# portal_core/utils.py
"""
Core Utility Functions.

Id, token and clock helpers shared by the path policy and the upload sessions.
Kept in one place so tests can patch a single clock / token source.
"""
import datetime
import time
import uuid


def generate_entity_id() -> str:
    """Mints the id a create form will later insert its row with."""
    return str(uuid.uuid4())


def generate_session_id() -> str:
    """Random id for a legacy temporary session (unrelated to any entity)."""
    return str(uuid.uuid4())


def random_token(length: int = 13) -> str:
    return uuid.uuid4().hex[:length]


def unix_millis() -> int:
    return int(time.time() * 1000)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)
