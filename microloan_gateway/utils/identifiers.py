"""Identifier parsing and generation"""

import uuid

from microloan_gateway.domain.exceptions import NotFoundError


def parse_uuid(value: str | uuid.UUID, entity: str) -> uuid.UUID:
    """Parse an internal id; malformed ids cannot match any row, so they are reported as not found"""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFoundError(entity, str(value))


def new_transaction_id() -> str:
    return f"TXN-{uuid.uuid4().hex[:16].upper()}"
