"""Random identifiers for emitted events."""

import uuid


def new_id() -> str:
    """Return a canonical random (version 4) UUID string of 36 characters."""
    return str(uuid.uuid4())