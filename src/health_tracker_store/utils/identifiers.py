"""
Record identifier generation.

Identifiers are client-generated random UUIDs, assigned once per record.
"""

import uuid


def generate_record_id() -> str:
    """
    Generate a new record identifier.

    Returns:
        Random UUID4 string.
    """
    return str(uuid.uuid4())
