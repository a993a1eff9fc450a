"""
Random identifier and token generation.

Identifiers come from ``secrets`` so share codes and capability tokens are not
predictable. Uniqueness for stored identifiers is checked against the keyed
store with a bounded number of attempts.
"""

import logging
import secrets
import string
from typing import Awaitable, Callable

from ..errors import IdGenerationExhaustedError

logger = logging.getLogger(__name__)

LOWER_ALPHANUMERIC = string.ascii_lowercase + string.digits
ALPHANUMERIC = string.ascii_letters + string.digits

ADMIN_TOKEN_LENGTH = 32
SESSION_TOKEN_LENGTH = 48


def generate_id(length: int = 8, charset: str = LOWER_ALPHANUMERIC) -> str:
    """Generate a random fixed-length string drawn from ``charset``."""
    return ''.join(secrets.choice(charset) for _ in range(length))


def generate_admin_token() -> str:
    """Generate an Owner admin capability token."""
    return generate_id(ADMIN_TOKEN_LENGTH, ALPHANUMERIC)


def generate_session_token() -> str:
    """Generate an opaque bearer session token."""
    return generate_id(SESSION_TOKEN_LENGTH, ALPHANUMERIC)


async def generate_unique_id(
    exists: Callable[[str], Awaitable[bool]],
    length: int,
    max_attempts: int,
    namespace: str = "record",
) -> str:
    """
    Generate an identifier that ``exists`` reports as free.

    Args:
        exists: Async predicate telling whether a candidate is taken
        length: Identifier length
        max_attempts: Number of candidates to try before giving up
        namespace: Record kind, used in logs and the error message

    Returns:
        An identifier not present at the time of the check

    Raises:
        IdGenerationExhaustedError: If every candidate collided
    """
    for attempt in range(1, max_attempts + 1):
        candidate = generate_id(length)
        if not await exists(candidate):
            return candidate
        logger.warning(f"Generated {namespace} id collided (attempt {attempt}/{max_attempts})")

    raise IdGenerationExhaustedError(namespace, max_attempts)
