# Utilities module

from .ids import (
    ALPHANUMERIC,
    LOWER_ALPHANUMERIC,
    generate_admin_token,
    generate_id,
    generate_session_token,
    generate_unique_id,
)

__all__ = [
    "ALPHANUMERIC",
    "LOWER_ALPHANUMERIC",
    "generate_admin_token",
    "generate_id",
    "generate_session_token",
    "generate_unique_id",
]
