"""Identifier generation for stored entities."""

import secrets
import string
import time

CLIENT = 'client'
PROJECT = 'project'
ENTRY = 'entry'
INVOICE = 'inv'

_ALPHABET = string.digits + string.ascii_lowercase


def _base36(value: int) -> str:
    if value == 0:
        return '0'
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return ''.join(reversed(digits))


def new_id(prefix: str = 'id') -> str:
    """Return a new opaque id like ``client_k3j9x0ab_lz4q1c8w``."""
    random_part = ''.join(secrets.choice(_ALPHABET) for _ in range(8))
    return f"{prefix}_{random_part}_{_base36(time.time_ns() // 1_000_000)}"
