"""Helpers for room identifiers."""

import secrets

ROOM_ID_ALPHABET = "abcdefghjkmnpqrstuvwxyz23456789"
"""Lowercase letters and digits without the easily confused 0, o, 1, i and l."""
DEFAULT_ROOM_ID_LENGTH = 6


def generate_room_id(length: int = DEFAULT_ROOM_ID_LENGTH) -> str:
    """Return a random room id that is easy to read out loud and type."""
    if length <= 0:
        raise ValueError("length must be positive")
    return "".join(secrets.choice(ROOM_ID_ALPHABET) for _ in range(length))


def normalize_room_id(room_id: str) -> str:
    """Room ids are case-insensitive, surrounding whitespace is ignored."""
    return room_id.strip().lower()
