"""Shared security utilities for random secret generation."""

import secrets
import string

# Alphanumeric plus a selected set of special characters
PASSWORD_ALPHABET = string.ascii_letters + string.digits + "-_,.<>/?:;{}[]+"
PASSWORD_LENGTH = 32


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """Generate a password drawn uniformly from PASSWORD_ALPHABET.

    Uses the ``secrets`` CSPRNG, never a time-seeded generator.
    """
    if length <= 0:
        raise ValueError("Password length must be positive")
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
