"""
Input validation for values users type into the chat.

The stores trust their callers; these checks run before anything is stored.
"""

from __future__ import annotations

import re

# TON user-friendly address: 2-letter tag + 46 base64url characters.
ACCOUNT_ADDRESS_PATTERN = re.compile(r"^(EQ|UQ|0Q)[A-Za-z0-9_-]{46}$")


def is_valid_account(address: str) -> bool:
    """True for 'EQ'/'UQ'/'0Q' followed by exactly 46 address characters."""
    return ACCOUNT_ADDRESS_PATTERN.fullmatch(address.strip()) is not None
