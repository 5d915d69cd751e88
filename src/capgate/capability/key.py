"""
Capability key grammar.

A capability key has exactly three segments, <domain>.<resource>.<action>,
each matching [a-z][a-z0-9_]*. ASCII letters are lower-cased before
validation and any other character is left to fail the grammar, so
"Core.User.View" and "core.user.view" name the same capability.
"""

import re
import string
from typing import NamedTuple

from capgate.errors import InvalidCapabilityKeyError

PATTERN = re.compile(r"^[a-z][a-z0-9_]*\.[a-z][a-z0-9_]*\.[a-z][a-z0-9_]*$")

# ASCII-only, so non-ASCII letters such as U+212A (Kelvin) never fold into the grammar
_ASCII_LOWER = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)


class CapabilityParts(NamedTuple):
    """The three segments of a capability key."""

    domain: str
    resource: str
    action: str


def normalize(key: str) -> str:
    """Lower-case the ASCII letters of a key without validating it."""
    return key.translate(_ASCII_LOWER)


def is_valid(key: str) -> bool:
    """Whether an (already normalized) key matches the grammar."""
    return PATTERN.fullmatch(key) is not None


def parse(key: str) -> CapabilityParts:
    """
    Split a capability key into its segments.

    Args:
        key: Capability key (normalized before matching)

    Returns:
        CapabilityParts(domain, resource, action)

    Raises:
        InvalidCapabilityKeyError: If the key violates the grammar
    """
    key = normalize(key)
    if not is_valid(key):
        raise InvalidCapabilityKeyError(key=key)
    domain, resource, action = key.split(".", 2)
    return CapabilityParts(domain, resource, action)


def from_parts(domain: str, resource: str, action: str) -> str:
    """
    Build and validate a capability key from its parts.

    Raises:
        InvalidCapabilityKeyError: If the resulting key violates the grammar
    """
    key = normalize(f"{domain}.{resource}.{action}")
    if not is_valid(key):
        raise InvalidCapabilityKeyError(key=key)
    return key


def validate(key: str) -> str:
    """Normalize a key and return it, raising if it violates the grammar."""
    key = normalize(key)
    if not is_valid(key):
        raise InvalidCapabilityKeyError(key=key)
    return key
