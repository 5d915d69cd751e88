"""
Capability catalog and registry.

Capabilities are permission atoms named <domain>.<resource>.<action>.
The catalog validates configuration; the registry answers lookups at
request time.
"""

from capgate.capability.catalog import CapabilityCatalog
from capgate.capability.key import CapabilityParts, from_parts, is_valid, parse
from capgate.capability.registry import CapabilityRegistry

__all__ = [
    "CapabilityCatalog",
    "CapabilityParts",
    "CapabilityRegistry",
    "from_parts",
    "is_valid",
    "parse",
]
