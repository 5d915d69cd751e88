"""
Capability registry.

The registry is the runtime lookup structure over a validated catalog.
It answers "is this capability known?" and "which capabilities exist under
domain X?". It can only be built from a catalog that passes validation, and
it is immutable afterwards, so concurrent readers need no locking.

Usage:
    catalog = CapabilityCatalog.from_config(load_config())
    registry = CapabilityRegistry.from_catalog(catalog)

    registry.has("Core.User.View")      # case-insensitive
    registry.for_domain("core")
"""

from collections.abc import Iterable, Iterator

from capgate.capability import key as capability_key
from capgate.capability.catalog import CapabilityCatalog
from capgate.errors import UnknownCapabilityError


class CapabilityRegistry:
    """
    Set of known capability keys with O(1) membership tests.

    Attributes:
        _capabilities: Keys in catalog order
        _lookup: Frozen set of the same keys for membership tests
    """

    def __init__(self, capabilities: Iterable[str]) -> None:
        """
        Build a registry from capability keys.

        Each key must match the grammar; domains and verbs are only checked
        by from_catalog().

        Raises:
            InvalidCapabilityKeyError: If a key violates the grammar
        """
        self._capabilities: tuple[str, ...] = tuple(
            dict.fromkeys(capability_key.validate(c) for c in capabilities)
        )
        self._lookup: frozenset[str] = frozenset(self._capabilities)

    @classmethod
    def from_catalog(cls, catalog: CapabilityCatalog) -> "CapabilityRegistry":
        """
        Build a registry from a catalog, validating it first.

        Raises:
            CapabilityError: If the catalog fails validation
        """
        catalog.validate()
        return cls(catalog.capabilities)

    def has(self, capability: str) -> bool:
        """Case-insensitive membership test."""
        return capability_key.normalize(capability) in self._lookup

    def assert_known(self, capability: str) -> None:
        """
        Raise if the capability is not registered.

        Raises:
            UnknownCapabilityError: If the key is unknown
        """
        if not self.has(capability):
            raise UnknownCapabilityError(key=capability_key.normalize(capability))

    def all(self) -> list[str]:
        """All known keys in catalog order."""
        return list(self._capabilities)

    def for_domain(self, domain: str) -> list[str]:
        """All known keys whose domain segment matches."""
        prefix = capability_key.normalize(domain) + "."
        return [c for c in self._capabilities if c.startswith(prefix)]

    def __len__(self) -> int:
        return len(self._capabilities)

    def __iter__(self) -> Iterator[str]:
        return iter(self._capabilities)

    def __contains__(self, capability: object) -> bool:
        return isinstance(capability, str) and self.has(capability)

    def __repr__(self) -> str:
        return f"<CapabilityRegistry: {len(self)} capabilities>"
