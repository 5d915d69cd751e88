"""
Capability catalog.

The catalog holds the authoritative domains, verbs and capability keys,
merged from the base configuration and every feature module. It performs
no I/O: it only checks the data it was handed.
"""

from collections.abc import Iterable
from typing import TYPE_CHECKING

from capgate.capability import key as capability_key
from capgate.errors import UnknownDomainError, UnknownVerbError

if TYPE_CHECKING:
    from capgate.schema import AuthzConfig


def _unique_lower(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(capability_key.normalize(v) for v in values))


class CapabilityCatalog:
    """
    Validated set of domains, verbs and capability keys.

    Attributes:
        domains: Lower-cased, de-duplicated domain names
        verbs: Lower-cased, de-duplicated verbs
        capabilities: Lower-cased, de-duplicated capability keys
    """

    def __init__(
        self,
        domains: Iterable[str],
        verbs: Iterable[str],
        capabilities: Iterable[str],
    ) -> None:
        self.domains = _unique_lower(domains)
        self.verbs = _unique_lower(verbs)
        self.capabilities = _unique_lower(capabilities)

    @classmethod
    def from_config(cls, config: "AuthzConfig") -> "CapabilityCatalog":
        """Create a catalog from loaded authz configuration."""
        return cls(config.domains.keys(), config.verbs, config.capabilities)

    def validate(self) -> None:
        """
        Validate every capability key against grammar, domains and verbs.

        Validation is all-or-nothing: the first violation aborts.

        Raises:
            InvalidCapabilityKeyError: Key violates the grammar
            UnknownDomainError: Key's domain is not declared
            UnknownVerbError: Key's action is not a declared verb
        """
        domains = set(self.domains)
        verbs = set(self.verbs)
        for key in self.capabilities:
            parts = capability_key.parse(key)
            if parts.domain not in domains:
                raise UnknownDomainError(key=key, domain=parts.domain)
            if parts.action not in verbs:
                raise UnknownVerbError(key=key, verb=parts.action)

    def __repr__(self) -> str:
        return (
            f"<CapabilityCatalog: {len(self.domains)} domains, "
            f"{len(self.verbs)} verbs, {len(self.capabilities)} capabilities>"
        )
