"""
Unit tests for capability keys, the catalog and the registry.

Tests cover:
- Key grammar and normalization
- Catalog validation order (grammar, domain, verb)
- Registry lookups and immutability
"""

import pytest

from capgate.capability import CapabilityCatalog, CapabilityRegistry, from_parts, is_valid, parse
from capgate.capability import key as capability_key
from capgate.errors import (
    CapabilityError,
    InvalidCapabilityKeyError,
    UnknownCapabilityError,
    UnknownDomainError,
    UnknownVerbError,
)


# =============================================================================
# Key Grammar Tests
# =============================================================================


class TestCapabilityKey:
    """Tests for the key grammar helpers."""

    def test_from_parts_normalizes(self) -> None:
        """Mixed-case parts produce the same key as the literal."""
        assert from_parts("Core", "User", "View") == "core.user.view"
        assert parse(from_parts("Core", "User", "View")) == parse("core.user.view")

    def test_parse_splits_segments(self) -> None:
        """parse() returns domain, resource and action."""
        parts = parse("core.employee_type.list")
        assert parts.domain == "core"
        assert parts.resource == "employee_type"
        assert parts.action == "list"

    def test_parse_lowercases(self) -> None:
        """Upper-case input is accepted after normalization."""
        assert parse("CORE.USER.VIEW") == ("core", "user", "view")

    @pytest.mark.parametrize(
        "key",
        [
            "core.user",
            "core.user.view.extra",
            "core..view",
            "1core.user.view",
            "core.user.vi-ew",
            "core.user.view ",
            " core.user.view",
            "",
        ],
    )
    def test_invalid_keys_rejected(self, key: str) -> None:
        """Keys violating the grammar raise InvalidCapabilityKeyError."""
        with pytest.raises(InvalidCapabilityKeyError):
            parse(key)
        with pytest.raises(InvalidCapabilityKeyError):
            capability_key.validate(key)

    def test_from_parts_rejects_invalid(self) -> None:
        """from_parts() applies the same grammar as parse()."""
        with pytest.raises(InvalidCapabilityKeyError):
            from_parts("core", "user", "view all")

    def test_is_valid(self) -> None:
        assert is_valid("core.user_2.view")
        assert not is_valid("Core.user.view")
        assert not is_valid("core.user.view\n")

    def test_error_names_key(self) -> None:
        """The error carries the offending key."""
        with pytest.raises(InvalidCapabilityKeyError) as exc_info:
            parse("bad")
        assert exc_info.value.key == "bad"
        assert exc_info.value.context["key"] == "bad"

    @pytest.mark.parametrize(
        "key",
        [
            "core.user.\u212aill",
            "core.\u0130tem.view",
            "core.us\u00e9r.view",
        ],
    )
    def test_non_ascii_keys_rejected(self, key: str) -> None:
        """Only ASCII letters are folded; other letters fail the grammar."""
        with pytest.raises(InvalidCapabilityKeyError):
            parse(key)
        with pytest.raises(InvalidCapabilityKeyError):
            capability_key.validate(key)
        with pytest.raises(InvalidCapabilityKeyError):
            from_parts(*key.split("."))


# =============================================================================
# Catalog Tests
# =============================================================================


class TestCapabilityCatalog:
    """Tests for CapabilityCatalog."""

    def test_lowercases_and_deduplicates(self) -> None:
        """Lists are lower-cased and de-duplicated, keeping first order."""
        catalog = CapabilityCatalog(
            domains=["Core", "core", "admin"],
            verbs=["VIEW", "view"],
            capabilities=["Core.User.View", "core.user.view"],
        )
        assert catalog.domains == ["core", "admin"]
        assert catalog.verbs == ["view"]
        assert catalog.capabilities == ["core.user.view"]

    def test_valid_catalog(self) -> None:
        catalog = CapabilityCatalog(["core"], ["view", "list"], ["core.user.view", "core.user.list"])
        catalog.validate()

    def test_invalid_grammar(self) -> None:
        catalog = CapabilityCatalog(["core"], ["view"], ["core.user"])
        with pytest.raises(InvalidCapabilityKeyError):
            catalog.validate()

    def test_unknown_domain(self) -> None:
        catalog = CapabilityCatalog(["core"], ["view"], ["billing.invoice.view"])
        with pytest.raises(UnknownDomainError) as exc_info:
            catalog.validate()
        assert exc_info.value.key == "billing.invoice.view"
        assert exc_info.value.domain == "billing"

    def test_unknown_verb(self) -> None:
        catalog = CapabilityCatalog(["core"], ["view"], ["core.user.teleport"])
        with pytest.raises(UnknownVerbError) as exc_info:
            catalog.validate()
        assert exc_info.value.verb == "teleport"

    def test_first_violation_aborts(self) -> None:
        """The first offending key is reported."""
        catalog = CapabilityCatalog(
            ["core"],
            ["view"],
            ["core.user.view", "core.user.teleport", "billing.invoice.view"],
        )
        with pytest.raises(UnknownVerbError) as exc_info:
            catalog.validate()
        assert exc_info.value.key == "core.user.teleport"

    def test_from_config(self, sample_config) -> None:
        catalog = CapabilityCatalog.from_config(sample_config)
        assert catalog.domains == ["core", "admin"]
        assert "admin.role.list" in catalog.capabilities


# =============================================================================
# Registry Tests
# =============================================================================


class TestCapabilityRegistry:
    """Tests for CapabilityRegistry."""

    def test_from_catalog_validates(self) -> None:
        """Registry construction fails fast on an invalid catalog."""
        catalog = CapabilityCatalog(["core"], ["view"], ["admin.role.view"])
        with pytest.raises(CapabilityError):
            CapabilityRegistry.from_catalog(catalog)

    def test_has_is_case_insensitive(self, registry: CapabilityRegistry) -> None:
        assert registry.has("core.user.view")
        assert registry.has("Core.User.View")
        assert not registry.has("core.user.teleport")

    def test_assert_known(self, registry: CapabilityRegistry) -> None:
        registry.assert_known("CORE.USER.VIEW")
        with pytest.raises(UnknownCapabilityError) as exc_info:
            registry.assert_known("core.user.teleport")
        assert exc_info.value.key == "core.user.teleport"

    def test_for_domain_keeps_order(self, registry: CapabilityRegistry) -> None:
        assert registry.for_domain("core") == [
            "core.user.view",
            "core.user.list",
            "core.user.update",
            "core.user.delete",
        ]
        assert registry.for_domain("admin") == ["admin.role.list"]
        assert registry.for_domain("workflow") == []

    def test_for_domain_does_not_match_prefix(self) -> None:
        """A domain only matches whole first segments."""
        registry = CapabilityRegistry(["core.user.view", "corex.user.view"])
        assert registry.for_domain("core") == ["core.user.view"]

    def test_container_protocol(self, registry: CapabilityRegistry) -> None:
        assert len(registry) == 5
        assert "core.user.list" in registry
        assert "Core.User.List" in registry
        assert 42 not in registry
        assert list(registry) == registry.all()

    def test_all_returns_copy(self, registry: CapabilityRegistry) -> None:
        """Mutating the returned list does not change the registry."""
        keys = registry.all()
        keys.append("core.user.teleport")
        assert not registry.has("core.user.teleport")
        assert len(registry) == 5

    def test_non_ascii_lookalike_is_unknown(self) -> None:
        """A Kelvin sign does not alias an ASCII k."""
        registry = CapabilityRegistry(["core.user.kill"])
        assert not registry.has("core.user.\u212aill")
        with pytest.raises(UnknownCapabilityError):
            registry.assert_known("core.user.\u212aill")

    @pytest.mark.parametrize("key", ["Bad Key", "core.user", "core.user.\u212aill"])
    def test_constructor_rejects_invalid_keys(self, key: str) -> None:
        with pytest.raises(InvalidCapabilityKeyError):
            CapabilityRegistry(["core.user.view", key])

    def test_repr(self, registry: CapabilityRegistry) -> None:
        assert repr(registry) == "<CapabilityRegistry: 5 capabilities>"
