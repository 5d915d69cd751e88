"""
Policy pipeline for capgate.

This module implements the decision point: deny-by-default evaluation of
capability checks through an ordered chain of policy stages.

Key concepts:
    - PolicyStage: Decides (halts the pipeline) or abstains (returns None)
    - AuthorizationEngine: Runs the stages and records the trail
    - EffectivePermissions: Role grants plus explicit overrides for one actor
    - GrantSource: Where role assignments and overrides come from
"""

from capgate.policy.engine import AuthorizationEngine, AuthorizationService, to_resource_context
from capgate.policy.permissions import EffectivePermissions, GrantSource, InMemoryGrantSource
from capgate.policy.stages import (
    ActorContextStage,
    CompanyScopeStage,
    GrantStage,
    KnownCapabilityStage,
    PolicyStage,
    default_stages,
)

__all__ = [
    "ActorContextStage",
    "AuthorizationEngine",
    "AuthorizationService",
    "CompanyScopeStage",
    "EffectivePermissions",
    "GrantSource",
    "GrantStage",
    "InMemoryGrantSource",
    "KnownCapabilityStage",
    "PolicyStage",
    "default_stages",
    "to_resource_context",
]
