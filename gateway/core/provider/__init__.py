"""Provider clients and account selection.

- ProviderClient: contract each upstream client implements
- ProviderRegistry: looks clients up by provider name
- LoadBalancer: round-robin selection across a user's accounts
- FailurePolicy: hook invoked when a provider call fails
"""

from gateway.core.provider.base import AuthFlow, Credential, ProviderClient, TokenSet
from gateway.core.provider.failure_policy import (
    FailurePolicy,
    HealthTrackingFailurePolicy,
    NoopFailurePolicy,
)
from gateway.core.provider.load_balancer import LoadBalancer
from gateway.core.provider.registry import ProviderRegistry, build_default_registry
from gateway.core.provider.rotation import InMemoryRotationState, RotationState

__all__ = [
    "AuthFlow",
    "Credential",
    "FailurePolicy",
    "HealthTrackingFailurePolicy",
    "InMemoryRotationState",
    "LoadBalancer",
    "NoopFailurePolicy",
    "ProviderClient",
    "ProviderRegistry",
    "RotationState",
    "TokenSet",
    "build_default_registry",
]
