from gateway.core.accounts.account import HealthStatus, ProviderAccount, new_account_id
from gateway.core.accounts.store import (
    CredentialStore,
    InMemoryCredentialStore,
    JsonFileCredentialStore,
)

__all__ = [
    "CredentialStore",
    "HealthStatus",
    "InMemoryCredentialStore",
    "JsonFileCredentialStore",
    "ProviderAccount",
    "new_account_id",
]
