"""Mock Azure credential.

Hands out fake tokens and records every request. None of the mock clients
call it, but the deployer constructs every SDK client with a credential, so
tests can assert which identity was selected.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from azure.core.credentials import AccessToken

TOKEN_VALIDITY_HOURS = 1


class MockCredential:
    """Stand-in for ManagedIdentityCredential and DefaultAzureCredential."""

    def __init__(self, client_id: str | None = None, **kwargs: Any) -> None:
        self.client_id = client_id
        self.options = kwargs
        self._scopes_requested: list[tuple[str, ...]] = []

    @property
    def get_token_call_count(self) -> int:
        return len(self._scopes_requested)

    def get_token(self, *scopes: str, **_kwargs: Any) -> AccessToken:
        self._scopes_requested.append(scopes)
        expires_on = datetime.now(UTC) + timedelta(hours=TOKEN_VALIDITY_HOURS)
        identity = self.client_id or "default-chain"
        return AccessToken(
            f"mock-token-{len(self._scopes_requested)}-{identity}",
            int(expires_on.timestamp()),
        )

    def close(self) -> None:
        pass


def create_mock_credential(client_id: str | None = None) -> MockCredential:
    return MockCredential(client_id=client_id)
