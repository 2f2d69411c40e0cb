"""
auth/errors.py -- Infrastructure failure types for the authentication core.

Expected rejections (bad credentials, expired links, stale refresh tokens) are
NOT exceptions -- they are Rejected values returned by auth/engine.py.
Exceptions in this module mean a collaborator (cache, store, signer) failed
and the request cannot be answered. The HTTP layer maps every
InfrastructureError to a 503 so clients can retry.

Layer rule: no imports from api/, events/, or cache/.
"""

from __future__ import annotations


class InfrastructureError(Exception):
    """A collaborator of the auth core is unreachable or misbehaving.

    operation:    engine or store operation that was running ("login", "get").
    collaborator: which dependency failed ("cache", "store", "codec").
    """

    collaborator: str = "unknown"

    def __init__(self, message: str, *, operation: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation

    def __str__(self) -> str:
        if self.operation:
            return f"{self.collaborator}.{self.operation}: {self.message}"
        return f"{self.collaborator}: {self.message}"


class CacheUnavailableError(InfrastructureError):
    collaborator = "cache"


class StoreUnavailableError(InfrastructureError):
    collaborator = "store"


class TokenSigningError(InfrastructureError):
    collaborator = "codec"


class StoreError(Exception):
    """Contract misuse on the credential store (e.g. updating an unknown id)."""
