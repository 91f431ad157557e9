"""Mock implementations for testing the drift auditor.

Provides an in-memory policy client that can be used in tests without
a cluster.
"""

from collections.abc import Mapping
from typing import Any

from flowguard.drift.protocols import PolicyClient
from flowguard.policy import PolicyDocument


class PolicyNotFoundError(LookupError):
    """Raised by the mock client for a policy it does not hold."""


class MockPolicyClient:
    """Mock policy client for testing.

    Stores policies keyed by (namespace, name) and records every call.
    Applied documents replace the stored manifest, so a second audit sees
    the result of the first lock.
    """

    def __init__(self, policies: Mapping[tuple[str, str], Mapping[str, Any]] | None = None) -> None:
        """Initialize with pre-existing live policies.

        Args:
            policies: Live manifests keyed by (namespace, name)
        """
        self.policies: dict[tuple[str, str], Mapping[str, Any]] = dict(policies or {})
        self.calls: list[dict[str, Any]] = []
        self.applied: list[PolicyDocument] = []
        self.error: Exception | None = None

    def get_network_policy(
        self, namespace: str, name: str, timeout: float | None = None
    ) -> Mapping[str, Any]:
        """Record the call and return the stored manifest."""
        self.calls.append({"method": "get", "namespace": namespace, "name": name, "timeout": timeout})
        if self.error is not None:
            raise self.error
        try:
            return self.policies[(namespace, name)]
        except KeyError:
            raise PolicyNotFoundError(f"networkpolicy {namespace}/{name} not found") from None

    def apply(
        self,
        namespace: str,
        documents: list[PolicyDocument],
        timeout: float | None = None,
    ) -> None:
        """Record the call and store each document's manifest."""
        self.calls.append({
            "method": "apply",
            "namespace": namespace,
            "names": [document.name for document in documents],
            "timeout": timeout,
        })
        if self.error is not None:
            raise self.error
        for document in documents:
            self.applied.append(document)
            self.policies[(namespace, document.name)] = document.manifest

    def set_error(self, error: Exception | None) -> None:
        """Make subsequent calls raise the given error."""
        self.error = error

    def add_policy(self, document: PolicyDocument) -> None:
        """Store a rendered document as if it were live."""
        self.policies[(document.namespace, document.name)] = document.manifest

    @property
    def apply_calls(self) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["method"] == "apply"]


# Verify mocks implement protocols
assert isinstance(MockPolicyClient(), PolicyClient)
