"""Protocols for the live-cluster boundary of the drift auditor.

Fetching and applying policies is the only I/O the auditor does. It goes
through this protocol so callers can plug in any cluster client and
tests can use an in-memory one.
"""

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from flowguard.policy import PolicyDocument


@runtime_checkable
class PolicyClient(Protocol):
    """Protocol for reading and writing live network policies.

    Implementations make a single call with the caller's timeout and no
    retry. Errors must be raised, never swallowed: the auditor propagates
    them unchanged.
    """

    def get_network_policy(
        self, namespace: str, name: str, timeout: float | None = None
    ) -> Mapping[str, Any]:
        """Fetch a live policy object (``metadata``/``spec`` mapping)."""
        ...

    def apply(
        self,
        namespace: str,
        documents: list[PolicyDocument],
        timeout: float | None = None,
    ) -> None:
        """Create or update the given documents in the namespace."""
        ...
