"""Drift auditing between declared contracts and live policies."""

from flowguard.drift.auditor import (
    BOOTSTRAP_HOSTS,
    ContractStatus,
    LockPlan,
    LockResult,
    SecretsAudit,
    audit_secrets,
    contract_egress_hosts,
    contract_status,
    fetch_contract_status,
    filter_bootstrap_deps,
    is_bootstrap_host,
    live_egress_hosts,
    lock_policy,
    plan_lock,
    resolve_namespace,
)
from flowguard.drift.protocols import PolicyClient

__all__ = [
    "BOOTSTRAP_HOSTS",
    "ContractStatus",
    "LockPlan",
    "LockResult",
    "PolicyClient",
    "SecretsAudit",
    "audit_secrets",
    "contract_egress_hosts",
    "contract_status",
    "fetch_contract_status",
    "filter_bootstrap_deps",
    "is_bootstrap_host",
    "live_egress_hosts",
    "lock_policy",
    "plan_lock",
    "resolve_namespace",
]
