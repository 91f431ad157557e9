"""Drift auditing of live NetworkPolicies against the workflow contract.

Registry hosts (jsr.io, npm, ...) are only needed while dependencies are
first resolved. ``status`` shows which live egress hosts are such
bootstrap hosts; ``lock`` regenerates the policy without them. Locking
only narrows future egress, so running pods keep their connections and
need no restart.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Literal

from pydantic import BaseModel, Field

from flowguard.config import PolicySettings, get_settings
from flowguard.core.schemas import Workflow, secret_service_name
from flowguard.derive import derive_egress_rules, derive_secrets, external_endpoints
from flowguard.drift.protocols import PolicyClient
from flowguard.exceptions import ContractMissingError, SynthesisError
from flowguard.policy import PolicyDocument, generate_network_policy

logger = logging.getLogger(__name__)

# Package registries used only for first-run dependency resolution
BOOTSTRAP_HOSTS = frozenset(
    {
        "jsr.io",
        "deno.land",
        "cdn.deno.land",
        "registry.npmjs.org",
    }
)


def is_bootstrap_host(host: str) -> bool:
    """Check a host (optionally ``host:port``) against the bootstrap registry.

    Case- and whitespace-insensitive.
    """
    normalized = host.strip().lower()
    if normalized in BOOTSTRAP_HOSTS:
        return True
    name, sep, port = normalized.rpartition(":")
    return bool(sep) and port.isdigit() and name in BOOTSTRAP_HOSTS


def contract_egress_hosts(
    workflow: Workflow, settings: PolicySettings | None = None
) -> list[str]:
    """Declared external ``host:port`` entries, without DNS and in-cluster hosts."""
    return external_endpoints(derive_egress_rules(workflow.contract, settings))


def live_egress_hosts(
    document: PolicyDocument | Mapping[str, Any] | None,
    settings: PolicySettings | None = None,
) -> list[str]:
    """Hosts recorded in a live policy's intended-hosts annotation."""
    if document is None:
        return []

    settings = settings or get_settings()
    if isinstance(document, PolicyDocument):
        annotations = document.annotations
    else:
        annotations = (document.get("metadata") or {}).get("annotations") or {}

    raw = annotations.get(settings.intended_hosts_annotation) or ""
    return [host.strip() for host in raw.split(",") if host.strip()]


def filter_bootstrap_deps(workflow: Workflow) -> Workflow:
    """Return a copy of the workflow whose contract has no bootstrap-host dependencies.

    Only named dependencies are filtered; CIDR overrides are left as declared.
    The given workflow is not modified.
    """
    if workflow.contract is None:
        return workflow

    clean = {
        name: dep
        for name, dep in workflow.contract.dependencies.items()
        if not is_bootstrap_host(dep.host)
    }
    contract = workflow.contract.model_copy(update={"dependencies": clean})
    return workflow.model_copy(update={"contract": contract})


def resolve_namespace(
    workflow: Workflow,
    namespace: str | None = None,
    settings: PolicySettings | None = None,
) -> str:
    """Pick the target namespace.

    Precedence:
    1. Explicit namespace (highest)
    2. The workflow's deployment.namespace
    3. FLOWGUARD_NAMESPACE
    4. "default" (lowest)
    """
    if namespace:
        return namespace
    if workflow.deployment.namespace:
        return workflow.deployment.namespace
    settings = settings or get_settings()
    return settings.namespace or "default"


def policy_name(workflow: Workflow) -> str:
    return f"{workflow.name}-netpol"


class ContractStatus(BaseModel):
    """Comparison of declared egress against a live policy."""

    workflow: str
    namespace: str
    policy_name: str
    contract_hosts: list[str] = Field(default_factory=list)
    live_hosts: list[str] = Field(default_factory=list)
    bootstrap_hosts: list[str] = Field(default_factory=list)
    declared_hosts: list[str] = Field(default_factory=list)
    missing_hosts: list[str] = Field(default_factory=list)
    undeclared_hosts: list[str] = Field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.bootstrap_hosts

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready summary."""
        bootstrap = set(self.bootstrap_hosts)
        return {
            "workflow": self.workflow,
            "namespace": self.namespace,
            "contract": [{"host": host} for host in self.contract_hosts],
            "live": [
                {"host": host, "bootstrap": True} if host in bootstrap else {"host": host}
                for host in self.live_hosts
            ],
            "bootstrapCount": len(self.bootstrap_hosts),
            "clean": self.clean,
        }

    def format(self) -> str:
        """Format the status for display with Rich."""
        lines = [
            f"Workflow:  {self.workflow}",
            f"Namespace: {self.namespace}",
        ]

        if self.contract_hosts:
            lines.append("\n[bold]CONTRACT EGRESS:[/bold]")
            for host in self.contract_hosts:
                lines.append(f"  [green]✓[/green] {host}")

        lines.append(f"\n[bold]LIVE NETWORK POLICY EGRESS ({self.namespace}/{self.policy_name}):[/bold]")
        if not self.live_hosts:
            lines.append("  (none)")
        bootstrap = set(self.bootstrap_hosts)
        for host in self.live_hosts:
            if host in bootstrap:
                lines.append(f"  [yellow]⚠[/yellow] {host}  [dim]\\[bootstrap, removable with lock][/dim]")
            else:
                lines.append(f"  [green]✓[/green] {host}")

        for host in self.missing_hosts:
            lines.append(f"  [red]✗[/red] {host}  [dim]\\[declared but not in live policy][/dim]")

        if self.clean:
            lines.append("\n[green]STATUS: Clean, no bootstrap egress rules present.[/green]")
        else:
            lines.append(
                f"\n[yellow]STATUS: {len(self.bootstrap_hosts)} bootstrap egress rule(s) "
                "present. Run lock to remove.[/yellow]"
            )
        return "\n".join(lines)


def contract_status(
    workflow: Workflow,
    live_document: PolicyDocument | Mapping[str, Any] | None,
    namespace: str = "",
    settings: PolicySettings | None = None,
) -> ContractStatus:
    """Diff declared egress hosts against a live policy's recorded hosts.

    CIDR entries are never written to the annotation, so they are not
    reported as missing.
    """
    contract_hosts = contract_egress_hosts(workflow, settings)
    live_hosts = live_egress_hosts(live_document, settings)

    declared = set(contract_hosts)
    live = set(live_hosts)
    bootstrap = [host for host in live_hosts if is_bootstrap_host(host)]

    return ContractStatus(
        workflow=workflow.name,
        namespace=namespace,
        policy_name=policy_name(workflow),
        contract_hosts=contract_hosts,
        live_hosts=live_hosts,
        bootstrap_hosts=bootstrap,
        declared_hosts=[host for host in live_hosts if not is_bootstrap_host(host)],
        missing_hosts=[
            host for host in contract_hosts if host not in live and "/" not in host
        ],
        undeclared_hosts=[
            host for host in live_hosts if host not in declared and not is_bootstrap_host(host)
        ],
    )


def fetch_contract_status(
    workflow: Workflow,
    client: PolicyClient,
    namespace: str | None = None,
    settings: PolicySettings | None = None,
    timeout: float | None = None,
) -> ContractStatus:
    """Fetch the live policy and compare it with the contract.

    Raises:
        ContractMissingError: If the workflow declares no contract
    """
    if workflow.contract is None:
        raise ContractMissingError(workflow.name, "check")

    namespace = resolve_namespace(workflow, namespace, settings)
    live = client.get_network_policy(namespace, policy_name(workflow), timeout=timeout)
    return contract_status(workflow, live, namespace, settings)


class LockPlan(BaseModel):
    """What a lock would change."""

    namespace: str
    policy_name: str
    bootstrap_hosts: list[str] = Field(default_factory=list)
    document: PolicyDocument | None = None

    @property
    def already_clean(self) -> bool:
        return not self.bootstrap_hosts


class LockResult(BaseModel):
    plan: LockPlan
    applied: bool = False
    dry_run: bool = False


def plan_lock(
    workflow: Workflow,
    live_document: PolicyDocument | Mapping[str, Any] | None,
    namespace: str,
    settings: PolicySettings | None = None,
) -> LockPlan:
    """Compute the bootstrap hosts to drop and the policy that replaces the live one.

    ``document`` stays None when the live policy is already clean.

    Raises:
        ContractMissingError: If the workflow declares no contract
    """
    if workflow.contract is None:
        raise ContractMissingError(workflow.name, "lock")

    removable = [
        host for host in live_egress_hosts(live_document, settings) if is_bootstrap_host(host)
    ]
    plan = LockPlan(
        namespace=namespace, policy_name=policy_name(workflow), bootstrap_hosts=removable
    )
    if not removable:
        return plan

    document = generate_network_policy(filter_bootstrap_deps(workflow), namespace, settings)
    if document is None:
        raise SynthesisError(f"failed to generate clean NetworkPolicy for {workflow.name}")
    return plan.model_copy(update={"document": document})


def lock_policy(
    workflow: Workflow,
    client: PolicyClient,
    namespace: str | None = None,
    dry_run: bool = False,
    settings: PolicySettings | None = None,
    timeout: float | None = None,
) -> LockResult:
    """Remove bootstrap egress from the live policy in place.

    Nothing is applied when the live policy is already clean or on dry run.
    Client errors propagate unchanged.
    """
    if workflow.contract is None:
        raise ContractMissingError(workflow.name, "lock")

    namespace = resolve_namespace(workflow, namespace, settings)
    name = policy_name(workflow)

    live = client.get_network_policy(namespace, name, timeout=timeout)
    plan = plan_lock(workflow, live, namespace, settings)

    if plan.already_clean:
        logger.info("%s/%s: already clean, no bootstrap egress rules present", namespace, name)
        return LockResult(plan=plan)

    logger.info(
        "Bootstrap egress rules found in %s/%s: %s",
        namespace,
        name,
        ", ".join(plan.bootstrap_hosts),
    )
    if dry_run:
        return LockResult(plan=plan, dry_run=True)

    assert plan.document is not None
    client.apply(namespace, [plan.document], timeout=timeout)
    logger.info(
        "Removed %d bootstrap egress rule(s) from %s/%s; no pod restart required",
        len(plan.bootstrap_hosts),
        namespace,
        name,
    )
    return LockResult(plan=plan, applied=True)


class SecretsAudit(BaseModel):
    """Derived secret services compared with the keys of the deployed secret."""

    expected_keys: list[str] = Field(default_factory=list)
    actual_keys: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
    extra: list[str] = Field(default_factory=list)
    status: Literal["match", "mismatch", "missing"] = "match"


def audit_secrets(workflow: Workflow, actual_keys: Iterable[str] | None) -> SecretsAudit:
    """Compare required secret services with the keys present in the live secret.

    Args:
        workflow: Parsed workflow
        actual_keys: Keys of the deployed secret, or None if it does not exist

    Returns:
        SecretsAudit; status is "missing" when secrets are required but none exist
    """
    expected = derive_secrets(workflow.contract)
    if not expected:
        return SecretsAudit()

    if actual_keys is None:
        return SecretsAudit(expected_keys=expected, status="missing")

    actual = sorted(actual_keys)
    services = sorted({secret_service_name(ref) for ref in expected} - {""})
    missing = [service for service in services if service not in actual]
    extra = [key for key in actual if key not in services]

    return SecretsAudit(
        expected_keys=expected,
        actual_keys=actual,
        missing=missing,
        extra=extra,
        status="mismatch" if missing or extra else "match",
    )
