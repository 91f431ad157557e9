"""Contract derivation: secrets, egress, ingress and runtime permission flags.

Every function here is pure and deterministic. Output lists are sorted
explicitly so the result never depends on dependency-map ordering.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict

from flowguard.config import PolicySettings, get_settings
from flowguard.core.schemas import (
    Contract,
    DynamicTargetDependency,
    Workflow,
    parse_port_spec,
)
from flowguard.exceptions import DerivationError

CLUSTER_SUFFIX = ".svc.cluster.local"
DNS_PORT = 53

# Scoped runtime permissions that never depend on the contract
STATIC_DENO_FLAGS = (
    "--allow-read=/app",
    "--allow-write=/tmp",
    "--allow-env=DENO_DIR,HOME",
)


class EgressRule(BaseModel):
    """A single egress destination. Port 0 means any port."""

    model_config = ConfigDict(frozen=True)

    host: str
    port: int
    protocol: Literal["TCP", "UDP", "SCTP"] = "TCP"

    @property
    def is_dns(self) -> bool:
        return self.port == DNS_PORT

    @property
    def is_cluster_internal(self) -> bool:
        return self.host.endswith(CLUSTER_SUFFIX)

    @property
    def is_cidr(self) -> bool:
        return "/" in self.host

    @property
    def endpoint(self) -> str:
        """``host:port``, or just the host when any port is allowed."""
        return f"{self.host}:{self.port}" if self.port else self.host


class IngressRule(BaseModel):
    """A single ingress source.

    ``from_labels=None`` admits any pod in the namespace; a dict restricts
    the source to pods carrying those labels.
    """

    model_config = ConfigDict(frozen=True)

    port: int
    protocol: Literal["TCP", "UDP", "SCTP"] = "TCP"
    from_labels: dict[str, str] | None = None
    from_namespace_labels: dict[str, str] | None = None


def derive_secrets(contract: Contract | None) -> list[str]:
    """Return the sorted, deduplicated ``service.key`` secrets the contract needs."""
    if contract is None:
        return []

    secrets = {
        dep.auth.secret
        for dep in contract.dependencies.values()
        if dep.auth is not None and dep.auth.secret and not dep.is_dynamic
    }
    return sorted(secrets)


def derive_egress_rules(
    contract: Contract | None, settings: PolicySettings | None = None
) -> list[EgressRule]:
    """Derive egress rules from contract dependencies.

    The two DNS rules (UDP and TCP 53) always come first. Module (jsr/npm)
    dependencies produce nothing here: their traffic goes through the
    module proxy. The remaining rules are sorted by (host, port, protocol).
    """
    settings = settings or get_settings()
    dns = [
        EgressRule(host=settings.dns_host, port=DNS_PORT, protocol="UDP"),
        EgressRule(host=settings.dns_host, port=DNS_PORT, protocol="TCP"),
    ]
    if contract is None:
        return dns

    rules: list[EgressRule] = []
    for dep in contract.dependencies.values():
        if isinstance(dep, DynamicTargetDependency):
            if not dep.cidr:
                continue
            for port_spec in dep.dyn_ports:
                port, protocol = parse_port_spec(port_spec)
                if port > 0:
                    rules.append(EgressRule(host=dep.cidr, port=port, protocol=protocol))
            continue

        if dep.is_module or not dep.host:
            continue

        port = dep.resolved_port
        if port:
            rules.append(EgressRule(host=dep.host, port=port, protocol="TCP"))

    override = contract.network_policy_override
    if override is not None:
        for entry in override.additional_egress:
            if not entry.ports:
                rules.append(EgressRule(host=entry.to_cidr, port=0, protocol="TCP"))
                continue
            for port_spec in entry.ports:
                port, protocol = parse_port_spec(port_spec)
                if port > 0:
                    rules.append(EgressRule(host=entry.to_cidr, port=port, protocol=protocol))

    rules.sort(key=lambda rule: (rule.host, rule.port, rule.protocol))
    return dns + rules


def derive_ingress_rules(
    workflow: Workflow, settings: PolicySettings | None = None
) -> list[IngressRule]:
    """Derive the single trigger ingress rule.

    Any webhook trigger opens the service port to the whole namespace,
    since externally routed traffic carries no pod labels. Otherwise only
    trigger pods (``<domain>/role: trigger``) may call the service.
    """
    settings = settings or get_settings()
    if not workflow.triggers:
        return []

    if workflow.has_trigger("webhook"):
        return [IngressRule(port=settings.service_port, protocol="TCP")]

    return [
        IngressRule(
            port=settings.service_port,
            protocol="TCP",
            from_labels={settings.role_label: "trigger"},
        )
    ]


def derive_deno_flags(
    contract: Contract | None,
    module_proxy_host: str = "",
    settings: PolicySettings | None = None,
) -> list[str] | None:
    """Derive the runtime's network permission flags.

    Returns None when there is no contract or it declares no dependencies,
    so the caller keeps the image's default permissions. A dynamic-target
    dependency forces the broad ``--allow-net``; otherwise the allow-list is
    the service's own listen address, each fixed host sorted by host, and
    the module proxy.

    Raises:
        DerivationError: If no module proxy host is configured
    """
    if contract is None or not contract.dependencies:
        return None

    settings = settings or get_settings()
    proxy = module_proxy_host or settings.module_proxy_host
    if not proxy:
        raise DerivationError("module proxy host is not configured")
    deps = contract.dependencies.values()

    if any(dep.is_dynamic for dep in deps):
        net_flag = "--allow-net"
    else:
        hosts: set[str] = set()
        for dep in deps:
            if dep.is_module or not dep.host:
                continue
            port = dep.resolved_port
            hosts.add(f"{dep.host}:{port}" if port else dep.host)

        allowed = [f"0.0.0.0:{settings.service_port}"]
        allowed.extend(sorted(hosts, key=lambda entry: (entry.split(":")[0], entry)))
        if proxy not in allowed:
            allowed.append(proxy)
        net_flag = "--allow-net=" + ",".join(allowed)

    return [net_flag, f"--allow-import={proxy}", *STATIC_DENO_FLAGS]


def with_default_ports(contract: Contract) -> Contract:
    """Return a copy of the contract with protocol default ports filled in.

    Explicit ports and protocols without a default are left alone. The
    given contract is not modified.
    """
    dependencies = {}
    for name, dep in contract.dependencies.items():
        if not dep.port and dep.resolved_port:
            dep = dep.model_copy(update={"port": dep.resolved_port})
        dependencies[name] = dep
    return contract.model_copy(update={"dependencies": dependencies})


def has_module_proxy_deps(workflow: Workflow | None) -> bool:
    """Check whether the workflow declares any jsr/npm dependency."""
    if workflow is None or workflow.contract is None:
        return False
    return any(dep.is_module for dep in workflow.contract.dependencies.values())


def external_endpoints(rules: list[EgressRule], include_cidr: bool = True) -> list[str]:
    """Deduplicated ``host:port`` list of rules leaving the cluster.

    DNS and ``*.svc.cluster.local`` destinations are excluded; input order
    is kept. ``include_cidr=False`` also drops CIDR destinations, leaving
    only named hosts.
    """
    seen: dict[str, None] = {}
    for rule in rules:
        if rule.is_dns or rule.is_cluster_internal:
            continue
        if rule.is_cidr and not include_cidr:
            continue
        seen.setdefault(rule.endpoint, None)
    return list(seen)
