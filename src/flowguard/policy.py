"""NetworkPolicy synthesis from derived contract rules.

NetworkPolicy has no DNS-name selectors, so a fixed external host is
rendered as ``0.0.0.0/0`` minus the private ranges on the host's port,
and the literal host list is recorded in the intended-hosts annotation
for the drift auditor to read back.
"""

import logging
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict

from flowguard.config import PolicySettings, get_settings
from flowguard.core.schemas import Workflow
from flowguard.derive import (
    EgressRule,
    IngressRule,
    derive_egress_rules,
    derive_ingress_rules,
    external_endpoints,
)

logger = logging.getLogger(__name__)

API_VERSION = "networking.k8s.io/v1"
NAME_LABEL = "app.kubernetes.io/name"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
NAMESPACE_NAME_LABEL = "kubernetes.io/metadata.name"

PRIVATE_RANGES = ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16")


class PolicyDocument(BaseModel):
    """A rendered policy manifest ready for an apply mechanism."""

    model_config = ConfigDict(frozen=True)

    kind: str = "NetworkPolicy"
    name: str
    namespace: str
    manifest: dict[str, Any]

    @property
    def annotations(self) -> dict[str, str]:
        return dict(self.manifest.get("metadata", {}).get("annotations") or {})

    @property
    def policy_types(self) -> list[str]:
        return list(self.manifest["spec"].get("policyTypes", []))

    @property
    def ingress(self) -> list[dict[str, Any]]:
        return list(self.manifest["spec"].get("ingress", []))

    @property
    def egress(self) -> list[dict[str, Any]]:
        return list(self.manifest["spec"].get("egress", []))

    def to_yaml(self) -> str:
        """Render the manifest as YAML, keeping key order."""
        return yaml.safe_dump(self.manifest, sort_keys=False, default_flow_style=False)


def generate_network_policy(
    workflow: Workflow, namespace: str, settings: PolicySettings | None = None
) -> PolicyDocument | None:
    """Render the workflow's NetworkPolicy.

    Returns None for a workflow without a contract: there is nothing to
    scope. An empty contract still yields a DNS-only egress policy.
    """
    if workflow.contract is None:
        return None

    settings = settings or get_settings()
    egress_rules = derive_egress_rules(workflow.contract, settings)
    ingress_rules = list(derive_ingress_rules(workflow, settings))
    ingress_rules.append(control_plane_ingress_rule(settings))
    if workflow.has_trigger("webhook"):
        ingress_rules.append(gateway_ingress_rule(settings))

    name = f"{workflow.name}-netpol"
    metadata: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "labels": _workflow_labels(workflow),
    }
    # Named hosts only
    hosts = external_endpoints(egress_rules, include_cidr=False)
    if hosts:
        metadata["annotations"] = {settings.intended_hosts_annotation: ",".join(hosts)}

    manifest = {
        "apiVersion": API_VERSION,
        "kind": "NetworkPolicy",
        "metadata": metadata,
        "spec": {
            "podSelector": {"matchLabels": {NAME_LABEL: workflow.name}},
            "policyTypes": ["Ingress", "Egress"],
            "egress": [render_egress_rule(rule, settings) for rule in egress_rules],
            "ingress": [render_ingress_rule(rule) for rule in ingress_rules],
        },
    }

    logger.debug(
        "Rendered %s/%s: %d egress, %d ingress rules",
        namespace,
        name,
        len(egress_rules),
        len(ingress_rules),
    )
    return PolicyDocument(name=name, namespace=namespace, manifest=manifest)


def generate_trigger_network_policy(
    workflow: Workflow, namespace: str, settings: PolicySettings | None = None
) -> PolicyDocument | None:
    """Render the egress-only policy for cron trigger pods.

    Trigger pods only need DNS and the workflow's own service port. Returns
    None unless the workflow has a cron trigger.
    """
    if not workflow.has_trigger("cron"):
        return None

    settings = settings or get_settings()
    dns_rules = derive_egress_rules(None, settings)
    service_rule = {
        "to": [{"podSelector": {"matchLabels": {NAME_LABEL: workflow.name}}}],
        "ports": [{"protocol": "TCP", "port": settings.service_port}],
    }

    name = f"{workflow.name}-trigger-netpol"
    manifest = {
        "apiVersion": API_VERSION,
        "kind": "NetworkPolicy",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": _workflow_labels(workflow),
        },
        "spec": {
            "podSelector": {"matchLabels": {settings.role_label: "trigger"}},
            "policyTypes": ["Egress"],
            "egress": [render_egress_rule(rule, settings) for rule in dns_rules]
            + [service_rule],
        },
    }
    return PolicyDocument(name=name, namespace=namespace, manifest=manifest)


def control_plane_ingress_rule(settings: PolicySettings) -> IngressRule:
    """Ingress from the management pod, so runs and health checks always get through."""
    return IngressRule(
        port=settings.service_port,
        protocol="TCP",
        from_labels={NAME_LABEL: settings.management_pod_name},
        from_namespace_labels={NAMESPACE_NAME_LABEL: settings.management_namespace},
    )


def gateway_ingress_rule(settings: PolicySettings) -> IngressRule:
    """Ingress from the cluster ingress gateway, for webhook traffic."""
    return IngressRule(
        port=settings.service_port,
        protocol="TCP",
        from_namespace_labels={NAMESPACE_NAME_LABEL: settings.ingress_gateway_namespace},
    )


def render_egress_rule(rule: EgressRule, settings: PolicySettings) -> dict[str, Any]:
    """Render one egress rule.

    Four shapes:
    1. DNS: kube-dns pods in the DNS namespace
    2. ``*.svc.cluster.local``: the service's namespace
    3. CIDR (dynamic target or override): that block
    4. External host: any public address
    """
    if rule.is_dns and rule.host == settings.dns_host:
        dns_app, dns_namespace = settings.dns_host.split(".")[:2]
        peer: dict[str, Any] = {
            "podSelector": {"matchLabels": {"k8s-app": dns_app}},
            "namespaceSelector": {"matchLabels": {NAMESPACE_NAME_LABEL: dns_namespace}},
        }
    elif rule.is_cluster_internal:
        target_namespace = rule.host.split(".")[1]
        peer = {"namespaceSelector": {"matchLabels": {NAMESPACE_NAME_LABEL: target_namespace}}}
    elif rule.is_cidr:
        peer = {"ipBlock": {"cidr": rule.host}}
    else:
        peer = {"ipBlock": {"cidr": "0.0.0.0/0", "except": list(PRIVATE_RANGES)}}

    rendered: dict[str, Any] = {"to": [peer]}
    if rule.port:
        rendered["ports"] = [{"protocol": rule.protocol, "port": rule.port}]
    return rendered


def render_ingress_rule(rule: IngressRule) -> dict[str, Any]:
    """Render one ingress rule; no labels at all means any pod in the namespace."""
    peer: dict[str, Any] = {}
    if rule.from_labels is not None:
        peer["podSelector"] = {"matchLabels": dict(sorted(rule.from_labels.items()))}
    if rule.from_namespace_labels is not None:
        peer["namespaceSelector"] = {
            "matchLabels": dict(sorted(rule.from_namespace_labels.items()))
        }
    if not peer:
        peer = {"podSelector": {}}

    return {
        "from": [peer],
        "ports": [{"protocol": rule.protocol, "port": rule.port}],
    }


def _workflow_labels(workflow: Workflow) -> dict[str, str]:
    return {NAME_LABEL: workflow.name, MANAGED_BY_LABEL: "flowguard"}
