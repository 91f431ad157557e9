"""Workflow spec parser and validator.

Validates workflow structure (name, version, triggers, nodes, edges),
DAG acyclicity, and the contract's per-protocol dependency fields.
Every violation is collected; a usable Workflow is only returned when
there are none.
"""

import ipaddress
import logging
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console

from flowguard.core.schemas import (
    DYNAMIC_TARGET,
    KNOWN_PROTOCOLS,
    TRIGGER_TYPES,
    Workflow,
    parse_port_spec,
)
from flowguard.exceptions import SpecValidationError, WorkflowNotFoundError

logger = logging.getLogger(__name__)

KEBAB_RE = re.compile(r"^[a-z][a-z0-9]*(-[a-z0-9]+)*$")
IDENT_RE = re.compile(r"^[a-z][a-z0-9_-]*$")
VERSION_RE = re.compile(r"^[0-9]+\.[0-9]+$")
SECRET_REF_RE = re.compile(r"^[a-z][a-z0-9_-]*\.[a-z][a-z0-9_-]*$")

SPEC_FILENAME = "workflow.yaml"

# Fields each protocol must declare (dynamic-target deps are checked separately)
REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "https": ("host",),
    "postgresql": ("host", "database", "user"),
    "nats": ("host", "subject"),
    "blob": ("host", "container"),
    "jsr": ("host",),
    "npm": ("host",),
}

TRIGGER_REQUIRED_FIELD = {
    "cron": "schedule",
    "webhook": "path",
    "queue": "subject",
}

CONTRACT_KEYS = ("version", "dependencies", "networkPolicyOverride", "networkPolicy")
CONFIG_KEYS = ("timeout", "retries")


class ValidationResult(BaseModel):
    """Result of workflow spec validation.

    Attributes:
        success: Whether validation passed
        errors: List of errors that must be fixed
        warnings: List of warnings that should be addressed
        suggestions: List of optional improvements
        workflow: Parsed workflow, only set when validation passed
    """

    success: bool = Field(..., description="Whether validation passed")
    errors: list[str] = Field(default_factory=list, description="Errors that must be fixed")
    warnings: list[str] = Field(
        default_factory=list, description="Warnings that should be addressed"
    )
    suggestions: list[str] = Field(default_factory=list, description="Optional improvements")
    workflow: Workflow | None = Field(default=None, description="Parsed workflow")

    def format(self) -> str:
        """Format validation result for display with Rich.

        Returns:
            Formatted string suitable for Rich console output
        """
        workflow = self.workflow
        if workflow is not None:
            lines = [
                f"[green]✓[/green] Validation passed: [bold]{workflow.name}[/bold] v{workflow.version}"
            ]
            contract = (
                f"{len(workflow.contract.dependencies)} contract dependencies"
                if workflow.contract is not None
                else "no contract"
            )
            lines.append(
                f"  {len(workflow.nodes)} node(s), {len(workflow.triggers)} trigger(s), {contract}"
            )
        elif self.success:
            lines = ["[green]✓[/green] Validation passed"]
        else:
            lines = [f"[red]✗[/red] Validation failed with {len(self.errors)} error(s)"]

        sections = (
            ("red", "Errors", self.errors),
            ("yellow", "Warnings", self.warnings),
            ("blue", "Suggestions", self.suggestions),
        )
        for color, title, entries in sections:
            if entries:
                lines.append(f"\n[{color} bold]{title}:[/{color} bold]")
                lines.extend(f"  [{color}]•[/{color}] {entry}" for entry in entries)

        return "\n".join(lines)

    def print(self) -> None:
        """Print formatted validation result to console."""
        console = Console()
        console.print(self.format())


class SpecValidator:
    """Validates a workflow spec document.

    Checks:
    - name is kebab-case, version is major.minor
    - triggers carry their kind-specific field, names are unique identifiers
    - nodes have identifier names and a path
    - edges reference declared nodes, no self-loops, no cycles
    - contract dependencies declare the fields their protocol needs
    """

    def validate(self, document: str | bytes) -> ValidationResult:
        """Parse and validate a spec document.

        Args:
            document: Raw YAML text of workflow.yaml

        Returns:
            ValidationResult; ``workflow`` is set only when there are no errors
        """
        try:
            data = yaml.safe_load(document)
        except yaml.YAMLError as e:
            return ValidationResult(success=False, errors=[f"YAML parse error: {e}"])

        if not isinstance(data, dict):
            return ValidationResult(
                success=False, errors=["workflow spec must be a YAML mapping"]
            )

        errors: list[str] = []
        warnings: list[str] = []
        suggestions: list[str] = []

        errors.extend(self._validate_identity(data))
        errors.extend(self._validate_triggers(data.get("triggers")))

        nodes = data.get("nodes")
        errors.extend(self._validate_nodes(nodes))

        edges = data.get("edges") or []
        node_names = set(nodes) if isinstance(nodes, dict) else set()
        edge_errors, edge_pairs = self._validate_edges(edges, node_names)
        errors.extend(edge_errors)
        errors.extend(find_cycles(sorted(node_names, key=str), edge_pairs))

        contract = data.get("contract")
        if contract is not None:
            contract_errors, contract_warnings = self._validate_contract(contract)
            errors.extend(contract_errors)
            warnings.extend(contract_warnings)
        else:
            suggestions.append(
                "Declare a contract to generate a least-privilege NetworkPolicy"
            )

        if not data.get("description"):
            suggestions.append("Add a description to the workflow")

        if errors:
            return ValidationResult(
                success=False, errors=errors, warnings=warnings, suggestions=suggestions
            )

        try:
            workflow = Workflow.model_validate(self._normalize(data))
        except PydanticValidationError as e:
            errors = [_format_pydantic_error(err) for err in e.errors()]
            return ValidationResult(
                success=False, errors=errors, warnings=warnings, suggestions=suggestions
            )

        return ValidationResult(
            success=True, warnings=warnings, suggestions=suggestions, workflow=workflow
        )

    def _validate_identity(self, data: dict[str, Any]) -> list[str]:
        """Validate name and version."""
        errors: list[str] = []

        name = data.get("name")
        if name is None or name == "":
            errors.append("name is required")
        elif not isinstance(name, str) or not KEBAB_RE.match(name):
            errors.append(f'name must be kebab-case, got: "{name}"')

        version = data.get("version")
        if version is None or version == "":
            errors.append("version is required")
        elif not VERSION_RE.match(str(version)):
            errors.append(f'version must be semver (e.g., 1.0), got: "{version}"')

        return errors

    def _validate_triggers(self, triggers: Any) -> list[str]:
        """Validate trigger kinds, required fields and names."""
        errors: list[str] = []

        if not triggers:
            return ["at least one trigger is required"]
        if not isinstance(triggers, list):
            return ["triggers must be a list"]

        seen_names: set[str] = set()
        for i, trigger in enumerate(triggers):
            if not isinstance(trigger, dict):
                errors.append(f"trigger[{i}]: must be a mapping")
                continue

            kind = trigger.get("type")
            if kind not in TRIGGER_TYPES:
                errors.append(
                    f'trigger[{i}]: invalid type "{kind}" '
                    "(must be manual, cron, webhook, or queue)"
                )
            required = TRIGGER_REQUIRED_FIELD.get(str(kind))
            if required and _is_blank(trigger.get(required)):
                errors.append(f"trigger[{i}]: {kind} trigger requires {required}")

            name = trigger.get("name")
            if name is not None and name != "":
                if not isinstance(name, str) or not IDENT_RE.match(name):
                    errors.append(
                        f'trigger[{i}]: name must match [a-z][a-z0-9_-]*, got: "{name}"'
                    )
                    continue
                if name in seen_names:
                    errors.append(f'trigger[{i}]: duplicate trigger name "{name}"')
                seen_names.add(name)

        return errors

    def _validate_nodes(self, nodes: Any) -> list[str]:
        """Validate node names and paths."""
        if not nodes:
            return ["at least one node is required"]
        if not isinstance(nodes, dict):
            return ["nodes must be a mapping of node name to node spec"]

        errors: list[str] = []
        for name, node in nodes.items():
            if not isinstance(name, str) or not IDENT_RE.match(name):
                errors.append(f'node "{name}": name must match [a-z][a-z0-9_-]*')
            if not isinstance(node, dict) or _is_blank(node.get("path")):
                errors.append(f'node "{name}": path is required')
        return errors

    def _validate_edges(
        self, edges: Any, node_names: set[str]
    ) -> tuple[list[str], list[tuple[str, str]]]:
        """Validate edge references and self-loops.

        Returns:
            Tuple of (errors, edges usable for cycle detection)
        """
        errors: list[str] = []
        pairs: list[tuple[str, str]] = []

        if not isinstance(edges, list):
            return ["edges must be a list"], pairs

        for i, edge in enumerate(edges):
            if not isinstance(edge, dict):
                errors.append(f"edge[{i}]: must be a mapping with from and to")
                continue
            src, dst = edge.get("from"), edge.get("to")
            if not isinstance(src, str) or not isinstance(dst, str):
                errors.append(f"edge[{i}]: from and to must be node names")
                continue
            valid = True
            if src not in node_names:
                errors.append(f'edge[{i}]: from node "{src}" not defined')
                valid = False
            if dst not in node_names:
                errors.append(f'edge[{i}]: to node "{dst}" not defined')
                valid = False
            if src == dst:
                errors.append(f'edge[{i}]: self-loop on "{src}"')
                valid = False
            if valid:
                pairs.append((src, dst))

        return errors, pairs

    def _validate_contract(self, contract: Any) -> tuple[list[str], list[str]]:
        """Validate the contract section.

        Returns:
            Tuple of (errors, warnings)
        """
        errors: list[str] = []
        warnings: list[str] = []

        if not isinstance(contract, dict):
            return ["contract must be a mapping"], warnings

        version = contract.get("version")
        if version is not None and str(version) != "1":
            errors.append(f'contract.version must be "1", got: "{version}"')

        dependencies = contract.get("dependencies") or {}
        if not isinstance(dependencies, dict):
            errors.append("contract.dependencies must be a mapping")
            dependencies = {}

        for name, dep in dependencies.items():
            dep_errors, dep_warnings = self._validate_dependency(str(name), dep)
            errors.extend(dep_errors)
            warnings.extend(dep_warnings)

        override_key = (
            "networkPolicyOverride" if "networkPolicyOverride" in contract else "networkPolicy"
        )
        override = contract.get(override_key)
        if override is not None:
            errors.extend(self._validate_override(f"contract.{override_key}", override))

        return errors, warnings

    def _validate_dependency(self, name: str, dep: Any) -> tuple[list[str], list[str]]:
        """Validate a single dependency, dispatching on type then protocol."""
        errors: list[str] = []
        warnings: list[str] = []
        prefix = f'contract.dependencies["{name}"]'

        if not IDENT_RE.match(name):
            errors.append(f"{prefix}: name must match [a-z][a-z0-9_-]*")

        if not isinstance(dep, dict):
            errors.append(f"{prefix}: must be a mapping")
            return errors, warnings

        protocol = dep.get("protocol")
        if _is_blank(protocol):
            errors.append(f"{prefix}: protocol is required")
            return errors, warnings
        if not isinstance(protocol, str):
            errors.append(f"{prefix}: protocol must be a string")
            return errors, warnings

        if protocol not in KNOWN_PROTOCOLS:
            message = (
                f'{prefix}: unknown protocol "{protocol}" '
                f"(known protocols: {', '.join(KNOWN_PROTOCOLS)})"
            )
            logger.warning(message)
            warnings.append(message)

        if dep.get("type") == DYNAMIC_TARGET:
            errors.extend(self._validate_dynamic_target(prefix, dep))
        else:
            for field in REQUIRED_FIELDS.get(protocol, ()):
                if _is_blank(dep.get(field)):
                    errors.append(f"{prefix}: {protocol} requires {field}")
            port = dep.get("port")
            if port is not None and not _is_valid_port(port):
                errors.append(
                    f'{prefix}: port must be an integer between 1 and 65535, got: "{port}"'
                )

        errors.extend(self._validate_auth(prefix, dep.get("auth")))
        return errors, warnings

    def _validate_dynamic_target(self, prefix: str, dep: dict[str, Any]) -> list[str]:
        errors: list[str] = []

        cidr = dep.get("cidr")
        if _is_blank(cidr):
            errors.append(f"{prefix}: dynamic-target requires cidr")
        elif not is_valid_cidr(str(cidr)):
            errors.append(f'{prefix}: invalid CIDR format "{cidr}"')

        dyn_ports = dep.get("dynPorts")
        if not dyn_ports:
            errors.append(f"{prefix}: dynamic-target requires dynPorts")
        elif not isinstance(dyn_ports, list):
            errors.append(f"{prefix}: dynPorts must be a list")
        else:
            for j, port_spec in enumerate(dyn_ports):
                port, _ = parse_port_spec(port_spec)
                if port <= 0:
                    errors.append(f'{prefix}.dynPorts[{j}]: invalid port spec "{port_spec}"')

        return errors

    def _validate_auth(self, prefix: str, auth: Any) -> list[str]:
        if auth is None:
            return []
        if not isinstance(auth, dict):
            return [f"{prefix}: auth must be a mapping with type and secret"]

        errors: list[str] = []
        if _is_blank(auth.get("type")):
            errors.append(f"{prefix}: auth.type is required when auth is present")
        secret = auth.get("secret")
        if _is_blank(secret):
            errors.append(f"{prefix}: auth.secret is required when auth is present")
        elif not SECRET_REF_RE.match(str(secret)):
            errors.append(
                f'{prefix}: auth.secret must be in "service.key" format, got: "{secret}"'
            )
        return errors

    def _validate_override(self, prefix: str, override: Any) -> list[str]:
        if not isinstance(override, dict):
            return [f"{prefix} must be a mapping"]

        entries = override.get("additionalEgress") or []
        if not isinstance(entries, list):
            return [f"{prefix}.additionalEgress must be a list"]

        errors: list[str] = []
        for i, entry in enumerate(entries):
            where = f"{prefix}.additionalEgress[{i}]"
            if not isinstance(entry, dict):
                errors.append(f"{where}: must be a mapping")
                continue
            cidr = entry.get("toCIDR")
            if _is_blank(cidr):
                errors.append(f"{where}: toCIDR is required")
            elif not is_valid_cidr(str(cidr)):
                errors.append(f'{where}: invalid CIDR format "{cidr}"')
            ports = entry.get("ports") or []
            if not isinstance(ports, list):
                errors.append(f"{where}.ports must be a list")
                continue
            for j, port_spec in enumerate(ports):
                port, _ = parse_port_spec(port_spec)
                if port <= 0:
                    errors.append(f'{where}.ports[{j}]: invalid port spec "{port_spec}"')
        return errors

    def _normalize(self, data: dict[str, Any]) -> dict[str, Any]:
        """Reshape a validated document into Workflow model input."""
        normalized: dict[str, Any] = {
            "name": data["name"],
            "version": str(data["version"]),
            "description": str(data.get("description") or ""),
            "triggers": data["triggers"],
            "nodes": data["nodes"],
            "edges": data.get("edges") or [],
            "metadata": data.get("metadata") or {},
        }

        config = data.get("config") or {}
        normalized["config"] = {
            **({"timeout": str(config["timeout"])} if config.get("timeout") is not None else {}),
            **({"retries": config["retries"]} if "retries" in config else {}),
            "extras": {k: v for k, v in config.items() if k not in CONFIG_KEYS},
        }

        deployment = data.get("deployment") or {}
        normalized["deployment"] = {"namespace": deployment.get("namespace")}

        contract = data.get("contract")
        if contract is not None:
            override = contract.get("networkPolicyOverride", contract.get("networkPolicy"))
            normalized["contract"] = {
                "version": str(contract.get("version") or "1"),
                "dependencies": contract.get("dependencies") or {},
                "network_policy_override": override,
                "extensions": {k: v for k, v in contract.items() if k not in CONTRACT_KEYS},
            }

        return normalized


def find_cycles(nodes: list[str], edges: list[tuple[str, str]]) -> list[str]:
    """Detect cycles with an iterative three-color DFS.

    A back-edge to a gray node is reported as ``cycle detected: u → v`` and
    the traversal from that root stops; remaining roots are still visited
    so independent cycles all get reported.

    Args:
        nodes: Node names, in the order roots should be tried
        edges: (from, to) pairs between declared nodes

    Returns:
        One message per detected cycle
    """
    white, gray, black = 0, 1, 2

    adjacency: dict[str, list[str]] = {name: [] for name in nodes}
    for src, dst in edges:
        adjacency.setdefault(src, []).append(dst)

    color = dict.fromkeys(adjacency, white)
    errors: list[str] = []

    for root in nodes:
        if color[root] != white:
            continue

        color[root] = gray
        stack = [(root, iter(adjacency[root]))]
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                color[node] = black
                stack.pop()
            elif color.get(child, black) == gray:
                errors.append(f"cycle detected: {node} → {child}")
                # Abandon this root; nodes on the path are done
                for path_node, _ in stack:
                    color[path_node] = black
                stack.clear()
            elif color.get(child, black) == white:
                color[child] = gray
                stack.append((child, iter(adjacency[child])))

    return errors


def is_valid_cidr(value: str) -> bool:
    """Check CIDR notation (an address with an explicit prefix length)."""
    if "/" not in value:
        return False
    try:
        ipaddress.ip_network(value, strict=False)
    except ValueError:
        return False
    return True


def validate_document(document: str | bytes) -> ValidationResult:
    """Validate a spec document, keeping warnings and suggestions."""
    return SpecValidator().validate(document)


def parse_workflow(document: str | bytes) -> tuple[Workflow | None, list[str]]:
    """Parse a spec document.

    Returns:
        ``(workflow, [])`` when valid, ``(None, errors)`` otherwise
    """
    result = validate_document(document)
    if not result.success:
        return None, result.errors
    return result.workflow, []


def load_workflow(workflow_dir: Path) -> Workflow:
    """Read and parse ``workflow.yaml`` from a workflow directory.

    Raises:
        WorkflowNotFoundError: If the spec file does not exist
        SpecValidationError: With every validation error found
    """
    spec_path = Path(workflow_dir) / SPEC_FILENAME
    if not spec_path.exists():
        raise WorkflowNotFoundError(str(spec_path))

    workflow, errors = parse_workflow(spec_path.read_bytes())
    if errors:
        raise SpecValidationError(errors, source=str(spec_path))
    assert workflow is not None
    return workflow


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _is_valid_port(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 < value < 65536


def _format_pydantic_error(error: dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg', 'invalid value')}"
