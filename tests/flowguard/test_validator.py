"""Tests for workflow spec parsing and validation."""

import logging
from pathlib import Path

import pytest

from flowguard.core.schemas import DynamicTargetDependency, GenericDependency
from flowguard.exceptions import SpecValidationError, WorkflowNotFoundError
from flowguard.validation import (
    ValidationResult,
    find_cycles,
    load_workflow,
    parse_workflow,
    validate_document,
)
from flowguard.validation.validator import is_valid_cidr

BASE = """
name: sample-flow
version: "1.0"
triggers:
  - type: manual
nodes:
  a:
    path: nodes/a.ts
"""


def with_contract(contract: str) -> str:
    """Append an indented contract block to the base document."""
    return BASE + "contract:\n" + contract


def test_parse_valid_workflow(cron_workflow) -> None:
    """Test that a complete document parses into a Workflow."""
    assert cron_workflow.name == "daily-sync"
    assert cron_workflow.version == "1.0"
    assert list(cron_workflow.nodes) == ["fetch", "store"]
    assert cron_workflow.edges[0].from_ == "fetch"
    assert cron_workflow.contract is not None
    assert cron_workflow.contract.version == "1"
    assert set(cron_workflow.contract.dependencies) == {"github", "postgres-driver"}


def test_parse_returns_none_with_errors() -> None:
    """Test that an invalid document yields no workflow."""
    workflow, errors = parse_workflow("name: Bad_Name\n")

    assert workflow is None
    assert errors


def test_errors_are_accumulated() -> None:
    """Test that every violation is reported, not just the first."""
    document = """
name: Not-Kebab
version: one
triggers:
  - type: cron
  - type: webhook
nodes:
  a:
    path: nodes/a.ts
edges:
  - from: a
    to: ghost
"""
    _, errors = parse_workflow(document)

    assert 'name must be kebab-case, got: "Not-Kebab"' in errors
    assert 'version must be semver (e.g., 1.0), got: "one"' in errors
    assert "trigger[0]: cron trigger requires schedule" in errors
    assert "trigger[1]: webhook trigger requires path" in errors
    assert 'edge[0]: to node "ghost" not defined' in errors


def test_missing_sections() -> None:
    """Test required top-level sections."""
    _, errors = parse_workflow("description: nothing else\n")

    assert "name is required" in errors
    assert "version is required" in errors
    assert "at least one trigger is required" in errors
    assert "at least one node is required" in errors


def test_queue_trigger_requires_subject() -> None:
    """Test queue trigger required field."""
    document = BASE.replace("  - type: manual", "  - type: queue")
    _, errors = parse_workflow(document)

    assert errors == ["trigger[0]: queue trigger requires subject"]


def test_unknown_trigger_type() -> None:
    """Test that unknown trigger kinds are rejected."""
    document = BASE.replace("  - type: manual", "  - type: email")
    _, errors = parse_workflow(document)

    assert errors == ['trigger[0]: invalid type "email" (must be manual, cron, webhook, or queue)']


def test_duplicate_and_invalid_trigger_names() -> None:
    """Test trigger name shape and uniqueness."""
    document = BASE.replace(
        "  - type: manual",
        "  - type: manual\n    name: go\n  - type: manual\n    name: go\n  - type: manual\n    name: Go!",
    )
    _, errors = parse_workflow(document)

    assert 'trigger[1]: duplicate trigger name "go"' in errors
    assert 'trigger[2]: name must match [a-z][a-z0-9_-]*, got: "Go!"' in errors


def test_node_requires_path() -> None:
    """Test node path and name checks."""
    document = BASE + "  B:\n    capabilities: {}\n"
    _, errors = parse_workflow(document)

    assert 'node "B": name must match [a-z][a-z0-9_-]*' in errors
    assert 'node "B": path is required' in errors


def test_self_loop_reported_once() -> None:
    """Test that self-loops are reported as such, not as cycles."""
    document = BASE + "edges:\n  - from: a\n    to: a\n"
    _, errors = parse_workflow(document)

    assert errors == ['edge[0]: self-loop on "a"']


def test_cycle_detected() -> None:
    """Test that a three-node cycle is rejected."""
    document = """
name: loop
version: "1.0"
triggers:
  - type: manual
nodes:
  a: {path: a.ts}
  b: {path: b.ts}
  c: {path: c.ts}
edges:
  - {from: a, to: b}
  - {from: b, to: c}
  - {from: c, to: a}
"""
    workflow, errors = parse_workflow(document)

    assert workflow is None
    assert errors == ["cycle detected: c → a"]


def test_find_cycles_acyclic_diamond() -> None:
    """Test that a diamond DAG has no cycles."""
    edges = [("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")]

    assert find_cycles(["a", "b", "c", "d"], edges) == []


def test_find_cycles_reports_independent_cycles() -> None:
    """Test that separate cycles are each reported."""
    edges = [("a", "b"), ("b", "a"), ("x", "y"), ("y", "x")]

    assert find_cycles(["a", "b", "x", "y"], edges) == [
        "cycle detected: b → a",
        "cycle detected: y → x",
    ]


def test_find_cycles_deep_chain() -> None:
    """Test that long chains do not hit recursion limits."""
    nodes = [f"n{i:05d}" for i in range(5000)]
    edges = list(zip(nodes, nodes[1:]))

    assert find_cycles(nodes, edges) == []


def test_contract_version_must_be_one() -> None:
    """Test the contract version check."""
    _, errors = parse_workflow(with_contract('  version: "2"\n'))

    assert errors == ['contract.version must be "1", got: "2"']


def test_contract_version_defaults_to_one() -> None:
    """Test that a contract without a version is version 1."""
    workflow, errors = parse_workflow(with_contract("  dependencies: {}\n"))

    assert errors == []
    assert workflow is not None
    assert workflow.contract is not None
    assert workflow.contract.version == "1"


def test_protocol_required_fields() -> None:
    """Test per-protocol required fields."""
    contract = """  dependencies:
    db:
      protocol: postgresql
      host: db.internal
    bus:
      protocol: nats
      host: nats.internal
    store:
      protocol: blob
      host: blob.internal
    web:
      protocol: https
    mod:
      protocol: npm
"""
    _, errors = parse_workflow(with_contract(contract))

    assert 'contract.dependencies["db"]: postgresql requires database' in errors
    assert 'contract.dependencies["db"]: postgresql requires user' in errors
    assert 'contract.dependencies["bus"]: nats requires subject' in errors
    assert 'contract.dependencies["store"]: blob requires container' in errors
    assert 'contract.dependencies["web"]: https requires host' in errors
    assert 'contract.dependencies["mod"]: npm requires host' in errors


def test_dependency_requires_protocol() -> None:
    """Test missing protocol."""
    _, errors = parse_workflow(with_contract("  dependencies:\n    x:\n      host: a.com\n"))

    assert errors == ['contract.dependencies["x"]: protocol is required']


def test_invalid_port() -> None:
    """Test port range validation."""
    contract = "  dependencies:\n    web:\n      protocol: https\n      host: a.com\n      port: 70000\n"
    _, errors = parse_workflow(with_contract(contract))

    assert errors == [
        'contract.dependencies["web"]: port must be an integer between 1 and 65535, got: "70000"'
    ]


def test_unknown_protocol_is_warning(caplog: pytest.LogCaptureFixture) -> None:
    """Test that unknown protocols warn but still parse."""
    contract = "  dependencies:\n    legacy:\n      protocol: ftp\n      host: files.example.com\n"

    with caplog.at_level(logging.WARNING, logger="flowguard.validation.validator"):
        result = validate_document(with_contract(contract))

    assert result.success is True
    assert len(result.warnings) == 1
    assert 'unknown protocol "ftp"' in result.warnings[0]
    assert 'unknown protocol "ftp"' in caplog.text
    assert result.workflow is not None
    assert result.workflow.contract is not None
    assert isinstance(result.workflow.contract.dependencies["legacy"], GenericDependency)


def test_dynamic_target_validation() -> None:
    """Test dynamic-target cidr and dynPorts checks."""
    contract = """  dependencies:
    scan:
      protocol: https
      type: dynamic-target
    peers:
      protocol: https
      type: dynamic-target
      cidr: not-a-cidr
      dynPorts: ["443/TCP", "nope"]
"""
    _, errors = parse_workflow(with_contract(contract))

    assert 'contract.dependencies["scan"]: dynamic-target requires cidr' in errors
    assert 'contract.dependencies["scan"]: dynamic-target requires dynPorts' in errors
    assert 'contract.dependencies["peers"]: invalid CIDR format "not-a-cidr"' in errors
    assert 'contract.dependencies["peers"].dynPorts[1]: invalid port spec "nope"' in errors


def test_dynamic_target_parses() -> None:
    """Test that a valid dynamic-target needs no host."""
    contract = """  dependencies:
    peers:
      protocol: https
      type: dynamic-target
      cidr: 10.20.0.0/16
      dynPorts: ["443", "8443/TCP"]
"""
    workflow, errors = parse_workflow(with_contract(contract))

    assert errors == []
    assert workflow is not None
    assert workflow.contract is not None
    dep = workflow.contract.dependencies["peers"]
    assert isinstance(dep, DynamicTargetDependency)
    assert dep.cidr == "10.20.0.0/16"


def test_auth_validation() -> None:
    """Test auth type and secret reference format."""
    contract = """  dependencies:
    a:
      protocol: https
      host: a.com
      auth:
        secret: a.token
    b:
      protocol: https
      host: b.com
      auth:
        type: bearer
        secret: NoDot
"""
    _, errors = parse_workflow(with_contract(contract))

    assert errors == [
        'contract.dependencies["a"]: auth.type is required when auth is present',
        'contract.dependencies["b"]: auth.secret must be in "service.key" format, got: "NoDot"',
    ]


def test_override_validation() -> None:
    """Test additionalEgress CIDR and port checks."""
    contract = """  networkPolicyOverride:
    additionalEgress:
      - toCIDR: 10.0.0.1
        ports: ["5432"]
      - toCIDR: 192.168.0.0/24
        ports: ["99999"]
"""
    _, errors = parse_workflow(with_contract(contract))

    assert errors == [
        'contract.networkPolicyOverride.additionalEgress[0]: invalid CIDR format "10.0.0.1"',
        'contract.networkPolicyOverride.additionalEgress[1].ports[0]: invalid port spec "99999"',
    ]


def test_contract_extensions_preserved() -> None:
    """Test that unknown contract keys survive as extensions."""
    workflow, errors = parse_workflow(with_contract("  x-owner: team-data\n"))

    assert errors == []
    assert workflow is not None
    assert workflow.contract is not None
    assert workflow.contract.extensions == {"x-owner": "team-data"}


def test_config_and_deployment(webhook_workflow) -> None:
    """Test optional config and deployment sections."""
    workflow, errors = parse_workflow(BASE + "config:\n  timeout: 300\n  memory: 256Mi\n")

    assert errors == []
    assert workflow is not None
    assert workflow.config.to_map() == {"memory": "256Mi", "timeout": "300"}
    assert webhook_workflow.deployment.namespace == "shop"


def test_yaml_parse_error() -> None:
    """Test malformed YAML."""
    _, errors = parse_workflow("name: [unclosed\n")

    assert len(errors) == 1
    assert errors[0].startswith("YAML parse error:")


def test_non_mapping_document() -> None:
    """Test a document that is not a mapping."""
    _, errors = parse_workflow("- just\n- a list\n")

    assert errors == ["workflow spec must be a YAML mapping"]


def test_suggestions_without_contract() -> None:
    """Test suggestions for a bare workflow."""
    result = validate_document(BASE)

    assert result.success is True
    assert "Declare a contract to generate a least-privilege NetworkPolicy" in result.suggestions
    assert "Add a description to the workflow" in result.suggestions


def test_validation_result_format() -> None:
    """Test ValidationResult.format() with errors and warnings."""
    result = ValidationResult(success=False, errors=["Error 1"], warnings=["Warning 1"])
    formatted = result.format()

    assert "Validation failed" in formatted
    assert "Error 1" in formatted
    assert "Warning 1" in formatted


@pytest.mark.parametrize(
    "value,expected",
    [
        ("10.0.0.0/8", True),
        ("10.1.2.3/32", True),
        ("2001:db8::/32", True),
        ("10.0.0.1", False),
        ("10.0.0.0/33", False),
        ("garbage/8", False),
    ],
)
def test_is_valid_cidr(value: str, expected: bool) -> None:
    """Test CIDR notation checks."""
    assert is_valid_cidr(value) is expected


def test_load_workflow(tmp_path: Path) -> None:
    """Test loading workflow.yaml from a directory."""
    (tmp_path / "workflow.yaml").write_text(BASE)

    workflow = load_workflow(tmp_path)

    assert workflow.name == "sample-flow"


def test_load_workflow_missing(tmp_path: Path) -> None:
    """Test loading from a directory without a spec."""
    with pytest.raises(WorkflowNotFoundError):
        load_workflow(tmp_path)


def test_load_workflow_invalid(tmp_path: Path) -> None:
    """Test that invalid specs raise with every error attached."""
    (tmp_path / "workflow.yaml").write_text("name: X\n")

    with pytest.raises(SpecValidationError) as exc_info:
        load_workflow(tmp_path)

    assert len(exc_info.value.errors) >= 4
    assert "name must be kebab-case" in str(exc_info.value)


def test_list_trigger_name_is_reported() -> None:
    """Test that a non-scalar trigger name becomes an error."""
    document = BASE.replace("  - type: manual", "  - type: manual\n    name: [x]")
    workflow, errors = parse_workflow(document)

    assert workflow is None
    assert errors == ["trigger[0]: name must match [a-z][a-z0-9_-]*, got: \"['x']\""]


def test_list_edge_endpoint_is_reported() -> None:
    """Test that non-scalar edge endpoints become errors."""
    document = BASE + "edges:\n  - from: [a]\n    to: a\n"
    workflow, errors = parse_workflow(document)

    assert workflow is None
    assert errors == ["edge[0]: from and to must be node names"]


def test_list_protocol_is_reported() -> None:
    """Test that a non-scalar protocol becomes an error."""
    contract = "  dependencies:\n    web:\n      protocol: [https]\n      host: a.com\n"
    workflow, errors = parse_workflow(with_contract(contract))

    assert workflow is None
    assert errors == ['contract.dependencies["web"]: protocol must be a string']


def test_unquoted_port_specs_parse() -> None:
    """Test that bare integer port specs are accepted."""
    contract = """  dependencies:
    scan:
      protocol: https
      type: dynamic-target
      cidr: 10.20.0.0/16
      dynPorts: [443, 8443/TCP]
  networkPolicyOverride:
    additionalEgress:
      - toCIDR: 172.20.0.0/16
        ports: [8443]
"""
    workflow, errors = parse_workflow(with_contract(contract))

    assert errors == []
    assert workflow is not None
    assert workflow.contract is not None
    dep = workflow.contract.dependencies["scan"]
    assert isinstance(dep, DynamicTargetDependency)
    assert dep.dyn_ports == ["443", "8443/TCP"]
    override = workflow.contract.network_policy_override
    assert override is not None
    assert override.additional_egress[0].ports == ["8443"]


def test_override_ports_must_be_list() -> None:
    """Test that a scalar ports value is rejected."""
    contract = "  networkPolicyOverride:\n    additionalEgress:\n      - toCIDR: 10.0.0.0/8\n        ports: 443\n"
    _, errors = parse_workflow(with_contract(contract))

    assert errors == ["contract.networkPolicyOverride.additionalEgress[0].ports must be a list"]


def test_validation_result_format_names_workflow() -> None:
    """Test that a passing result summarises the parsed workflow."""
    formatted = validate_document(BASE).format()

    assert "Validation passed: [bold]sample-flow[/bold] v1.0" in formatted
    assert "1 node(s), 1 trigger(s), no contract" in formatted


def test_validation_result_format_counts_errors() -> None:
    """Test that a failing result states how many errors were found."""
    result = ValidationResult(success=False, errors=["Error 1", "Error 2"])

    assert "Validation failed with 2 error(s)" in result.format()
