"""Pydantic schemas for flowguard workflow specifications.

A workflow is a DAG of nodes plus an optional contract declaring every
external dependency it talks to. All models are frozen: the parser builds
them once and the derivation engine only ever reads them.
"""

from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

DYNAMIC_TARGET = "dynamic-target"

# Protocols with a well-known port. Blob and module protocols have none.
DEFAULT_PORTS: dict[str, int] = {
    "https": 443,
    "postgresql": 5432,
    "nats": 4222,
}

KNOWN_PROTOCOLS = ("https", "postgresql", "nats", "blob", "jsr", "npm")

MODULE_PROTOCOLS = frozenset({"jsr", "npm"})

TRANSPORT_PROTOCOLS = frozenset({"TCP", "UDP", "SCTP"})


# Triggers


class ManualTrigger(BaseModel):
    """Run on demand."""

    model_config = ConfigDict(frozen=True)

    type: Literal["manual"] = "manual"
    name: str | None = None


class CronTrigger(BaseModel):
    """Run on a cron schedule."""

    model_config = ConfigDict(frozen=True)

    type: Literal["cron"] = "cron"
    name: str | None = None
    schedule: str


class WebhookTrigger(BaseModel):
    """Run when an external caller hits an HTTP path."""

    model_config = ConfigDict(frozen=True)

    type: Literal["webhook"] = "webhook"
    name: str | None = None
    path: str


class QueueTrigger(BaseModel):
    """Run for each message on a queue subject."""

    model_config = ConfigDict(frozen=True)

    type: Literal["queue"] = "queue"
    name: str | None = None
    subject: str


Trigger = Annotated[
    Union[ManualTrigger, CronTrigger, WebhookTrigger, QueueTrigger],
    Field(discriminator="type"),
]

TRIGGER_TYPES = ("manual", "cron", "webhook", "queue")


# Nodes and edges


class NodeSpec(BaseModel):
    """A single execution step."""

    model_config = ConfigDict(frozen=True)

    path: str
    capabilities: dict[str, str] = Field(default_factory=dict)


class Edge(BaseModel):
    """Directed edge between two nodes."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_: str = Field(alias="from")
    to: str


# Contract


class DependencyAuth(BaseModel):
    """Authentication for a dependency; secret is a ``service.key`` reference."""

    model_config = ConfigDict(frozen=True)

    type: str
    secret: str


class BaseDependency(BaseModel):
    """Fields shared by every dependency variant.

    Unknown keys (``sslMode``, ``connectionTimeout``, ...) are kept as
    extensions so newer contract fields survive a parse.
    """

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    default_port: ClassVar[int | None] = None

    protocol: str
    type: str | None = None
    host: str = ""
    port: int | None = None
    auth: DependencyAuth | None = None

    @property
    def resolved_port(self) -> int | None:
        """Explicit port, else the protocol default, else None."""
        if self.port:
            return self.port
        return self.default_port

    @property
    def is_dynamic(self) -> bool:
        return False

    @property
    def is_module(self) -> bool:
        return False

    @property
    def extensions(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class HttpsDependency(BaseDependency):
    default_port: ClassVar[int | None] = DEFAULT_PORTS["https"]

    protocol: Literal["https"] = "https"
    host: str


class PostgresDependency(BaseDependency):
    default_port: ClassVar[int | None] = DEFAULT_PORTS["postgresql"]

    protocol: Literal["postgresql"] = "postgresql"
    host: str
    database: str
    user: str


class NatsDependency(BaseDependency):
    default_port: ClassVar[int | None] = DEFAULT_PORTS["nats"]

    protocol: Literal["nats"] = "nats"
    host: str
    subject: str


class BlobDependency(BaseDependency):
    protocol: Literal["blob"] = "blob"
    host: str
    container: str


class ModuleDependency(BaseDependency):
    """A jsr/npm package; host holds the package specifier (``@db/postgres``)."""

    protocol: Literal["jsr", "npm"]
    host: str
    version: str | None = None

    @property
    def is_module(self) -> bool:
        return True


class DynamicTargetDependency(BaseDependency):
    """Destinations only known at runtime, expressed as a CIDR plus port specs."""

    type: Literal["dynamic-target"] = DYNAMIC_TARGET
    cidr: str = ""
    dyn_ports: list[str] = Field(default_factory=list, alias="dynPorts")

    @field_validator("dyn_ports", mode="before")
    @classmethod
    def _coerce_ports(cls, value: Any) -> Any:
        return _port_specs_as_strings(value)

    @property
    def resolved_port(self) -> int | None:
        return None

    @property
    def is_dynamic(self) -> bool:
        return True


class GenericDependency(BaseDependency):
    """Dependency with a protocol this version does not know about."""

    pass


Dependency = Union[
    HttpsDependency,
    PostgresDependency,
    NatsDependency,
    BlobDependency,
    ModuleDependency,
    DynamicTargetDependency,
    GenericDependency,
]

_PROTOCOL_VARIANTS: dict[str, type[BaseDependency]] = {
    "https": HttpsDependency,
    "postgresql": PostgresDependency,
    "nats": NatsDependency,
    "blob": BlobDependency,
    "jsr": ModuleDependency,
    "npm": ModuleDependency,
}


def dependency_variant(data: dict[str, Any]) -> type[BaseDependency]:
    """Pick the dependency class for a raw mapping: ``type`` first, then ``protocol``."""
    if data.get("type") == DYNAMIC_TARGET:
        return DynamicTargetDependency
    return _PROTOCOL_VARIANTS.get(str(data.get("protocol", "")), GenericDependency)


def build_dependency(data: dict[str, Any]) -> BaseDependency:
    """Build the matching dependency variant from a raw mapping."""
    return dependency_variant(data).model_validate(data)


class EgressOverride(BaseModel):
    """Extra CIDR egress declared by hand."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    to_cidr: str = Field(alias="toCIDR")
    ports: list[str] = Field(default_factory=list)
    reason: str = ""

    @field_validator("ports", mode="before")
    @classmethod
    def _coerce_ports(cls, value: Any) -> Any:
        return _port_specs_as_strings(value)


class NetworkPolicyOverride(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    additional_egress: list[EgressOverride] = Field(
        default_factory=list, alias="additionalEgress"
    )


class Contract(BaseModel):
    """Declared external dependencies and policy overrides of a workflow."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    version: str = "1"
    dependencies: dict[str, Dependency] = Field(default_factory=dict)
    network_policy_override: NetworkPolicyOverride | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "network_policy_override", "networkPolicyOverride", "networkPolicy"
        ),
    )
    extensions: dict[str, Any] = Field(default_factory=dict)

    @field_validator("dependencies", mode="before")
    @classmethod
    def _build_variants(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        return {
            name: build_dependency(dep) if isinstance(dep, dict) else dep
            for name, dep in value.items()
        }


# Workflow


class WorkflowConfig(BaseModel):
    """Runtime settings; unknown keys are kept in ``extras``."""

    model_config = ConfigDict(frozen=True)

    timeout: str | None = None
    retries: int = 0
    extras: dict[str, Any] = Field(default_factory=dict)

    def to_map(self) -> dict[str, Any]:
        """Flat map of extras plus non-zero typed fields."""
        result = dict(self.extras)
        if self.timeout:
            result["timeout"] = self.timeout
        if self.retries:
            result["retries"] = self.retries
        return result


class DeploymentConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    namespace: str | None = None


class Workflow(BaseModel):
    """Complete workflow specification."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    description: str = ""
    triggers: list[Trigger] = Field(default_factory=list)
    nodes: dict[str, NodeSpec] = Field(default_factory=dict)
    edges: list[Edge] = Field(default_factory=list)
    config: WorkflowConfig = Field(default_factory=WorkflowConfig)
    deployment: DeploymentConfig = Field(default_factory=DeploymentConfig)
    contract: Contract | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def has_trigger(self, kind: str) -> bool:
        """Check whether any trigger is of the given kind."""
        return any(trigger.type == kind for trigger in self.triggers)


# Helpers


def parse_port_spec(spec: str) -> tuple[int, str]:
    """Parse a ``port[/protocol]`` string such as ``443/TCP``.

    Protocol defaults to TCP. Returns ``(0, "")`` for anything invalid.
    """
    port_part, _, proto_part = str(spec).strip().partition("/")
    try:
        port = int(port_part)
    except ValueError:
        return 0, ""
    if not 0 < port < 65536:
        return 0, ""
    protocol = proto_part.strip().upper() or "TCP"
    if protocol not in TRANSPORT_PROTOCOLS:
        return 0, ""
    return port, protocol


def _port_specs_as_strings(value: Any) -> Any:
    """Turn bare YAML integers (``[443]``) into port-spec strings."""
    if not isinstance(value, list):
        return value
    return [
        str(item) if isinstance(item, int) and not isinstance(item, bool) else item
        for item in value
    ]


def secret_service_name(secret_ref: str) -> str:
    """Service part of a ``service.key`` reference (empty if there is no dot)."""
    service, sep, _ = secret_ref.partition(".")
    return service if sep else ""


def secret_key_name(secret_ref: str) -> str:
    """Key part of a ``service.key`` reference (empty if there is no dot)."""
    _, sep, key = secret_ref.partition(".")
    return key if sep else ""
