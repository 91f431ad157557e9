"""Policy settings with environment variable support.

Cluster-specific names (module proxy, management namespace, ingress
gateway) differ between installations, so they are loaded from
``FLOWGUARD_*`` environment variables instead of being hardcoded.

Example:
    ```bash
    export FLOWGUARD_NAMESPACE=workflows
    export FLOWGUARD_MODULE_PROXY_HOST=esm-sh.platform.svc.cluster.local:8080
    ```

    ```python
    settings = PolicySettings()  # Loads from env vars
    ```
"""

from functools import lru_cache

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from flowguard.exceptions import ConfigurationError


class PolicySettings(BaseSettings):
    """Deployment context used by derivation, synthesis and drift auditing."""

    namespace: str = Field(
        default="",
        description="Fallback namespace when neither caller nor workflow sets one",
    )
    module_proxy_host: str = Field(
        default="esm-sh.flowguard-system.svc.cluster.local:8080",
        description="host:port of the in-cluster module-resolution proxy",
    )
    management_namespace: str = Field(
        default="flowguard-system",
        description="Namespace of the control plane that runs and health-checks workflows",
    )
    management_pod_name: str = Field(
        default="flowguard-mcp",
        description="app.kubernetes.io/name of the control-plane pod",
    )
    ingress_gateway_namespace: str = Field(
        default="istio-system",
        description="Namespace of the cluster ingress gateway (webhook traffic)",
    )
    service_port: int = Field(
        default=8080,
        description="Port the workflow service listens on",
    )
    dns_host: str = Field(
        default="kube-dns.kube-system.svc.cluster.local",
        description="Cluster DNS service",
    )
    label_domain: str = Field(
        default="flowguard.dev",
        description="Prefix for flowguard-owned labels and annotations",
    )

    model_config = SettingsConfigDict(
        env_prefix="FLOWGUARD_",
        case_sensitive=False,
    )

    @field_validator("service_port")
    @classmethod
    def _check_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError(f"service_port must be in 1..65535, got {value}")
        return value

    @property
    def role_label(self) -> str:
        """Label key marking trigger pods."""
        return f"{self.label_domain}/role"

    @property
    def intended_hosts_annotation(self) -> str:
        """Annotation key holding the comma-joined intended egress hosts."""
        return f"{self.label_domain}/intended-hosts"


@lru_cache(maxsize=1)
def get_settings() -> PolicySettings:
    """Return the process-wide settings, loaded once from the environment.

    Raises:
        ConfigurationError: If a FLOWGUARD_* variable holds an invalid value
    """
    try:
        return PolicySettings()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid flowguard settings: {e}") from e
