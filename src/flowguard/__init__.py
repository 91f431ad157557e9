"""flowguard - least-privilege network policy for workflow specs.

Parses workflow specs, derives egress/ingress and runtime permissions
from their contracts, renders NetworkPolicies and audits live drift.
"""

from flowguard.exceptions import (
    ConfigurationError,
    ContractMissingError,
    DerivationError,
    FlowguardError,
    SpecValidationError,
    SynthesisError,
    WorkflowError,
    WorkflowNotFoundError,
)

__version__ = "0.1.0"

__all__ = [
    # Base exception
    "FlowguardError",
    # Configuration
    "ConfigurationError",
    # Workflow
    "WorkflowError",
    "WorkflowNotFoundError",
    "SpecValidationError",
    "ContractMissingError",
    # Derivation / Synthesis
    "DerivationError",
    "SynthesisError",
]
