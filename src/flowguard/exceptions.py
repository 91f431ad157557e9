"""Flowguard exception hierarchy.

Provides a unified exception hierarchy for the policy engine.
This enables:
- Programmatic error handling in library usage
- Clear distinction between spec problems and caller mistakes
- Human-readable messages that can be surfaced verbatim

Usage:
    from flowguard.exceptions import SpecValidationError, ContractMissingError

    try:
        workflow = load_workflow(workflow_dir)
    except SpecValidationError as e:
        for error in e.errors:
            print(f"  - {error}")
    except FlowguardError as e:
        print(f"flowguard error: {e}")
"""


class FlowguardError(Exception):
    """Base exception for all flowguard errors.

    All flowguard-specific exceptions inherit from this class, allowing
    callers to catch all of them with a single except clause.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# Configuration Errors


class ConfigurationError(FlowguardError):
    """Error in flowguard configuration.

    Raised when settings are invalid or contain incompatible values.
    """

    pass


# Workflow Errors


class WorkflowError(FlowguardError):
    """Base class for workflow-related errors."""

    pass


class WorkflowNotFoundError(WorkflowError):
    """Workflow specification not found.

    Raised when a workflow directory has no workflow.yaml.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Workflow spec not found: {path}")


class SpecValidationError(WorkflowError):
    """Workflow specification failed validation.

    Carries every accumulated validation error, not just the first.
    """

    def __init__(self, errors: list[str], source: str | None = None) -> None:
        self.errors = list(errors)
        self.source = source
        header = f"workflow spec has {len(self.errors)} validation error(s)"
        if source:
            header = f"{source}: {header}"
        super().__init__(header + ":\n  - " + "\n  - ".join(self.errors))


class ContractMissingError(WorkflowError):
    """Workflow has no contract section.

    Raised by drift operations, which need a declared contract to compare against.
    """

    def __init__(self, workflow_name: str, action: str = "audit") -> None:
        self.workflow_name = workflow_name
        self.action = action
        super().__init__(f"workflow '{workflow_name}' has no contract - nothing to {action}")


# Derivation / Synthesis Errors


class DerivationError(FlowguardError):
    """Derivation was handed input that never passed validation.

    Derivation is total over valid contracts, so this signals a caller bug.
    """

    pass


class SynthesisError(FlowguardError):
    """A policy document could not be rendered."""

    pass
