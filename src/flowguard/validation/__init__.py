"""Workflow spec parsing and validation.

Every violation in a document is collected and reported together; a
Workflow is only produced for a document with no errors.
"""

from flowguard.validation.validator import (
    SpecValidator,
    ValidationResult,
    find_cycles,
    load_workflow,
    parse_workflow,
    validate_document,
)

__all__ = [
    "SpecValidator",
    "ValidationResult",
    "find_cycles",
    "load_workflow",
    "parse_workflow",
    "validate_document",
]
