"""Core data models for flowguard workflow specifications."""

from flowguard.core.schemas import (
    Contract,
    Dependency,
    Edge,
    NodeSpec,
    Trigger,
    Workflow,
    build_dependency,
)

__all__ = [
    "Contract",
    "Dependency",
    "Edge",
    "NodeSpec",
    "Trigger",
    "Workflow",
    "build_dependency",
]
