"""
Models package for autoscaler data structures
"""

from .metrics import (
    NodeSnapshot,
    JobBacklogEntry,
    ScaleDecisionInput,
    ScaleAction,
    ScaleActionType,
    HealthStatus,
)
from .fleet import (
    MachineSetRef,
    MachineRef,
    RemovalState,
    MachineRemoval,
)

__all__ = [
    "NodeSnapshot",
    "JobBacklogEntry",
    "ScaleDecisionInput",
    "ScaleAction",
    "ScaleActionType",
    "HealthStatus",
    "MachineSetRef",
    "MachineRef",
    "RemovalState",
    "MachineRemoval",
]
