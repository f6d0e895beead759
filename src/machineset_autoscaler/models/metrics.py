#!/usr/bin/env python3
"""
Pydantic models for snapshots, decisions and related data structures
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NodeSnapshot(BaseModel):
    """Live utilization of one cluster node"""
    name: str = Field(..., description="Name of the node")

    cpu_used_millicores: int = Field(..., ge=0, description="CPU in use, millicores")
    cpu_allocatable_millicores: int = Field(..., ge=0, description="Allocatable CPU, millicores")
    cpu_percentage: Optional[float] = Field(None, description="CPU usage percentage, None if nothing is allocatable")

    memory_used_bytes: int = Field(..., ge=0, description="Memory in use")
    memory_available_bytes: int = Field(..., ge=0, description="Allocatable memory")
    memory_percentage: Optional[float] = Field(None, description="Memory usage percentage")

    storage_used_bytes: int = Field(0, ge=0, description="Ephemeral storage in use")
    storage_available_bytes: int = Field(0, description="Allocatable ephemeral storage minus usage")
    storage_percentage: Optional[float] = Field(None, description="Ephemeral storage usage percentage")

    pod_counts: Dict[str, int] = Field(default_factory=dict, description="Pods on the node per workload namespace")


class JobBacklogEntry(BaseModel):
    """Pending-job count for one instance group"""
    instance_group: str = Field(..., min_length=1)
    pending_count: int = Field(..., ge=0)


@dataclass(frozen=True)
class ScaleDecisionInput:
    """Latest snapshot of each source, handed to the decision policy as-is"""
    nodes: List[NodeSnapshot]
    backlog: List[JobBacklogEntry]


class ScaleActionType(str, Enum):
    NONE = "none"
    SCALE_UP = "scale_up"
    SCALE_DOWN = "scale_down"


class ScaleAction(BaseModel):
    """Decision policy output"""
    action: ScaleActionType = ScaleActionType.NONE
    machine_set: Optional[str] = Field(None, description="Target MachineSet, defaults to the configured one")
    node_name: Optional[str] = Field(None, description="Node to remove (scale_down only)")
    machine_name: Optional[str] = Field(None, description="Machine backing the node, resolved from the node if unset")
    reason: str = ""

    @property
    def is_noop(self) -> bool:
        return self.action == ScaleActionType.NONE

    @classmethod
    def noop(cls, reason: str = "") -> "ScaleAction":
        return cls(action=ScaleActionType.NONE, reason=reason)


class HealthStatus(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="Health status: 'healthy' or 'starting'")
    timestamp: datetime = Field(default_factory=utcnow)
    nodes_received: bool = False
    backlog_received: bool = False
    actuation_in_progress: bool = False
