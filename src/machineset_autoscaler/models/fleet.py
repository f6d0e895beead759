#!/usr/bin/env python3
"""
Fleet resource references and the per-machine removal state machine
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .metrics import utcnow


class MachineSetRef(BaseModel):
    name: str
    namespace: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class MachineRef(BaseModel):
    name: str
    namespace: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class RemovalState(str, Enum):
    """Progress of one machine through scale-down, in order"""
    ACTIVE = "active"
    CORDONED = "cordoned"
    DELETION_MARKED = "deletion_marked"
    CAPACITY_REDUCED = "capacity_reduced"


REMOVAL_ORDER: List[RemovalState] = [
    RemovalState.ACTIVE,
    RemovalState.CORDONED,
    RemovalState.DELETION_MARKED,
    RemovalState.CAPACITY_REDUCED,
]


class MachineRemoval(BaseModel):
    """Inspectable record of a scale-down in progress or stopped by a failure"""
    machine_set: MachineSetRef
    node_name: str
    machine: MachineRef
    state: RemovalState = RemovalState.ACTIVE
    last_error: Optional[str] = None
    failed_step: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def finished(self) -> bool:
        return self.state == RemovalState.CAPACITY_REDUCED

    def advance(self, state: RemovalState) -> None:
        if REMOVAL_ORDER.index(state) <= REMOVAL_ORDER.index(self.state):
            raise ValueError(f"cannot move removal of {self.machine} from {self.state.value} to {state.value}")
        self.state = state
        self.last_error = None
        self.failed_step = None
        self.updated_at = utcnow()

    def fail(self, step: str, error: BaseException) -> None:
        self.failed_step = step
        self.last_error = str(error)
        self.updated_at = utcnow()
