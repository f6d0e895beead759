#!/usr/bin/env python3
"""
Runs the decision policy for every merged snapshot and executes the
resulting action off the merge loop, one actuation at a time.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from prometheus_client import Counter, Gauge

from machineset_autoscaler.models.fleet import MachineRef, MachineSetRef
from machineset_autoscaler.models.metrics import ScaleAction, ScaleActionType, ScaleDecisionInput, utcnow
from .actuator import MachineSetScaler
from .exceptions import ActuationError
from .scaling import ScalingPolicy

logger = logging.getLogger(__name__)

SCALING_DECISIONS = Counter('autoscaler_scaling_decisions_total', 'Total scaling decisions', ['decision'])
ACTUATIONS = Counter('autoscaler_actuations_total', 'Actuations by action and outcome', ['action', 'outcome'])
ACTUATION_IN_PROGRESS = Gauge('autoscaler_actuation_in_progress', 'Whether an actuation is running')


class ScalingController:
    """Decision callback for the merge loop"""

    def __init__(
        self,
        policy: ScalingPolicy,
        scaler: MachineSetScaler,
        machineset_namespace: str,
        default_machineset: Optional[str] = None,
        dry_run: bool = False,
    ):
        self.policy = policy
        self.scaler = scaler
        self.machineset_namespace = machineset_namespace
        self.default_machineset = default_machineset
        self.dry_run = dry_run

        self.last_action: Optional[ScaleAction] = None
        self.last_result: Optional[Dict[str, Any]] = None
        self._inflight: Optional[asyncio.Task] = None
        self._inflight_label: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def inflight_label(self) -> Optional[str]:
        return self._inflight_label if self.busy else None

    def handle(self, data: ScaleDecisionInput) -> Optional[asyncio.Task]:
        """Evaluate the policy and start the action it returns, if any"""
        try:
            action = self.policy.evaluate(data)
        except Exception as e:
            logger.error(f"Scaling policy failed: {e}", exc_info=True)
            SCALING_DECISIONS.labels(decision="error").inc()
            return None

        SCALING_DECISIONS.labels(decision=action.action.value).inc()
        if action.is_noop:
            return None
        return self.submit(action)

    def submit(self, action: ScaleAction) -> Optional[asyncio.Task]:
        """
        Start an action in the background. Returns the task, or None when it
        was skipped (no-op, dry-run or another actuation still running).
        """
        if action.is_noop:
            return None

        logger.info(f"Scaling action: {action.action.value} - {action.reason or 'no reason given'}")

        if self.dry_run:
            self.last_action = action
            logger.info("Dry-run mode: Skipping actual scaling execution")
            ACTUATIONS.labels(action=action.action.value, outcome="dry_run").inc()
            return None

        task = self._start(action.action.value, lambda: self._execute(action))
        if task is not None:
            self.last_action = action
        return task

    def submit_resume(self, machine_key: str) -> Optional[asyncio.Task]:
        if self.dry_run:
            logger.info(f"Dry-run mode: not resuming removal of {machine_key}")
            return None
        return self._start("resume", lambda: self._resume(machine_key))

    def _start(self, label: str, factory: Callable[[], Awaitable[bool]]) -> Optional[asyncio.Task]:
        if self.busy:
            logger.info(f"Scaling operation '{self._inflight_label}' already in progress, skipping {label}")
            ACTUATIONS.labels(action=label, outcome="skipped").inc()
            return None

        self._inflight_label = label
        self._inflight = asyncio.get_running_loop().create_task(factory())
        ACTUATION_IN_PROGRESS.set(1)
        self._inflight.add_done_callback(lambda _: ACTUATION_IN_PROGRESS.set(0))
        return self._inflight

    def _machine_set_ref(self, action: ScaleAction) -> MachineSetRef:
        name = action.machine_set or self.default_machineset
        if not name:
            raise ActuationError("No MachineSet given and SCALING_MACHINESET_NAME is not set")
        return MachineSetRef(name=name, namespace=self.machineset_namespace)

    async def _execute(self, action: ScaleAction) -> bool:
        label = action.action.value
        try:
            machine_set = self._machine_set_ref(action)
            if action.action == ScaleActionType.SCALE_UP:
                replicas = await self.scaler.scale_up(machine_set)
                self._record(label, True, replicas=replicas)
            elif action.action == ScaleActionType.SCALE_DOWN:
                if not action.node_name:
                    raise ActuationError("scale_down needs a node name")
                machine = None
                if action.machine_name:
                    machine = MachineRef(name=action.machine_name, namespace=self.machineset_namespace)
                removal = await self.scaler.scale_down(machine_set, action.node_name, machine)
                self._record(label, True, machine=str(removal.machine), state=removal.state.value)
            else:
                logger.warning(f"Unknown scaling action: {label}")
                return False
        except ActuationError as e:
            logger.error(f"Failed to execute scaling {label}: {e}")
            self._record(label, False, error=str(e))
            return False
        return True

    async def _resume(self, machine_key: str) -> bool:
        try:
            removal = await self.scaler.resume(machine_key)
        except ActuationError as e:
            logger.error(f"Failed to resume removal of {machine_key}: {e}")
            self._record("resume", False, error=str(e))
            return False
        self._record("resume", True, machine=machine_key, state=removal.state.value)
        return True

    def _record(self, label: str, success: bool, **details) -> None:
        ACTUATIONS.labels(action=label, outcome="success" if success else "failure").inc()
        self.last_result = {
            "action": label,
            "success": success,
            "timestamp": utcnow().isoformat(),
            **details,
        }

    async def wait_idle(self) -> None:
        if self._inflight is not None:
            await asyncio.gather(self._inflight, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel any running actuation; completed steps stay in place"""
        if self.busy:
            logger.warning(f"Cancelling in-flight actuation '{self._inflight_label}'")
            self._inflight.cancel()
        await self.wait_idle()
