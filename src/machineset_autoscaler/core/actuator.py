#!/usr/bin/env python3
"""
MachineSet scale actuator

Scale-up bumps the MachineSet replica count. Scale-down walks one machine
through cordon, drain wait, deletion-intent annotation and replica
decrement. Marking the exact machine before lowering the count keeps the
MachineSet controller from picking its own victim or replacing ours.

Failed steps are not rolled back: the removal record stays at its last
completed state for inspection and resume().
"""

import asyncio
import concurrent.futures
import functools
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Type

from kubernetes import client
from kubernetes.client.rest import ApiException
from prometheus_client import Counter, Gauge

from machineset_autoscaler.config.settings import DELETE_MACHINE_ANNOTATION, NODE_MACHINE_ANNOTATION
from machineset_autoscaler.models.fleet import MachineRef, MachineRemoval, MachineSetRef, RemovalState
from machineset_autoscaler.models.metrics import utcnow
from .exceptions import (
    ActuationError,
    MachineNotFoundError,
    MachineSetNotFoundError,
    NodeNotFoundError,
    ReplicasUnsetError,
    ScaleDownError,
    WriteConflictError,
)
from .poller import sleep_or_stop

logger = logging.getLogger(__name__)

SCALE_UP_EVENTS = Counter('autoscaler_scale_up_events_total', 'Total scale-up events')
SCALE_DOWN_EVENTS = Counter('autoscaler_scale_down_events_total', 'Total completed scale-down events')
SCALE_DOWN_FAILURES = Counter('autoscaler_scale_down_failures_total', 'Failed scale-down steps', ['step'])
REMOVALS = Gauge('autoscaler_machine_removals', 'Recorded machine removals by state', ['state'])

MACHINE_GROUP = "machine.openshift.io"
MACHINE_VERSION = "v1beta1"


class MachineSetScaler:
    """Performs scale operations against MachineSets, Machines and Nodes"""

    def __init__(
        self,
        core_api: client.CoreV1Api,
        custom_api: client.CustomObjectsApi,
        drain_delay: float = 60.0,
        executor: Optional[concurrent.futures.Executor] = None,
        stop_event: Optional[asyncio.Event] = None,
        removal_retention: float = 3600.0,
    ):
        """
        Args:
            core_api: Core API for nodes
            custom_api: Custom objects API for machine.openshift.io resources
            drain_delay: Seconds between cordon and deletion marking
            executor: Thread pool for blocking API calls
            stop_event: Interrupts the drain wait on shutdown
            removal_retention: Seconds a finished removal stays recorded; while
                recorded, a repeated scale-down of the same machine is a no-op
        """
        self.core_api = core_api
        self.custom_api = custom_api
        self.drain_delay = drain_delay
        self.executor = executor
        self.stop_event = stop_event
        self.removal_retention = removal_retention
        self.removals: Dict[str, MachineRemoval] = {}

    async def _call(self, what: str, not_found: Type[ActuationError], func, *args, **kwargs) -> Any:
        """Run a blocking API call in the executor and translate its errors"""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self.executor, functools.partial(func, *args, **kwargs))
        except ApiException as e:
            if e.status == 404:
                raise not_found(f"{what} not found") from e
            if e.status == 409:
                raise WriteConflictError(f"{what} was modified concurrently: {e.reason}") from e
            raise ActuationError(f"{what}: API error {e.status} {e.reason}") from e
        except Exception as e:
            raise ActuationError(f"{what}: {e}") from e

    # -- MachineSet --------------------------------------------------------

    async def _get_machine_set(self, ref: MachineSetRef) -> Dict[str, Any]:
        return await self._call(
            f"MachineSet {ref}", MachineSetNotFoundError,
            self.custom_api.get_namespaced_custom_object,
            MACHINE_GROUP, MACHINE_VERSION, ref.namespace, "machinesets", ref.name,
        )

    async def _replace_machine_set(self, ref: MachineSetRef, body: Dict[str, Any]) -> None:
        # body still carries the resourceVersion we read, so a concurrent
        # writer turns this into a 409 instead of a silent overwrite
        await self._call(
            f"MachineSet {ref}", MachineSetNotFoundError,
            self.custom_api.replace_namespaced_custom_object,
            MACHINE_GROUP, MACHINE_VERSION, ref.namespace, "machinesets", ref.name, body,
        )

    @staticmethod
    def _replicas(ref: MachineSetRef, machine_set: Dict[str, Any]) -> int:
        replicas = (machine_set.get("spec") or {}).get("replicas")
        if replicas is None:
            raise ReplicasUnsetError(f"MachineSet {ref} has no replica count defined")
        return replicas

    async def get_replicas(self, ref: MachineSetRef) -> int:
        return self._replicas(ref, await self._get_machine_set(ref))

    async def scale_up(self, ref: MachineSetRef) -> int:
        """
        Increase the replica count by one. Not idempotent: every call adds
        a replica. A failed write is not retried.

        Returns:
            The new replica count
        """
        machine_set = await self._get_machine_set(ref)
        replicas = self._replicas(ref, machine_set) + 1
        machine_set["spec"]["replicas"] = replicas
        logger.info(f"Scaling up MachineSet {ref} to {replicas} replicas")

        await self._replace_machine_set(ref, machine_set)
        SCALE_UP_EVENTS.inc()
        logger.info(f"Successfully scaled up MachineSet {ref}")
        return replicas

    # -- Scale-down --------------------------------------------------------

    async def resolve_machine(self, node_name: str, namespace: str) -> MachineRef:
        """Machine backing a node, from the node's machine annotation; falls back to the node name"""
        try:
            node = await self._call(f"Node {node_name}", NodeNotFoundError, self.core_api.read_node, node_name)
            annotations = node.metadata.annotations or {}
        except ActuationError as e:
            logger.warning(f"Could not read node {node_name} to resolve its machine: {e}")
            annotations = {}

        machine = annotations.get(NODE_MACHINE_ANNOTATION)
        if machine and "/" in machine:
            machine_namespace, machine_name = machine.split("/", 1)
            return MachineRef(name=machine_name, namespace=machine_namespace)
        return MachineRef(name=node_name, namespace=namespace)

    async def scale_down(self, ref: MachineSetRef, node_name: str,
                         machine: Optional[MachineRef] = None) -> MachineRemoval:
        """
        Remove one machine: cordon, drain wait, deletion marking, replica decrement.

        Steps run in order and stop at the first failure; nothing already
        done is undone. A machine with a recorded removal is not started
        again: a finished removal is returned as is, an unfinished one is
        resumed from its recorded state.

        Raises:
            ScaleDownError: carrying the failed step and the removal record
        """
        if machine is None:
            machine = await self.resolve_machine(node_name, ref.namespace)

        self._prune()
        key = str(machine)
        existing = self.removals.get(key)
        if existing is not None:
            if existing.finished:
                logger.info(f"Machine {machine} was already removed from {existing.machine_set}, skipping")
                return existing
            logger.info(f"Removal of {machine} already recorded in state {existing.state.value}, resuming it")
            return await self._run(existing)

        removal = MachineRemoval(machine_set=ref, node_name=node_name, machine=machine)
        self.removals[key] = removal
        logger.info(f"Scaling down MachineSet {ref}: removing machine {machine} on node {node_name}")
        return await self._run(removal)

    async def resume(self, machine_key: str) -> MachineRemoval:
        """Continue a recorded removal ("namespace/name") from its current state"""
        removal = self.removals.get(machine_key)
        if removal is None:
            raise MachineNotFoundError(f"No removal recorded for machine {machine_key}")
        if removal.finished:
            return removal

        logger.info(f"Resuming removal of {machine_key} from state {removal.state.value}")
        return await self._run(removal)

    def get_removals(self) -> List[MachineRemoval]:
        self._prune()
        return list(self.removals.values())

    def _prune(self) -> None:
        """Forget finished removals older than the retention; unfinished ones are kept"""
        cutoff = utcnow() - timedelta(seconds=self.removal_retention)
        expired = [key for key, r in self.removals.items() if r.finished and r.updated_at < cutoff]
        for key in expired:
            del self.removals[key]
        if expired:
            logger.debug(f"Pruned {len(expired)} finished removal records")
            self._publish_states()

    def _publish_states(self) -> None:
        for state in RemovalState:
            REMOVALS.labels(state=state.value).set(
                sum(1 for r in self.removals.values() if r.state == state)
            )

    async def _run(self, removal: MachineRemoval) -> MachineRemoval:
        try:
            return await self._advance(removal)
        finally:
            self._publish_states()

    async def _advance(self, removal: MachineRemoval) -> MachineRemoval:
        if removal.state == RemovalState.ACTIVE:
            await self._step(removal, "cordon", self._cordon)
            removal.advance(RemovalState.CORDONED)

        if removal.state == RemovalState.CORDONED:
            await self._step(removal, "drain", self._wait_for_drain)
            await self._step(removal, "annotate", self._mark_machine)
            removal.advance(RemovalState.DELETION_MARKED)

        if removal.state == RemovalState.DELETION_MARKED:
            if await self._step(removal, "reduce", self._reduce_capacity):
                removal.advance(RemovalState.CAPACITY_REDUCED)
                SCALE_DOWN_EVENTS.inc()
                logger.info(f"Successfully scaled down MachineSet {removal.machine_set}")

        return removal

    async def _step(self, removal: MachineRemoval, step: str, func) -> Any:
        try:
            return await func(removal)
        except ActuationError as e:
            removal.fail(step, e)
            SCALE_DOWN_FAILURES.labels(step=step).inc()
            logger.error(f"Scale-down of {removal.machine} failed at {step}, "
                         f"left in state {removal.state.value}: {e}")
            raise ScaleDownError(step, removal, e) from e

    async def _cordon(self, removal: MachineRemoval) -> None:
        await self._call(
            f"Node {removal.node_name}", NodeNotFoundError,
            self.core_api.patch_node, removal.node_name, {"spec": {"unschedulable": True}},
        )
        logger.info(f"Node {removal.node_name} has been cordoned (unschedulable)")

    async def _wait_for_drain(self, removal: MachineRemoval) -> None:
        # Fixed delay only; pods leaving the node are not verified
        logger.info(f"Waiting {self.drain_delay}s for workloads to leave {removal.node_name}")
        if await sleep_or_stop(self.drain_delay, self.stop_event):
            raise ActuationError("shutdown requested during drain wait")

    async def _mark_machine(self, removal: MachineRemoval) -> None:
        machine = removal.machine
        what = f"Machine {machine}"
        obj = await self._call(
            what, MachineNotFoundError,
            self.custom_api.get_namespaced_custom_object,
            MACHINE_GROUP, MACHINE_VERSION, machine.namespace, "machines", machine.name,
        )

        metadata = obj.setdefault("metadata", {})
        annotations = metadata.get("annotations") or {}
        logger.debug(f"Existing annotations for machine {machine}: {annotations}")
        annotations[DELETE_MACHINE_ANNOTATION] = "true"
        metadata["annotations"] = annotations

        await self._call(
            what, MachineNotFoundError,
            self.custom_api.replace_namespaced_custom_object,
            MACHINE_GROUP, MACHINE_VERSION, machine.namespace, "machines", machine.name, obj,
        )
        logger.info(f"Machine {machine} has been marked with {DELETE_MACHINE_ANNOTATION}=true")

    async def _reduce_capacity(self, removal: MachineRemoval) -> bool:
        ref = removal.machine_set
        machine_set = await self._get_machine_set(ref)
        replicas = self._replicas(ref, machine_set)
        if replicas <= 0:
            logger.info(f"MachineSet {ref} is already at 0 replicas")
            return False

        machine_set["spec"]["replicas"] = replicas - 1
        logger.info(f"Scaling down MachineSet {ref} to {replicas - 1} replicas")
        await self._replace_machine_set(ref, machine_set)
        return True
