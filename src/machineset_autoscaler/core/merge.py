#!/usr/bin/env python3
"""
Merge loop: keeps the latest snapshot of each source and triggers decisions
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from prometheus_client import Counter

from machineset_autoscaler.models.metrics import JobBacklogEntry, NodeSnapshot, ScaleDecisionInput
from .poller import SnapshotChannel

logger = logging.getLogger(__name__)

MERGE_DECISIONS = Counter('autoscaler_merge_decisions_total', 'Times the decision path was triggered')

NODES = "nodes"
BACKLOG = "backlog"


class SnapshotMerger:
    """
    Single consumer of both poller channels.

    It is the only owner of the latest-snapshot slots. None means the source
    has not delivered yet; an empty list is a delivered value.
    """

    def __init__(
        self,
        nodes_channel: SnapshotChannel[List[NodeSnapshot]],
        backlog_channel: SnapshotChannel[List[JobBacklogEntry]],
        on_ready: Callable[[ScaleDecisionInput], object],
    ):
        """
        Args:
            nodes_channel: Node utilization poller output
            backlog_channel: Job backlog poller output
            on_ready: Decision callback; must return quickly, it runs on the merge loop
        """
        self.nodes_channel = nodes_channel
        self.backlog_channel = backlog_channel
        self.on_ready = on_ready
        self.latest_nodes: Optional[List[NodeSnapshot]] = None
        self.latest_backlog: Optional[List[JobBacklogEntry]] = None
        self.decisions = 0

    @property
    def ready(self) -> bool:
        return self.latest_nodes is not None and self.latest_backlog is not None

    def receive_nodes(self, nodes: List[NodeSnapshot]) -> None:
        self.latest_nodes = nodes
        self._decide()

    def receive_backlog(self, backlog: List[JobBacklogEntry]) -> None:
        self.latest_backlog = backlog
        self._decide()

    def _decide(self) -> None:
        if not self.ready:
            return

        self.decisions += 1
        MERGE_DECISIONS.inc()
        try:
            self.on_ready(ScaleDecisionInput(nodes=self.latest_nodes, backlog=self.latest_backlog))
        except Exception as e:
            logger.error(f"Decision path failed: {e}", exc_info=True)

    async def run(self, stop: asyncio.Event) -> None:
        """Receive from both channels until stop is set"""
        sources: Dict[str, tuple] = {
            NODES: (self.nodes_channel, self.receive_nodes),
            BACKLOG: (self.backlog_channel, self.receive_backlog),
        }
        pending: Dict[asyncio.Future, str] = {
            asyncio.ensure_future(channel.get()): name for name, (channel, _) in sources.items()
        }
        stopper = asyncio.ensure_future(stop.wait())
        logger.info("Merge loop started")

        try:
            while True:
                done, _ = await asyncio.wait(set(pending) | {stopper}, return_when=asyncio.FIRST_COMPLETED)

                for future in [f for f in pending if f in done]:
                    name = pending.pop(future)
                    channel, receive = sources[name]
                    receive(future.result())
                    pending[asyncio.ensure_future(channel.get())] = name

                if stopper in done:
                    break
        finally:
            stopper.cancel()
            for future in pending:
                future.cancel()

        logger.info(f"Merge loop stopped after {self.decisions} decisions")
