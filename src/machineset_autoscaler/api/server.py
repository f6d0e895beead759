#!/usr/bin/env python3
"""
FastAPI server for status inspection and manual actuation
"""

import asyncio
import contextlib
import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from machineset_autoscaler import __version__
from machineset_autoscaler.core.actuator import MachineSetScaler
from machineset_autoscaler.core.controller import ScalingController
from machineset_autoscaler.core.merge import SnapshotMerger
from machineset_autoscaler.models.metrics import HealthStatus, ScaleAction, ScaleActionType, utcnow

logger = logging.getLogger(__name__)


class ScaleUpRequest(BaseModel):
    machine_set: Optional[str] = None
    reason: Optional[str] = None


class ScaleDownRequest(BaseModel):
    node_name: str
    machine_set: Optional[str] = None
    machine_name: Optional[str] = None
    reason: Optional[str] = None


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the autoscaler service"""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class APIServer:
    """FastAPI server for autoscaler endpoints"""

    def __init__(self, merger: SnapshotMerger, controller: ScalingController, scaler: MachineSetScaler,
                 host: str = "0.0.0.0", port: int = 8080):
        self.merger = merger
        self.controller = controller
        self.scaler = scaler
        self.host = host
        self.port = port
        self.app = FastAPI(
            title="MachineSet Autoscaler API",
            description="Status and manual actuation for the MachineSet autoscaler",
            version=__version__
        )
        self._setup_routes()

    def _accepted(self, action: ScaleAction):
        if self.controller.busy:
            raise HTTPException(
                status_code=409,
                detail=f"Scaling operation '{self.controller.inflight_label}' already in progress"
            )
        if self.controller.dry_run:
            self.controller.submit(action)
            return {"status": "dry_run", "action": action.action.value}

        task = self.controller.submit(action)
        if task is None:
            raise HTTPException(status_code=409, detail="Scaling action was not started")
        return JSONResponse(
            content={"status": "accepted", "action": action.action.value, "timestamp": utcnow().isoformat()},
            status_code=202
        )

    def _setup_routes(self):
        """Setup API routes"""

        @self.app.get("/health")
        async def health_check():
            """Healthy once both sources have delivered a snapshot"""
            health = HealthStatus(
                status="healthy" if self.merger.ready else "starting",
                nodes_received=self.merger.latest_nodes is not None,
                backlog_received=self.merger.latest_backlog is not None,
                actuation_in_progress=self.controller.busy,
            )
            return JSONResponse(
                content=health.model_dump(mode="json"),
                status_code=200 if self.merger.ready else 503
            )

        @self.app.get("/status")
        async def get_status():
            """Latest snapshots and actuation state"""
            nodes = self.merger.latest_nodes
            backlog = self.merger.latest_backlog
            return {
                "nodes": None if nodes is None else [n.model_dump(mode="json") for n in nodes],
                "backlog": None if backlog is None else [b.model_dump(mode="json") for b in backlog],
                "decisions": self.merger.decisions,
                "dry_run": self.controller.dry_run,
                "actuation_in_progress": self.controller.inflight_label,
                "last_action": None if self.controller.last_action is None
                else self.controller.last_action.model_dump(mode="json"),
                "last_result": self.controller.last_result,
                "timestamp": utcnow().isoformat(),
            }

        @self.app.get("/removals")
        async def get_removals():
            """Machines under removal and where each one stopped"""
            removals = self.scaler.get_removals()
            return {
                "removals": [r.model_dump(mode="json") for r in removals],
                "count": len(removals),
            }

        @self.app.post("/scale-up")
        async def scale_up(request: ScaleUpRequest):
            """Manually add one replica"""
            return self._accepted(ScaleAction(
                action=ScaleActionType.SCALE_UP,
                machine_set=request.machine_set,
                reason=request.reason or "Manual scale-up via API",
            ))

        @self.app.post("/scale-down")
        async def scale_down(request: ScaleDownRequest):
            """Manually remove one node's machine"""
            return self._accepted(ScaleAction(
                action=ScaleActionType.SCALE_DOWN,
                machine_set=request.machine_set,
                node_name=request.node_name,
                machine_name=request.machine_name,
                reason=request.reason or "Manual scale-down via API",
            ))

        @self.app.post("/removals/{namespace}/{machine}/resume")
        async def resume_removal(namespace: str, machine: str):
            """Continue a removal stopped by a failure"""
            key = f"{namespace}/{machine}"
            if key not in self.scaler.removals:
                raise HTTPException(status_code=404, detail=f"No removal recorded for machine {key}")
            if self.controller.busy:
                raise HTTPException(
                    status_code=409,
                    detail=f"Scaling operation '{self.controller.inflight_label}' already in progress"
                )
            if self.controller.submit_resume(key) is None:
                raise HTTPException(status_code=409, detail="Resume was not started")
            return JSONResponse(content={"status": "accepted", "machine": key}, status_code=202)

    async def serve(self, stop: asyncio.Event) -> None:
        """Serve on the running event loop until stop is set"""
        config = uvicorn.Config(self.app, host=self.host, port=self.port, log_config=None)
        server = _EmbeddedServer(config)
        logger.info(f"Starting API server on {self.host}:{self.port}")

        serve_task = asyncio.ensure_future(server.serve())
        stopper = asyncio.ensure_future(stop.wait())
        try:
            await asyncio.wait({serve_task, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            server.should_exit = True
            await asyncio.gather(serve_task, return_exceptions=True)
        logger.info("API server stopped")
