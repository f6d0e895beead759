#!/usr/bin/env python3
"""
MachineSet Autoscaler - Main Entry Point
Polls node utilization and AAP pending jobs, merges them and scales MachineSets
"""

import argparse
import asyncio
import concurrent.futures
import logging
import os
import signal
import sys
import threading
from typing import Optional

from prometheus_client import start_http_server

from machineset_autoscaler.api.server import APIServer
from machineset_autoscaler.config.settings import Settings
from machineset_autoscaler.core.actuator import MachineSetScaler
from machineset_autoscaler.core.backlog import JobBacklogSource
from machineset_autoscaler.core.controller import ScalingController
from machineset_autoscaler.core.exceptions import AutoscalerError
from machineset_autoscaler.core.fetcher import RetryingFetcher
from machineset_autoscaler.core.kubernetes_client import ClusterClients, build_api_client
from machineset_autoscaler.core.logging_config import get_logger, log_separator, setup_logging
from machineset_autoscaler.core.merge import SnapshotMerger
from machineset_autoscaler.core.metrics import NodeUtilizationCollector
from machineset_autoscaler.core.poller import OverflowPolicy, PeriodicPoller, SnapshotChannel
from machineset_autoscaler.core.scaling import ScalingPolicy, load_policy

logger = logging.getLogger(__name__)


class AutoscalerService:
    """Wires the pollers, the merge loop, the actuator and the API together"""

    def __init__(self, settings: Settings, clients: Optional[ClusterClients] = None,
                 policy: Optional[ScalingPolicy] = None, fetcher: Optional[RetryingFetcher] = None):
        """
        Args:
            settings: Loaded settings
            clients: Kubernetes API groups, built from settings if None
            policy: Decision policy, loaded from settings if None
            fetcher: Backlog fetcher, built from settings if None
        """
        settings.validate_runtime()
        self.settings = settings
        self.logger = get_logger(__name__)

        # asyncio side and worker-thread side of the same shutdown
        self.stop_event = asyncio.Event()
        self.thread_stop = threading.Event()

        self.executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=settings.scaling.max_workers,
            thread_name_prefix="autoscaler-io"
        )

        if clients is None:
            clients = ClusterClients.from_api_client(build_api_client(settings.kubernetes))
        self.clients = clients

        self.fetcher = fetcher or RetryingFetcher(
            token=settings.aap.token,
            timeout=settings.aap.request_timeout,
            max_attempts=settings.aap.max_attempts,
            backoff=settings.aap.retry_backoff,
            retry_status=settings.aap.retry_status,
            stop_event=self.thread_stop,
        )
        self.backlog_source = JobBacklogSource(settings.aap.url, settings.aap.get_instance_groups(), self.fetcher)
        self.node_collector = NodeUtilizationCollector(
            clients.core, clients.custom, settings.scaling.get_workload_namespaces()
        )

        overflow = OverflowPolicy(settings.polling.overflow_policy)
        self.nodes_channel = SnapshotChannel("nodes", settings.polling.channel_size, overflow)
        self.backlog_channel = SnapshotChannel("backlog", settings.polling.channel_size, overflow)

        self.node_poller = PeriodicPoller(
            "nodes", self.node_collector.fetch, settings.polling.node_interval, self.nodes_channel, self.executor
        )
        self.backlog_poller = PeriodicPoller(
            "backlog", self.backlog_source.fetch, settings.polling.backlog_interval, self.backlog_channel, self.executor
        )

        self.scaler = MachineSetScaler(
            clients.core, clients.custom,
            drain_delay=settings.scaling.drain_delay,
            removal_retention=settings.scaling.removal_retention,
            executor=self.executor,
            stop_event=self.stop_event,
        )
        self.controller = ScalingController(
            policy or load_policy(settings.scaling.policy),
            self.scaler,
            machineset_namespace=settings.scaling.machineset_namespace,
            default_machineset=settings.scaling.machineset_name,
            dry_run=settings.scaling.dry_run,
        )
        self.merger = SnapshotMerger(self.nodes_channel, self.backlog_channel, self.controller.handle)

        self.api_server = None
        if settings.api.enabled:
            self.api_server = APIServer(
                self.merger, self.controller, self.scaler, host=settings.api.host, port=settings.api.port
            )

        self.logger.info(
            f"MachineSet autoscaler initialized: instance groups {self.backlog_source.instance_groups}, "
            f"dry_run={settings.scaling.dry_run}"
        )

    def request_stop(self, signum: Optional[int] = None) -> None:
        """Stop all workers; safe to call more than once"""
        if signum is not None:
            self.logger.info(f"Received signal {signum}, shutting down...")
        self.stop_event.set()
        self.thread_stop.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_stop, sig)

    async def run(self) -> None:
        """Run until a stop is requested or a worker dies"""
        log_separator(self.logger, "MachineSet autoscaler")
        self._install_signal_handlers()

        if self.settings.metrics.enabled:
            start_http_server(self.settings.metrics.port)
            self.logger.info(f"Prometheus metrics server started on :{self.settings.metrics.port}")

        workers = [
            asyncio.create_task(self.node_poller.run(self.stop_event), name="node-poller"),
            asyncio.create_task(self.backlog_poller.run(self.stop_event), name="backlog-poller"),
            asyncio.create_task(self.merger.run(self.stop_event), name="merge-loop"),
        ]
        if self.api_server:
            workers.append(asyncio.create_task(self.api_server.serve(self.stop_event), name="api-server"))

        try:
            done, _ = await asyncio.wait(workers, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                if task.exception() is not None:
                    self.logger.error(f"Worker {task.get_name()} failed: {task.exception()}")
        finally:
            self.request_stop()
            await asyncio.gather(*workers, return_exceptions=True)
            await self.controller.shutdown()

        self.logger.info("Autoscaler service stopped")

    def cleanup(self):
        """Cleanup resources"""
        self.thread_stop.set()
        self.fetcher.close()
        self.executor.shutdown(wait=False, cancel_futures=True)
        self.logger.info("Cleanup completed")


def main():
    """Entry point"""
    parser = argparse.ArgumentParser(description='MachineSet Autoscaler')
    parser.add_argument(
        '--config',
        default=os.getenv('CONFIG_PATH'),
        help='Path to a YAML configuration file'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Run in dry-run mode (no actual scaling)'
    )
    args = parser.parse_args()

    if args.config and os.path.exists(args.config):
        settings = Settings.load_from_yaml(args.config)
    else:
        settings = Settings()
    if args.dry_run:
        settings.scaling.dry_run = True

    setup_logging(level=settings.logging.level, log_file=settings.logging.file,
                  enable_colors=settings.logging.colors)

    try:
        service = AutoscalerService(settings)
    except AutoscalerError as e:
        logger.error(f"Failed to start autoscaler: {e}")
        sys.exit(2)

    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        service.cleanup()


if __name__ == "__main__":
    main()
