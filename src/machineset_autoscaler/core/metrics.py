#!/usr/bin/env python3
"""
Node utilization collector: live node metrics and workload pod counts
"""

import logging
from typing import Dict, List, Optional, Sequence

from kubernetes import client
from kubernetes.utils import parse_quantity
from prometheus_client import Counter, Gauge

from machineset_autoscaler.models.metrics import NodeSnapshot

logger = logging.getLogger(__name__)

NODE_METRICS_FAILURES = Counter('autoscaler_node_metrics_failures_total', 'Nodes skipped because measuring them failed')
NODES_MEASURED = Gauge('autoscaler_nodes_measured', 'Nodes in the latest utilization snapshot')

METRICS_GROUP = "metrics.k8s.io"
METRICS_VERSION = "v1beta1"


def percentage(used: float, allocatable: float) -> Optional[float]:
    """used / allocatable * 100, or None when nothing is allocatable"""
    if allocatable <= 0:
        return None
    return used / allocatable * 100


def to_millis(quantity: str) -> int:
    return int(parse_quantity(quantity) * 1000)


def to_units(quantity: str) -> int:
    return int(parse_quantity(quantity))


class NodeUtilizationCollector:
    """Measures every node; nodes that cannot be measured are skipped"""

    def __init__(self, core_api: client.CoreV1Api, custom_api: client.CustomObjectsApi,
                 workload_namespaces: Sequence[str]):
        """
        Args:
            core_api: Core API for nodes and pods
            custom_api: Custom objects API, used for metrics.k8s.io
            workload_namespaces: Namespaces whose pods are counted per node
        """
        self.core_api = core_api
        self.custom_api = custom_api
        self.workload_namespaces = list(workload_namespaces)

    def fetch(self) -> List[NodeSnapshot]:
        """
        Measure all nodes. A failure to list nodes propagates; a failure on a
        single node is logged and that node is left out.
        """
        nodes = self.core_api.list_node()
        snapshots = []

        for node in nodes.items:
            node_name = node.metadata.name
            try:
                snapshots.append(self._measure(node))
            except Exception as e:
                logger.error(f"Error fetching metrics for node {node_name}: {e}")
                NODE_METRICS_FAILURES.inc()

        NODES_MEASURED.set(len(snapshots))
        logger.debug(f"Measured {len(snapshots)}/{len(nodes.items)} nodes")
        return snapshots

    def _measure(self, node) -> NodeSnapshot:
        node_name = node.metadata.name
        node_metrics = self.custom_api.get_cluster_custom_object(
            METRICS_GROUP, METRICS_VERSION, "nodes", node_name
        )
        usage = node_metrics.get("usage") or {}
        allocatable = (node.status.allocatable if node.status else None) or {}

        cpu_used = to_millis(usage.get("cpu", "0"))
        cpu_allocatable = to_millis(allocatable.get("cpu", "0"))

        memory_used = to_units(usage.get("memory", "0"))
        memory_allocatable = to_units(allocatable.get("memory", "0"))

        # metrics-server rarely reports ephemeral storage; absent means zero
        storage_used = to_units(usage.get("ephemeral-storage", "0"))
        storage_allocatable = to_units(allocatable.get("ephemeral-storage", "0"))

        return NodeSnapshot(
            name=node_name,
            cpu_used_millicores=cpu_used,
            cpu_allocatable_millicores=cpu_allocatable,
            cpu_percentage=percentage(cpu_used, cpu_allocatable),
            memory_used_bytes=memory_used,
            memory_available_bytes=memory_allocatable,
            memory_percentage=percentage(memory_used, memory_allocatable),
            storage_used_bytes=storage_used,
            storage_available_bytes=storage_allocatable - storage_used,
            storage_percentage=percentage(storage_used, storage_allocatable),
            pod_counts=self._count_pods(node_name),
        )

    def _count_pods(self, node_name: str) -> Dict[str, int]:
        counts = {}
        for namespace in self.workload_namespaces:
            pods = self.core_api.list_namespaced_pod(namespace, field_selector=f"spec.nodeName={node_name}")
            counts[namespace] = len(pods.items)
        return counts
