"""
Shared fixtures and in-memory fakes of the Kubernetes APIs
"""

import copy
from typing import Dict, Optional, Tuple
from unittest.mock import Mock

import pytest
from kubernetes.client.rest import ApiException

from machineset_autoscaler.models.metrics import ScaleAction, ScaleDecisionInput
from machineset_autoscaler.core.scaling import ScalingPolicy

NAMESPACE = "openshift-machine-api"


class FakeCoreApi:
    """Nodes and pods, with failure injection per method"""

    def __init__(self):
        self.nodes: Dict[str, Mock] = {}
        self.pods: Dict[Tuple[str, str], int] = {}
        self.failures: Dict[str, Exception] = {}
        self.patches = []

    def _maybe_fail(self, method: str):
        if method in self.failures:
            raise self.failures[method]

    def add_node(self, name: str, cpu: str = "1", memory: str = "1000", storage: str = "0",
                 annotations: Optional[Dict[str, str]] = None) -> Mock:
        node = Mock()
        node.metadata = Mock()
        node.metadata.name = name
        node.metadata.annotations = annotations or {}
        node.spec = Mock()
        node.spec.unschedulable = False
        node.status = Mock()
        node.status.allocatable = {"cpu": cpu, "memory": memory, "ephemeral-storage": storage}
        self.nodes[name] = node
        return node

    def set_pods(self, namespace: str, node_name: str, count: int):
        self.pods[(namespace, node_name)] = count

    def list_node(self):
        self._maybe_fail("list_node")
        return Mock(items=list(self.nodes.values()))

    def read_node(self, name):
        self._maybe_fail("read_node")
        if name not in self.nodes:
            raise ApiException(status=404, reason="Not Found")
        return self.nodes[name]

    def patch_node(self, name, body):
        self._maybe_fail("patch_node")
        if name not in self.nodes:
            raise ApiException(status=404, reason="Not Found")
        self.patches.append((name, body))
        self.nodes[name].spec.unschedulable = body["spec"]["unschedulable"]
        return self.nodes[name]

    def list_namespaced_pod(self, namespace, field_selector=None):
        self._maybe_fail("list_namespaced_pod")
        node_name = field_selector.split("=", 1)[1]
        return Mock(items=[Mock() for _ in range(self.pods.get((namespace, node_name), 0))])


class FakeCustomObjects:
    """
    machine.openshift.io objects and metrics.k8s.io node metrics.
    replace_* enforces resourceVersion like the API server.
    """

    def __init__(self):
        self.objects: Dict[Tuple[str, str, str], dict] = {}
        self.node_metrics: Dict[str, dict] = {}
        self.failures: Dict[Tuple[str, str], Exception] = {}

    def _maybe_fail(self, method: str, plural: str):
        if (method, plural) in self.failures:
            raise self.failures[(method, plural)]

    def add(self, plural: str, namespace: str, name: str, body: dict) -> dict:
        metadata = body.setdefault("metadata", {})
        metadata.update(name=name, namespace=namespace, resourceVersion="1")
        self.objects[(plural, namespace, name)] = body
        return body

    def add_machine_set(self, name: str, replicas: Optional[int], namespace: str = NAMESPACE) -> dict:
        spec = {} if replicas is None else {"replicas": replicas}
        return self.add("machinesets", namespace, name, {"spec": spec})

    def add_machine(self, name: str, namespace: str = NAMESPACE, annotations: Optional[dict] = None) -> dict:
        body = {"metadata": {}}
        if annotations is not None:
            body["metadata"]["annotations"] = dict(annotations)
        return self.add("machines", namespace, name, body)

    def replicas(self, name: str, namespace: str = NAMESPACE) -> Optional[int]:
        return self.objects[("machinesets", namespace, name)]["spec"].get("replicas")

    def annotations(self, name: str, namespace: str = NAMESPACE) -> dict:
        return self.objects[("machines", namespace, name)]["metadata"].get("annotations") or {}

    def get_namespaced_custom_object(self, group, version, namespace, plural, name):
        self._maybe_fail("get", plural)
        key = (plural, namespace, name)
        if key not in self.objects:
            raise ApiException(status=404, reason="Not Found")
        return copy.deepcopy(self.objects[key])

    def replace_namespaced_custom_object(self, group, version, namespace, plural, name, body):
        self._maybe_fail("replace", plural)
        key = (plural, namespace, name)
        current = self.objects.get(key)
        if current is None:
            raise ApiException(status=404, reason="Not Found")
        if body["metadata"].get("resourceVersion") != current["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")

        stored = copy.deepcopy(body)
        stored["metadata"]["resourceVersion"] = str(int(current["metadata"]["resourceVersion"]) + 1)
        self.objects[key] = stored
        return copy.deepcopy(stored)

    def get_cluster_custom_object(self, group, version, plural, name):
        self._maybe_fail("get", plural)
        if name not in self.node_metrics:
            raise ApiException(status=404, reason="Not Found")
        return {"metadata": {"name": name}, "usage": dict(self.node_metrics[name])}


class RecordingPolicy(ScalingPolicy):
    """Remembers every input and answers with a fixed action"""

    def __init__(self, action: Optional[ScaleAction] = None):
        self.inputs = []
        self.action = action or ScaleAction.noop("recording")

    def evaluate(self, data: ScaleDecisionInput) -> ScaleAction:
        self.inputs.append(data)
        return self.action


@pytest.fixture
def core_api():
    return FakeCoreApi()


@pytest.fixture
def custom_api():
    return FakeCustomObjects()
