#!/usr/bin/env python3
"""
Decision policy interface

A policy turns the merged snapshots into one scale action. No thresholds
ship with the autoscaler; the default policy only reports what it sees.
"""

import importlib
import logging
from abc import ABC, abstractmethod
from typing import Optional

from machineset_autoscaler.models.metrics import ScaleAction, ScaleDecisionInput
from .exceptions import ConfigurationError
from .logging_config import log_section

logger = logging.getLogger(__name__)


class ScalingPolicy(ABC):
    """Maps a ScaleDecisionInput to a ScaleAction (or a no-op)"""

    @abstractmethod
    def evaluate(self, data: ScaleDecisionInput) -> ScaleAction:
        raise NotImplementedError


def _pct(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:.2f}%"


class ObserveOnlyPolicy(ScalingPolicy):
    """Logs node utilization and pending jobs, never scales"""

    def evaluate(self, data: ScaleDecisionInput) -> ScaleAction:
        log_section(logger, "NODE UTILIZATION")
        for node in data.nodes:
            logger.info(
                f"{node.name}: CPU {node.cpu_used_millicores}m / {node.cpu_allocatable_millicores}m "
                f"({_pct(node.cpu_percentage)}), "
                f"memory {node.memory_used_bytes} / {node.memory_available_bytes} bytes "
                f"({_pct(node.memory_percentage)}), "
                f"storage free {node.storage_available_bytes} bytes, "
                f"pods {node.pod_counts}"
            )

        log_section(logger, "PENDING JOBS")
        for entry in data.backlog:
            logger.info(f"{entry.instance_group}: {entry.pending_count} pending")

        return ScaleAction.noop("observe-only policy")


def load_policy(path: str) -> ScalingPolicy:
    """
    Instantiate a policy from "package.module:ClassName"

    Raises:
        ConfigurationError: if the path cannot be imported or is not a policy
    """
    module_name, _, class_name = path.partition(":")
    if not module_name or not class_name:
        raise ConfigurationError(f"Policy must be given as 'module:Class', got '{path}'")

    try:
        policy_cls = getattr(importlib.import_module(module_name), class_name)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load policy '{path}': {e}") from e

    if not (isinstance(policy_cls, type) and issubclass(policy_cls, ScalingPolicy)):
        raise ConfigurationError(f"'{path}' is not a ScalingPolicy")

    logger.info(f"Using scaling policy {path}")
    return policy_cls()
