"""
Configuration module for autoscaler settings
"""

from .settings import (
    Settings,
    KubernetesSettings,
    AAPSettings,
    PollingSettings,
    ScalingSettings,
    LoggingSettings,
    APISettings,
    MetricsSettings,
    parse_instance_groups,
    DELETE_MACHINE_ANNOTATION,
    NODE_MACHINE_ANNOTATION,
)

__all__ = [
    "Settings",
    "KubernetesSettings",
    "AAPSettings",
    "PollingSettings",
    "ScalingSettings",
    "LoggingSettings",
    "APISettings",
    "MetricsSettings",
    "parse_instance_groups",
    "DELETE_MACHINE_ANNOTATION",
    "NODE_MACHINE_ANNOTATION",
]
