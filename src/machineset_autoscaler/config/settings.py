#!/usr/bin/env python3
"""
Configuration settings using Pydantic for environment variable loading
"""

import os
from typing import Any, Dict, List, Optional, Sequence, Union

import yaml
from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from machineset_autoscaler.core.exceptions import ConfigurationError

# Load environment variables from .env file if it exists
load_dotenv()

DELETE_MACHINE_ANNOTATION = "machine.openshift.io/cluster-api-delete-machine"
NODE_MACHINE_ANNOTATION = "machine.openshift.io/machine"


def parse_instance_groups(raw: Union[str, Sequence[str], None]) -> List[str]:
    """
    Parse the instance-group configuration into an ordered list.

    A string is split on commas and every item is whitespace-trimmed.
    Empty lists, empty items and duplicates are rejected.

    Raises:
        ConfigurationError: if the configuration is malformed or empty
    """
    if raw is None:
        raise ConfigurationError("No instance groups configured")

    items = raw.split(",") if isinstance(raw, str) else list(raw)
    if isinstance(raw, str) and not raw.strip():
        raise ConfigurationError("No instance groups configured")

    groups: List[str] = []
    for position, item in enumerate(items):
        if not isinstance(item, str):
            raise ConfigurationError(f"Instance group #{position + 1} is not a string: {item!r}")
        name = item.strip()
        if not name:
            raise ConfigurationError(f"Empty instance group name at position {position + 1} in {raw!r}")
        if name in groups:
            raise ConfigurationError(f"Duplicate instance group '{name}'")
        groups.append(name)

    if not groups:
        raise ConfigurationError("No instance groups configured")
    return groups


class KubernetesSettings(BaseSettings):
    """Cluster control-plane connection settings"""
    api_server: Optional[str] = None
    token: Optional[str] = None
    verify_ssl: bool = False
    in_cluster: bool = False
    kubeconfig_path: Optional[str] = None

    model_config = SettingsConfigDict(env_prefix="KUBE_", extra="ignore")


class AAPSettings(BaseSettings):
    """Automation platform (job backlog) settings"""
    url: str = "http://localhost"
    token: str = ""
    # INSTANCE_GROUPS is read too, for deployments configured before the AAP_ prefix
    instance_groups: str = Field(
        "", validation_alias=AliasChoices("AAP_INSTANCE_GROUPS", "INSTANCE_GROUPS", "instance_groups")
    )

    # Retry policy for backlog queries
    request_timeout: float = 30.0
    max_attempts: int = Field(5, ge=1)
    retry_backoff: float = Field(2.0, ge=0)
    retry_status: int = 504

    model_config = SettingsConfigDict(env_prefix="AAP_", extra="ignore", populate_by_name=True)

    def get_instance_groups(self) -> List[str]:
        return parse_instance_groups(self.instance_groups)


class PollingSettings(BaseSettings):
    """Poller intervals and channel policy"""
    node_interval: float = Field(10.0, gt=0)
    backlog_interval: float = Field(10.0, gt=0)
    channel_size: int = Field(1, ge=1)
    overflow_policy: str = Field("block", pattern="^(block|drop_oldest)$")

    model_config = SettingsConfigDict(env_prefix="POLLING_", extra="ignore")


class ScalingSettings(BaseSettings):
    """Actuation settings"""
    machineset_name: Optional[str] = None
    machineset_namespace: str = "openshift-machine-api"
    drain_delay: float = Field(60.0, ge=0)
    removal_retention: float = Field(3600.0, ge=0)
    workload_namespaces: str = "aap-jobs,uat-jobs"
    dry_run: bool = False
    max_workers: int = Field(4, ge=1)
    policy: str = "machineset_autoscaler.core.scaling:ObserveOnlyPolicy"

    model_config = SettingsConfigDict(env_prefix="SCALING_", extra="ignore")

    def get_workload_namespaces(self) -> List[str]:
        namespaces = [ns.strip() for ns in self.workload_namespaces.split(",") if ns.strip()]
        if not namespaces:
            raise ConfigurationError("At least one workload namespace must be configured")
        return namespaces


class LoggingSettings(BaseSettings):
    """Logging configuration settings"""
    level: str = "INFO"
    file: Optional[str] = None
    colors: bool = True

    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")


class APISettings(BaseSettings):
    """Status API settings"""
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080

    model_config = SettingsConfigDict(env_prefix="API_", extra="ignore")


class MetricsSettings(BaseSettings):
    """Prometheus exporter settings"""
    enabled: bool = True
    port: int = 9091

    model_config = SettingsConfigDict(env_prefix="METRICS_", extra="ignore")


class Settings(BaseSettings):
    """Main settings class that includes all sub-settings"""
    kubernetes: KubernetesSettings = Field(default_factory=KubernetesSettings)
    aap: AAPSettings = Field(default_factory=AAPSettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    scaling: ScalingSettings = Field(default_factory=ScalingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    api: APISettings = Field(default_factory=APISettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def validate_runtime(self) -> None:
        """Fail fast on configuration the control loop cannot start with"""
        self.aap.get_instance_groups()
        self.scaling.get_workload_namespaces()
        if not self.aap.url:
            raise ConfigurationError("AAP_URL is not set")

    @classmethod
    def load_from_yaml(cls, yaml_path: str) -> "Settings":
        """Load settings from a YAML file; ${VAR} references are expanded from the environment"""
        yaml_config: Dict[str, Any] = {}
        if os.path.exists(yaml_path):
            with open(yaml_path, "r") as f:
                yaml_content = f.read()
                for key, value in os.environ.items():
                    yaml_content = yaml_content.replace(f"${{{key}}}", value)
                yaml_config = yaml.safe_load(yaml_content) or {}

        aap_config = dict(yaml_config.get("aap", {}))
        groups = aap_config.get("instance_groups")
        if isinstance(groups, list):
            aap_config["instance_groups"] = ",".join(parse_instance_groups(groups))

        scaling_config = dict(yaml_config.get("scaling", {}))
        namespaces = scaling_config.get("workload_namespaces")
        if isinstance(namespaces, list):
            scaling_config["workload_namespaces"] = ",".join(namespaces)

        return cls(
            kubernetes=KubernetesSettings(**yaml_config.get("kubernetes", {})),
            aap=AAPSettings(**aap_config),
            polling=PollingSettings(**yaml_config.get("polling", {})),
            scaling=ScalingSettings(**scaling_config),
            logging=LoggingSettings(**yaml_config.get("logging", {})),
            api=APISettings(**yaml_config.get("api", {})),
            metrics=MetricsSettings(**yaml_config.get("metrics", {})),
        )
