#!/usr/bin/env python3
"""
Kubernetes API client construction
"""

import logging
import os
from dataclasses import dataclass

from kubernetes import client
from kubernetes import config as k8s_config

from machineset_autoscaler.config.settings import KubernetesSettings
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class ClusterClients:
    """API groups used by the collectors and the actuator"""
    core: client.CoreV1Api
    custom: client.CustomObjectsApi

    @classmethod
    def from_api_client(cls, api_client: client.ApiClient) -> "ClusterClients":
        return cls(core=client.CoreV1Api(api_client), custom=client.CustomObjectsApi(api_client))


def build_api_client(settings: KubernetesSettings) -> client.ApiClient:
    """
    Build an ApiClient from, in order of preference: an explicit API server
    and bearer token, the in-cluster service account, or a kubeconfig file.
    """
    if settings.api_server and settings.token:
        logger.info(f"Using API server {settings.api_server} with bearer token")
        configuration = client.Configuration()
        configuration.host = settings.api_server
        configuration.api_key = {"authorization": settings.token}
        configuration.api_key_prefix = {"authorization": "Bearer"}
        configuration.verify_ssl = settings.verify_ssl
        if not settings.verify_ssl:
            logger.warning("TLS verification of the Kubernetes API server is disabled")
        return client.ApiClient(configuration)

    if settings.in_cluster:
        logger.info("Loading in-cluster config")
        configuration = client.Configuration()
        k8s_config.load_incluster_config(client_configuration=configuration)
        return client.ApiClient(configuration)

    kubeconfig_path = settings.kubeconfig_path
    if kubeconfig_path and not os.path.exists(kubeconfig_path):
        raise ConfigurationError(f"Kubeconfig file not found: {kubeconfig_path}")

    logger.info(f"Loading kubeconfig from: {kubeconfig_path or 'default location'}")
    return k8s_config.new_client_from_config(config_file=kubeconfig_path)
