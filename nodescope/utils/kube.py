# nodescope/utils/kube.py - Kubernetes client setup
"""
Builds the Kubernetes API client shared by the cluster-facing collectors.
"""

import logging

from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException


logger = logging.getLogger(__name__)


def load_api_client() -> client.ApiClient:
    """
    Load in-cluster configuration, falling back to the local kubeconfig.
    """
    try:
        config.load_incluster_config()
        logger.debug("Using in-cluster Kubernetes configuration")
    except ConfigException:
        config.load_kube_config()
        logger.debug("Using kubeconfig Kubernetes configuration")

    return client.ApiClient()
