from __future__ import annotations

import structlog
from kubernetes import client, config
from kubernetes.client import ApiClient
from kubernetes.config.config_exception import ConfigException

from permission_manager.config import Settings

logger = structlog.get_logger(__name__)


def build_api_client(settings: Settings) -> ApiClient:
    """Build a dedicated ApiClient from in-cluster or kubeconfig credentials.

    The client owns its Configuration instead of mutating the process-wide default,
    so several clients (or test doubles) can coexist.
    """
    configuration = client.Configuration()
    try:
        if settings.service_account_token_path:
            config.load_incluster_config(client_configuration=configuration)
            source = "in-cluster"
        else:
            config.load_kube_config(
                config_file=settings.kube_config_path,
                context=settings.kube_context,
                client_configuration=configuration,
            )
            source = settings.kube_context or "default"
        logger.info("kubernetes.config_loaded", source=source, host=configuration.host)
    except ConfigException as exc:
        # keep serving; store calls will fail per request with a 502
        logger.warning("kubernetes.config_missing", error=str(exc))
    return ApiClient(configuration)
