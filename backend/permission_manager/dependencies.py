from functools import lru_cache

from kubernetes import client

from permission_manager.config import get_settings
from permission_manager.services.certificates import CertificateIssuer
from permission_manager.services.kube_client import build_api_client
from permission_manager.services.kubeconfig import KubeconfigService
from permission_manager.services.rbac import RbacManager
from permission_manager.services.signing import SerialNumberAllocator, build_signing_backend


@lru_cache(maxsize=1)
def _get_api_client() -> client.ApiClient:
    return build_api_client(get_settings())


@lru_cache(maxsize=1)
def _get_rbac_manager() -> RbacManager:
    api_client = _get_api_client()
    return RbacManager(
        client.RbacAuthorizationV1Api(api_client),
        client.CoreV1Api(api_client),
        get_settings(),
    )


def get_rbac_manager() -> RbacManager:
    return _get_rbac_manager()


@lru_cache(maxsize=1)
def get_serial_allocator() -> SerialNumberAllocator:
    return SerialNumberAllocator()


@lru_cache(maxsize=1)
def _get_kubeconfig_service() -> KubeconfigService:
    settings = get_settings()
    issuer = CertificateIssuer(build_signing_backend(settings), get_serial_allocator(), settings)
    return KubeconfigService(issuer, settings)


def get_kubeconfig_service() -> KubeconfigService:
    return _get_kubeconfig_service()
