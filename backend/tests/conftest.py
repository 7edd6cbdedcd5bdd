"""Shared fixtures: a throwaway CA, test settings and an in-memory resource store."""

from __future__ import annotations

import copy
import datetime
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from kubernetes.client.rest import ApiException

from permission_manager.config import Settings
from permission_manager.services.certificates import CertificateIssuer
from permission_manager.services.kubeconfig import KubeconfigService
from permission_manager.services.rbac import RbacManager
from permission_manager.services.signing import CryptographySigningBackend, SerialNumberAllocator


@pytest.fixture(scope="session")
def ca_material(tmp_path_factory) -> SimpleNamespace:
    directory = tmp_path_factory.mktemp("ca")
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "test-ca")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    cert_path = directory / "ca.crt"
    key_path = directory / "ca.key"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        )
    )
    return SimpleNamespace(cert=cert, cert_path=cert_path, key_path=key_path)


@pytest.fixture
def scratch_dir(tmp_path: Path) -> Path:
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def settings(ca_material, scratch_dir) -> Settings:
    return Settings(
        _env_file=None,
        app_env="test",
        cluster_name="test-cluster",
        cluster_server="https://10.0.0.1:6443",
        ca_cert_path=str(ca_material.cert_path),
        ca_key_path=str(ca_material.key_path),
        key_size=2048,
        scratch_dir=str(scratch_dir),
        kube_request_timeout_seconds=3,
    )


@pytest.fixture
def issuer(settings) -> CertificateIssuer:
    return CertificateIssuer(CryptographySigningBackend(), SerialNumberAllocator(), settings)


@pytest.fixture
def kubeconfig_service(issuer, settings) -> KubeconfigService:
    return KubeconfigService(issuer, settings)


class FakeKube:
    """In-memory stand-in for RbacAuthorizationV1Api and CoreV1Api.

    Objects are stored as Kubernetes JSON dicts; 404 and 409 are raised the way
    the real client raises them.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.namespaces = ["default", "kube-system"]
        self.timeouts: list[Any] = []
        self.fail_with: Exception | None = None

    # helpers

    def _enter(self, kwargs: dict[str, Any]) -> None:
        self.timeouts.append(kwargs.get("_request_timeout"))
        if self.fail_with is not None:
            raise self.fail_with

    @staticmethod
    def _matches(body: dict[str, Any], selector: str | None) -> bool:
        if not selector:
            return True
        labels = (body.get("metadata") or {}).get("labels") or {}
        key, _, value = selector.partition("=")
        if key not in labels:
            return False
        return not value or labels[key] == value

    def _list(self, kind: str, namespace: str | None = None, label_selector: str | None = None) -> SimpleNamespace:
        items = [
            copy.deepcopy(body)
            for (k, ns, _), body in sorted(self.objects.items())
            if k == kind and (namespace is None or ns == namespace) and self._matches(body, label_selector)
        ]
        return SimpleNamespace(items=items)

    def _create(self, kind: str, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        key = (kind, namespace, body["metadata"]["name"])
        if key in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        stored = copy.deepcopy(body)
        if namespace:
            stored["metadata"]["namespace"] = namespace
        self.objects[key] = stored
        return copy.deepcopy(stored)

    def _delete(self, kind: str, namespace: str, name: str) -> dict[str, Any]:
        try:
            del self.objects[(kind, namespace, name)]
        except KeyError:
            raise ApiException(status=404, reason="NotFound") from None
        return {"status": "Success"}

    def names(self, kind: str) -> list[str]:
        return sorted(name for (k, _, name) in self.objects if k == kind)

    # CoreV1Api

    def list_namespace(self, **kwargs):
        self._enter(kwargs)
        return SimpleNamespace(
            items=[{"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": ns}, "status": {"phase": "Active"}} for ns in self.namespaces]
        )

    # RbacAuthorizationV1Api: listing

    def list_cluster_role(self, **kwargs):
        self._enter(kwargs)
        return self._list("ClusterRole")

    def list_cluster_role_binding(self, label_selector=None, **kwargs):
        self._enter(kwargs)
        return self._list("ClusterRoleBinding", label_selector=label_selector)

    def list_namespaced_role(self, namespace, **kwargs):
        self._enter(kwargs)
        return self._list("Role", namespace)

    def list_role_for_all_namespaces(self, **kwargs):
        self._enter(kwargs)
        return self._list("Role")

    def list_namespaced_role_binding(self, namespace, label_selector=None, **kwargs):
        self._enter(kwargs)
        return self._list("RoleBinding", namespace, label_selector)

    def list_role_binding_for_all_namespaces(self, label_selector=None, **kwargs):
        self._enter(kwargs)
        return self._list("RoleBinding", label_selector=label_selector)

    # RbacAuthorizationV1Api: create

    def create_cluster_role(self, body, **kwargs):
        self._enter(kwargs)
        return self._create("ClusterRole", "", body)

    def create_namespaced_role(self, namespace, body, **kwargs):
        self._enter(kwargs)
        return self._create("Role", namespace, body)

    def create_cluster_role_binding(self, body, **kwargs):
        self._enter(kwargs)
        return self._create("ClusterRoleBinding", "", body)

    def create_namespaced_role_binding(self, namespace, body, **kwargs):
        self._enter(kwargs)
        return self._create("RoleBinding", namespace, body)

    # RbacAuthorizationV1Api: delete

    def delete_cluster_role(self, name, **kwargs):
        self._enter(kwargs)
        return self._delete("ClusterRole", "", name)

    def delete_namespaced_role(self, name, namespace, **kwargs):
        self._enter(kwargs)
        return self._delete("Role", namespace, name)

    def delete_cluster_role_binding(self, name, **kwargs):
        self._enter(kwargs)
        return self._delete("ClusterRoleBinding", "", name)

    def delete_namespaced_role_binding(self, name, namespace, **kwargs):
        self._enter(kwargs)
        return self._delete("RoleBinding", namespace, name)


@pytest.fixture
def fake_kube() -> FakeKube:
    return FakeKube()


@pytest.fixture
def rbac_manager(fake_kube, settings) -> RbacManager:
    return RbacManager(fake_kube, fake_kube, settings)


@pytest.fixture
def api_client(rbac_manager, kubeconfig_service):
    from fastapi.testclient import TestClient

    from permission_manager.dependencies import get_kubeconfig_service, get_rbac_manager
    from permission_manager.main import app

    app.dependency_overrides[get_rbac_manager] = lambda: rbac_manager
    app.dependency_overrides[get_kubeconfig_service] = lambda: kubeconfig_service
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client
    app.dependency_overrides.clear()
