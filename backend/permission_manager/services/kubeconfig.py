"""Assembly of per-user kubeconfig documents."""

from __future__ import annotations

import asyncio
import base64
from pathlib import Path
from typing import Any

import structlog
import yaml

from permission_manager.config import Settings
from permission_manager.exceptions import CAMaterialError
from permission_manager.services.certificates import CertificateIssuer, IssuedCredential
from permission_manager.services.identity import validate_identity

logger = structlog.get_logger(__name__)


def context_name_for(identity: str, cluster_name: str) -> str:
    return f"{identity}@{cluster_name}"


def build_kubeconfig(
    cluster_name: str,
    server: str,
    ca_certificate: bytes,
    identity: str,
    credential: IssuedCredential,
) -> str:
    """Render the kubeconfig for ``identity`` as YAML.

    Pure function: no I/O. Every field goes through the YAML serializer, so the
    identity cannot inject structure into the document.
    """
    validate_identity(identity)
    if credential.identity != identity:
        raise ValueError("credential was issued for a different identity")

    context_name = context_name_for(identity, cluster_name)
    document: dict[str, Any] = {
        "apiVersion": "v1",
        "kind": "Config",
        "preferences": {},
        "current-context": context_name,
        "clusters": [
            {
                "name": cluster_name,
                "cluster": {
                    "server": server,
                    "certificate-authority-data": base64.b64encode(ca_certificate).decode("ascii"),
                },
            }
        ],
        "contexts": [
            {
                "name": context_name,
                "context": {"cluster": cluster_name, "user": identity},
            }
        ],
        "users": [
            {
                "name": identity,
                "user": {
                    "client-certificate-data": credential.certificate_b64,
                    "client-key-data": credential.private_key_b64,
                },
            }
        ],
    }
    return yaml.safe_dump(document, sort_keys=False, default_flow_style=False, allow_unicode=True)


class KubeconfigService:
    """Issues a credential for a user and wraps it with the cluster connection data."""

    def __init__(self, issuer: CertificateIssuer, settings: Settings) -> None:
        self.issuer = issuer
        self.cluster_name = settings.cluster_name
        self.server = settings.cluster_server
        self.ca_cert_path = Path(settings.ca_cert_path).expanduser()

    def _read_ca_certificate(self) -> bytes:
        try:
            return self.ca_cert_path.read_bytes()
        except OSError as exc:
            raise CAMaterialError(f"cannot read CA certificate at {self.ca_cert_path}", path=str(self.ca_cert_path)) from exc

    def create_kubeconfig_sync(self, username: str) -> str:
        validate_identity(username)
        ca_certificate = self._read_ca_certificate()
        credential = self.issuer.issue(username)
        return build_kubeconfig(self.cluster_name, self.server, ca_certificate, username, credential)

    async def create_kubeconfig(self, username: str) -> str:
        document = await asyncio.to_thread(self.create_kubeconfig_sync, username)
        logger.info("kubeconfig.created", identity=username, cluster=self.cluster_name)
        return document
