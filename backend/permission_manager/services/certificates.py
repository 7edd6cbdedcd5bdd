"""
Client certificate issuance.

``CertificateIssuer.issue`` is atomic: it returns a complete credential or raises,
and the per-request scratch directory holding the private key and CSR is removed
on every path.
"""

from __future__ import annotations

import base64
import tempfile
from dataclasses import dataclass
from pathlib import Path

import structlog

from permission_manager.config import Settings
from permission_manager.exceptions import AppException, SigningBackendError
from permission_manager.services.identity import validate_identity
from permission_manager.services.signing import SerialNumberAllocator, SigningBackend

logger = structlog.get_logger(__name__)

SCRATCH_PREFIX = "pm-issue-"


@dataclass(frozen=True)
class IssuedCredential:
    identity: str
    certificate_pem: bytes
    private_key_pem: bytes
    serial: int

    @property
    def certificate_b64(self) -> str:
        return base64.b64encode(self.certificate_pem).decode("ascii")

    @property
    def private_key_b64(self) -> str:
        return base64.b64encode(self.private_key_pem).decode("ascii")

    def __repr__(self) -> str:
        # keep key material out of tracebacks and logs
        return f"IssuedCredential(identity={self.identity!r}, serial={self.serial})"


class CertificateIssuer:
    """Runs key generation, CSR construction and CA signing for one identity."""

    def __init__(
        self,
        backend: SigningBackend,
        allocator: SerialNumberAllocator,
        settings: Settings,
    ) -> None:
        self.backend = backend
        self.allocator = allocator
        self.key_size = settings.key_size
        self.validity_days = settings.cert_validity_days
        self.ca_cert_path = Path(settings.ca_cert_path).expanduser()
        self.ca_key_path = Path(settings.ca_key_path).expanduser()
        self.scratch_dir = settings.scratch_dir

    def issue(self, identity: str) -> IssuedCredential:
        """Issue a client certificate whose Common Name is exactly ``identity``.

        Blocking; callers on the event loop should go through ``asyncio.to_thread``.

        Raises:
            InvalidIdentityError: identity unusable as a CN.
            CAMaterialError: CA certificate or key unreadable.
            SigningBackendError: key generation, CSR or signing failed.
        """
        validate_identity(identity)

        try:
            scratch_root = tempfile.TemporaryDirectory(prefix=SCRATCH_PREFIX, dir=self.scratch_dir)
        except OSError as exc:
            logger.warning("certificates.scratch_unavailable", identity=identity, scratch_dir=self.scratch_dir, error=str(exc))
            raise SigningBackendError(f"scratch storage unavailable: {exc}") from exc

        with scratch_root as workdir:
            scratch = Path(workdir)
            key_path = scratch / "client.key"
            csr_path = scratch / "client.csr"
            step = "genrsa"
            try:
                private_key = self.backend.generate_private_key(self.key_size)
                if not private_key:
                    raise SigningBackendError("key generation produced no output")
                self._write_private(key_path, private_key)

                step = "csr"
                csr = self.backend.create_csr(key_path, identity)
                if not csr:
                    raise SigningBackendError("CSR construction produced no output")
                self._write_private(csr_path, csr)

                step = "sign"
                serial = self.allocator.allocate()
                certificate = self.backend.sign_csr(
                    csr_path,
                    self.ca_cert_path,
                    self.ca_key_path,
                    self.validity_days,
                    serial,
                )
                if not certificate:
                    raise SigningBackendError("CA signing produced no output")
            except AppException as exc:
                logger.warning("certificates.issue_failed", identity=identity, step=step, code=exc.code, error=exc.message)
                raise
            except OSError as exc:
                logger.warning("certificates.scratch_io_failed", identity=identity, step=step, error=str(exc))
                raise SigningBackendError(f"scratch storage failure during {step}: {exc}") from exc

        logger.info("certificates.issued", identity=identity, serial=hex(serial), days=self.validity_days)
        return IssuedCredential(
            identity=identity,
            certificate_pem=certificate,
            private_key_pem=private_key,
            serial=serial,
        )

    @staticmethod
    def _write_private(path: Path, data: bytes) -> None:
        path.touch(mode=0o600)
        path.write_bytes(data)
