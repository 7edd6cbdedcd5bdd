"""
Signing backends and serial allocation for client certificate issuance.

A backend exposes three primitives, all exchanging PEM bytes:

* ``generate_private_key(key_size)``
* ``create_csr(key_path, common_name)``
* ``sign_csr(csr_path, ca_cert_path, ca_key_path, days, serial)``

Key and CSR are handed over as file paths because the issuance pipeline owns the
scratch directory they live in; backends never create or delete files there.
"""

from __future__ import annotations

import datetime
import shutil
import subprocess
import threading
from pathlib import Path
from typing import Protocol

import structlog
from cachetools import LRUCache
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes
from cryptography.x509.oid import NameOID

from permission_manager.config import Settings
from permission_manager.exceptions import CAMaterialError, SigningBackendError

logger = structlog.get_logger(__name__)


class SigningBackend(Protocol):
    def generate_private_key(self, key_size: int) -> bytes: ...

    def create_csr(self, key_path: Path, common_name: str) -> bytes: ...

    def sign_csr(
        self,
        csr_path: Path,
        ca_cert_path: Path,
        ca_key_path: Path,
        days: int,
        serial: int,
    ) -> bytes: ...


class SerialNumberAllocator:
    """Hands out certificate serials that never repeat within this process.

    Serials are 159-bit random values (positive, fits the 20-octet limit of RFC
    5280), so independent replicas are collision-resistant as well. A bounded
    memory of recent serials guards against the astronomically unlikely redraw.
    """

    def __init__(self, memory: int = 4096) -> None:
        self._recent: LRUCache[int, bool] = LRUCache(maxsize=memory)
        self._lock = threading.Lock()

    def allocate(self) -> int:
        with self._lock:
            serial = x509.random_serial_number()
            while serial in self._recent:
                serial = x509.random_serial_number()
            self._recent[serial] = True
            return serial


def _read_ca_file(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise CAMaterialError(f"cannot read CA material at {path}: {exc.strerror or exc}", path=str(path)) from exc


def _load_ca_material(ca_cert_path: Path, ca_key_path: Path) -> tuple[x509.Certificate, PrivateKeyTypes]:
    """Read and parse the CA pair; anything unusable is a CAMaterialError."""
    ca_cert_pem = _read_ca_file(ca_cert_path)
    ca_key_pem = _read_ca_file(ca_key_path)
    try:
        ca_cert = x509.load_pem_x509_certificate(ca_cert_pem)
    except ValueError as exc:
        raise CAMaterialError(f"CA certificate is not valid PEM: {exc}", path=str(ca_cert_path)) from exc
    try:
        ca_key = serialization.load_pem_private_key(ca_key_pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise CAMaterialError(f"CA key is not a usable unencrypted PEM key: {exc}", path=str(ca_key_path)) from exc
    return ca_cert, ca_key


class CryptographySigningBackend:
    """In-process signing with the ``cryptography`` package."""

    def generate_private_key(self, key_size: int) -> bytes:
        try:
            key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        except (ValueError, UnsupportedAlgorithm) as exc:
            raise SigningBackendError(f"private key generation failed: {exc}") from exc
        return key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def create_csr(self, key_path: Path, common_name: str) -> bytes:
        try:
            key = serialization.load_pem_private_key(key_path.read_bytes(), password=None)
            csr = (
                x509.CertificateSigningRequestBuilder()
                .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
                .sign(key, hashes.SHA256())
            )
        except (OSError, ValueError, TypeError) as exc:
            raise SigningBackendError(f"CSR construction failed: {exc}") from exc
        return csr.public_bytes(serialization.Encoding.PEM)

    def sign_csr(
        self,
        csr_path: Path,
        ca_cert_path: Path,
        ca_key_path: Path,
        days: int,
        serial: int,
    ) -> bytes:
        ca_cert, ca_key = _load_ca_material(ca_cert_path, ca_key_path)

        try:
            csr = x509.load_pem_x509_csr(csr_path.read_bytes())
        except (OSError, ValueError) as exc:
            raise SigningBackendError(f"malformed CSR: {exc}") from exc
        if not csr.is_signature_valid:
            raise SigningBackendError("CSR signature does not verify")

        now = datetime.datetime.now(datetime.timezone.utc)
        try:
            cert = (
                x509.CertificateBuilder()
                .subject_name(csr.subject)
                .issuer_name(ca_cert.subject)
                .public_key(csr.public_key())
                .serial_number(serial)
                .not_valid_before(now)
                .not_valid_after(now + datetime.timedelta(days=days))
                .sign(ca_key, hashes.SHA256())  # type: ignore[arg-type]
            )
        except (ValueError, TypeError) as exc:
            raise SigningBackendError(f"CA signing failed: {exc}") from exc
        return cert.public_bytes(serialization.Encoding.PEM)


class OpensslSigningBackend:
    """Signs by invoking the ``openssl`` CLI; every call is bounded by a timeout."""

    def __init__(self, binary: str = "openssl", timeout: float = 30.0) -> None:
        self.binary = binary
        self.timeout = timeout

    def _run(self, step: str, args: list[str]) -> bytes:
        if shutil.which(self.binary) is None:
            raise SigningBackendError(f"signing toolchain unavailable: {self.binary} not found")
        try:
            proc = subprocess.run(
                [self.binary, *args],
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            logger.warning("signing.openssl_timeout", step=step, timeout=self.timeout)
            raise SigningBackendError(f"openssl {step} timed out after {self.timeout}s") from exc
        except OSError as exc:
            raise SigningBackendError(f"openssl {step} could not start: {exc}") from exc

        if proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", errors="replace").strip()
            logger.warning("signing.openssl_failed", step=step, returncode=proc.returncode, stderr=stderr)
            raise SigningBackendError(f"openssl {step} failed", details={"stderr": stderr[-2000:]})
        return proc.stdout

    def generate_private_key(self, key_size: int) -> bytes:
        return self._run("genrsa", ["genrsa", str(key_size)])

    def create_csr(self, key_path: Path, common_name: str) -> bytes:
        return self._run("req", ["req", "-new", "-utf8", "-key", str(key_path), "-subj", f"/CN={common_name}"])

    def sign_csr(
        self,
        csr_path: Path,
        ca_cert_path: Path,
        ca_key_path: Path,
        days: int,
        serial: int,
    ) -> bytes:
        _load_ca_material(ca_cert_path, ca_key_path)
        return self._run(
            "x509",
            [
                "x509", "-req",
                "-days", str(days),
                "-sha256",
                "-in", str(csr_path),
                "-CA", str(ca_cert_path),
                "-CAkey", str(ca_key_path),
                "-set_serial", str(serial),
            ],
        )


def build_signing_backend(settings: Settings) -> SigningBackend:
    if settings.signing_backend == "openssl":
        return OpensslSigningBackend(settings.openssl_binary, settings.signing_timeout_seconds)
    return CryptographySigningBackend()
