from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _minikube_file(name: str) -> str:
    return str(Path.home() / ".minikube" / name)


class Settings(BaseSettings):
    """Application configuration sourced from environment variables."""

    model_config = SettingsConfigDict(env_file=(".env",), env_file_encoding="utf-8", extra="ignore")

    app_env: Literal["development", "production", "test"] = "development"
    log_level: str = "INFO"
    log_json: bool = False
    log_file: str | None = None
    host: str = "0.0.0.0"
    port: int = 4000
    allowed_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # Resource store (Kubernetes API)
    kube_context: str | None = None
    kube_config_path: str | None = Field(default=None, alias="KUBE_CONFIG_PATH")
    service_account_token_path: str | None = None
    kube_request_timeout_seconds: float = Field(default=10.0, gt=0)

    # Cluster connection data embedded into issued kubeconfigs
    cluster_name: str = "minikube"
    cluster_server: str = "https://192.168.99.100:8443"
    ca_cert_path: str = Field(default_factory=lambda: _minikube_file("ca.crt"))
    ca_key_path: str = Field(default_factory=lambda: _minikube_file("ca.key"))

    # Certificate issuance
    signing_backend: Literal["cryptography", "openssl"] = "cryptography"
    openssl_binary: str = Field(default="openssl", description="Path to the openssl CLI")
    signing_timeout_seconds: float = Field(default=30.0, gt=0)
    key_size: int = Field(default=4096, ge=2048, description="RSA key size for issued client keys")
    cert_validity_days: int = Field(default=365, gt=0)
    scratch_dir: str | None = Field(default=None, description="Parent directory for per-request key/CSR scratch space")

    # Label stamped on every binding created through this service
    ownership_label: str = "generated_for_user"

    @computed_field
    @property
    def is_debug(self) -> bool:
        return self.app_env == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]
