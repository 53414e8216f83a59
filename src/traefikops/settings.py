import ipaddress
import re
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Endpoints understood by the lego OVH provider bundled in Traefik.
OVH_ENDPOINTS = frozenset(
    {"ovh-eu", "ovh-ca", "ovh-us", "kimsufi-eu", "kimsufi-ca", "soyoustart-eu", "soyoustart-ca"}
)
REDEPLOY_POLICIES = frozenset({"always", "on-change"})

_HOST_LABEL_RE = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_valid_hostname(value: str) -> bool:
    if not value or len(value) > 253:
        return False
    labels = value.split(".")
    if len(labels) < 2:
        return False
    return all(_HOST_LABEL_RE.match(label) for label in labels)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = "INFO"

    # Root of the proxy deployment; compose project, static config and secrets live here.
    traefik_dir: Path = Path("/opt/traefik")

    # Public FQDN served by the dashboard router and requested from ACME.
    domain: str
    acme_email: str
    tz: str = "Europe/Paris"
    ovh_endpoint: str = "ovh-eu"

    # Existing credentials are authoritative. Set OVERWRITE_SECRETS=1 to reset them to placeholders.
    overwrite_secrets: bool = False
    secrets_file_name: str = "acme.env"

    traefik_image: str = "traefik:v3.1"
    container_name: str = "traefik"
    traefik_log_level: str = "INFO"
    docker_bin: str = "docker"
    dry_run: bool = False

    # TLS 1.3 only, security headers and a LAN allow-list in front of the dashboard.
    harden: bool = False
    dashboard_allow_ranges: list[str] = Field(
        default_factory=lambda: ["10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16"]
    )

    # "always" recreates the proxy on every run, "on-change" only when a file was rewritten.
    redeploy_policy: str = "always"

    verify_address: str = "127.0.0.1"
    verify_after_deploy: bool = False

    # node-exporter textfile collector target; empty disables metrics output.
    metrics_textfile: str = ""

    @field_validator("domain")
    @classmethod
    def _check_domain(cls, value: str) -> str:
        domain = value.strip().lower().rstrip(".")
        if not is_valid_hostname(domain):
            raise ValueError(f"invalid domain: {value!r}")
        return domain

    @field_validator("acme_email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        email = value.strip()
        if not _EMAIL_RE.match(email):
            raise ValueError(f"invalid ACME email: {value!r}")
        return email

    @field_validator("ovh_endpoint")
    @classmethod
    def _check_endpoint(cls, value: str) -> str:
        endpoint = value.strip().lower()
        if endpoint not in OVH_ENDPOINTS:
            raise ValueError(f"unknown OVH endpoint {value!r}; expected one of {', '.join(sorted(OVH_ENDPOINTS))}")
        return endpoint

    @field_validator("redeploy_policy")
    @classmethod
    def _check_policy(cls, value: str) -> str:
        policy = value.strip().lower()
        if policy not in REDEPLOY_POLICIES:
            raise ValueError(f"redeploy_policy must be one of {', '.join(sorted(REDEPLOY_POLICIES))}")
        return policy

    @field_validator("dashboard_allow_ranges")
    @classmethod
    def _check_allow_ranges(cls, value: list[str]) -> list[str]:
        ranges = [str(item).strip() for item in value]
        if not ranges:
            raise ValueError("dashboard_allow_ranges must list at least one network")
        for item in ranges:
            try:
                ipaddress.ip_network(item, strict=False)
            except ValueError as exc:
                raise ValueError(f"invalid network in dashboard_allow_ranges: {item!r}") from exc
        return ranges

    @field_validator("secrets_file_name")
    @classmethod
    def _check_secrets_name(cls, value: str) -> str:
        name = value.strip()
        if not name or "/" in name or name in {".", ".."}:
            raise ValueError("secrets_file_name must be a plain file name")
        return name

    @property
    def dynamic_dir(self) -> Path:
        return self.traefik_dir / "dynamic"

    @property
    def data_dir(self) -> Path:
        return self.traefik_dir / "data"

    @property
    def secrets_path(self) -> Path:
        return self.traefik_dir / self.secrets_file_name

    @property
    def storage_path(self) -> Path:
        return self.data_dir / "acme.json"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def ensure_layout_dirs(settings: Settings) -> None:
    for path in (settings.traefik_dir, settings.dynamic_dir, settings.data_dir):
        path.mkdir(mode=0o755, parents=True, exist_ok=True)
