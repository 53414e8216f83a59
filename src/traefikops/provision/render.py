from __future__ import annotations

from typing import Any

import yaml

from traefikops.settings import Settings, is_valid_hostname

from .errors import RenderError
from .reconcile import DEFAULT_MODE, SECRET_MODE, DesiredFile
from .secrets import default_secrets_content

CERT_RESOLVER = "le"
STORAGE_IN_CONTAINER = "/data/acme.json"
DYNAMIC_IN_CONTAINER = "/dynamic"
STATIC_CONFIG_IN_CONTAINER = "/etc/traefik/traefik.yml"

TLS_OPTIONS_NAME = "strict"
SEC_HEADERS_NAME = "sec-headers"
ALLOWLIST_NAME = "dash-allowlist"
DASHBOARD_ROUTER = "traefik-dashboard"

HSTS_SECONDS = 63072000


class _IndentDumper(yaml.SafeDumper):
    # Indent sequences under their parent key, the way hand-written Traefik configs look.
    def increase_indent(self, flow=False, indentless=False):
        return super().increase_indent(flow, False)


def dump_yaml(data: dict[str, Any]) -> bytes:
    text = yaml.dump(
        data,
        Dumper=_IndentDumper,
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
        width=4096,
    )
    return text.encode("utf-8")


def host_rule(domain: str) -> str:
    # Backticks delimit literals in Traefik rules; only plain hostnames may be embedded.
    if not is_valid_hostname(domain):
        raise RenderError(f"refusing to embed {domain!r} in a router rule")
    return f"Host(`{domain}`) && (PathPrefix(`/api`) || PathPrefix(`/dashboard`))"


def static_config(settings: Settings) -> dict[str, Any]:
    return {
        "api": {"dashboard": True},
        "log": {"level": settings.traefik_log_level.upper()},
        "entryPoints": {
            "web": {
                "address": ":80",
                "http": {
                    "redirections": {
                        "entryPoint": {"to": "websecure", "scheme": "https", "permanent": True},
                    },
                },
            },
            "websecure": {
                "address": ":443",
                "http": {
                    "tls": {
                        "certResolver": CERT_RESOLVER,
                        "domains": [{"main": settings.domain}],
                    },
                },
            },
        },
        "providers": {
            "docker": {"exposedByDefault": False},
            "file": {"directory": DYNAMIC_IN_CONTAINER, "watch": True},
        },
        "certificatesResolvers": {
            CERT_RESOLVER: {
                "acme": {
                    "email": settings.acme_email,
                    "storage": STORAGE_IN_CONTAINER,
                    "dnsChallenge": {"provider": "ovh", "delayBeforeCheck": 0},
                },
            },
        },
    }


def dashboard_config(settings: Settings, *, hardened: bool) -> dict[str, Any]:
    router: dict[str, Any] = {
        "rule": host_rule(settings.domain),
        "entryPoints": ["websecure"],
        "service": "api@internal",
    }
    tls: dict[str, Any] = {"certResolver": CERT_RESOLVER}
    if hardened:
        router["middlewares"] = [f"{ALLOWLIST_NAME}@file", f"{SEC_HEADERS_NAME}@file"]
        tls["options"] = f"{TLS_OPTIONS_NAME}@file"
    router["tls"] = tls
    return {"http": {"routers": {DASHBOARD_ROUTER: router}}}


def compose_config(settings: Settings) -> dict[str, Any]:
    return {
        "services": {
            "traefik": {
                "image": settings.traefik_image,
                "container_name": settings.container_name,
                "restart": "unless-stopped",
                "environment": [f"TZ={settings.tz}"],
                "command": [f"--configFile={STATIC_CONFIG_IN_CONTAINER}"],
                "ports": ["80:80", "443:443"],
                "env_file": [f"./{settings.secrets_file_name}"],
                "volumes": [
                    "/var/run/docker.sock:/var/run/docker.sock:ro",
                    f"./traefik.yml:{STATIC_CONFIG_IN_CONTAINER}:ro",
                    f"./dynamic:{DYNAMIC_IN_CONTAINER}:ro",
                    "./data:/data",
                ],
            },
        },
    }


def tls_options_config() -> dict[str, Any]:
    return {
        "tls": {
            "options": {
                TLS_OPTIONS_NAME: {
                    "minVersion": "VersionTLS13",
                    "maxVersion": "VersionTLS13",
                    "sniStrict": True,
                },
            },
        },
    }


def security_headers_config() -> dict[str, Any]:
    return {
        "http": {
            "middlewares": {
                SEC_HEADERS_NAME: {
                    "headers": {
                        "sslRedirect": True,
                        "forceSTSHeader": True,
                        "stsSeconds": HSTS_SECONDS,
                        "stsIncludeSubdomains": True,
                        "stsPreload": True,
                        "contentTypeNosniff": True,
                        "frameDeny": True,
                        "referrerPolicy": "no-referrer",
                        "permissionsPolicy": "geolocation=(), microphone=(), camera=()",
                    },
                },
            },
        },
    }


def allowlist_config(settings: Settings) -> dict[str, Any]:
    return {
        "http": {
            "middlewares": {
                ALLOWLIST_NAME: {"ipAllowList": {"sourceRange": list(settings.dashboard_allow_ranges)}},
            },
        },
    }


def secrets_file(settings: Settings) -> DesiredFile:
    return DesiredFile(
        settings.secrets_path,
        default_secrets_content(settings.ovh_endpoint),
        SECRET_MODE,
        sensitive=True,
    )


def hardening_files(settings: Settings) -> list[DesiredFile]:
    dynamic = settings.dynamic_dir
    return [
        DesiredFile(dynamic / "tls-options.yml", dump_yaml(tls_options_config()), DEFAULT_MODE),
        DesiredFile(dynamic / "security-headers.yml", dump_yaml(security_headers_config()), DEFAULT_MODE),
        DesiredFile(dynamic / "dashboard-allowlist.yml", dump_yaml(allowlist_config(settings)), DEFAULT_MODE),
        DesiredFile(dynamic / "dashboard.yml", dump_yaml(dashboard_config(settings, hardened=True)), DEFAULT_MODE),
    ]


def install_files(settings: Settings) -> list[DesiredFile]:
    """
    Every generated (non-secret) file of a deployment, in write order.

    With hardening enabled the dashboard router references the hardening middlewares, so those
    files are emitted before it.
    """
    files = [DesiredFile(settings.traefik_dir / "traefik.yml", dump_yaml(static_config(settings)), DEFAULT_MODE)]
    if settings.harden:
        files.extend(hardening_files(settings))
    else:
        files.append(
            DesiredFile(
                settings.dynamic_dir / "dashboard.yml",
                dump_yaml(dashboard_config(settings, hardened=False)),
                DEFAULT_MODE,
            )
        )
    files.append(DesiredFile(settings.traefik_dir / "docker-compose.yml", dump_yaml(compose_config(settings)), DEFAULT_MODE))
    return files
