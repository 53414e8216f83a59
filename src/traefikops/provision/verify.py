from __future__ import annotations

import json
import ssl

from traefikops.settings import Settings

from . import system
from .render import CERT_RESOLVER


def check_dashboard(settings: Settings) -> tuple[bool, str]:
    return system.check_dashboard(settings.verify_address, settings.domain)


def check_tls_versions(settings: Settings) -> list[dict]:
    """
    Handshake with the proxy pinned to TLS 1.3 and then TLS 1.2.

    TLS 1.3 must always be accepted. TLS 1.2 must be refused once the strict TLS options are
    in force, and is merely reported otherwise.
    """
    checks: list[dict] = []
    ok13, det13 = system.check_tls_version(settings.verify_address, 443, settings.domain, ssl.TLSVersion.TLSv1_3)
    checks.append({"name": "tls1.3 accepted", "ok": ok13, "details": det13})

    ok12, det12 = system.check_tls_version(settings.verify_address, 443, settings.domain, ssl.TLSVersion.TLSv1_2)
    if settings.harden:
        checks.append({"name": "tls1.2 refused", "ok": not ok12, "details": det12})
    else:
        checks.append({"name": "tls1.2 handshake", "ok": True, "details": f"accepted={ok12} {det12}"})
    return checks


def check_stored_certificate(settings: Settings) -> tuple[bool, str]:
    """
    Look for a certificate covering the domain in the ACME store.

    Traefik keeps `{"<resolver>": {"Certificates": [{"domain": {"main": ..., "sans": [...]}}]}}`.
    An empty store is normal until the first DNS-01 issuance succeeds.
    """
    path = settings.storage_path
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        return False, f"cannot read {path}: {exc.strerror or exc}"
    if not raw.strip():
        return False, f"{path} is empty; no certificate issued yet"
    try:
        data = json.loads(raw)
    except ValueError as exc:
        return False, f"cannot parse {path}: {exc}"

    resolver = data.get(CERT_RESOLVER) if isinstance(data, dict) else None
    certs = resolver.get("Certificates") if isinstance(resolver, dict) else None
    for cert in certs or []:
        domain = cert.get("domain") if isinstance(cert, dict) else None
        if not isinstance(domain, dict):
            continue
        main = str(domain.get("main") or "").lower()
        sans = [str(s).lower() for s in domain.get("sans") or []]
        if settings.domain == main or settings.domain in sans:
            return True, f"resolver={CERT_RESOLVER} main={main} sans={len(sans)}"
    return False, f"no {CERT_RESOLVER} certificate covers {settings.domain}"


def check_served_certificate(settings: Settings) -> tuple[bool, str]:
    return system.check_served_certificate(settings.verify_address, 443, settings.domain)


def gather_checks(settings: Settings) -> list[dict]:
    ok, details = check_dashboard(settings)
    checks = [{"name": "dashboard reachable", "ok": ok, "details": details}]
    ok, details = check_stored_certificate(settings)
    checks.append({"name": "certificate stored", "ok": ok, "details": details})
    ok, details = check_served_certificate(settings)
    checks.append({"name": "certificate served", "ok": ok, "details": details})
    checks.extend(check_tls_versions(settings))
    return checks
