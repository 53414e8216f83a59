from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from traefikops.settings import Settings, ensure_layout_dirs

from .deploy import check_preconditions, compose_up, restart_container
from .errors import ReconcileError
from .reconcile import ReconcileResult, enforce_secret_permissions, ensure_storage_file, reconcile_file
from .render import hardening_files, install_files, secrets_file
from .secrets import validate_secrets_file
from .verify import gather_checks

logger = logging.getLogger("traefikops.runner")


@dataclass
class ProvisionReport:
    results: list[ReconcileResult] = field(default_factory=list)
    placeholder_keys: list[str] = field(default_factory=list)
    redeployed: bool = False
    failed_checks: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return any(r.changed for r in self.results)

    @property
    def changed_count(self) -> int:
        return sum(1 for r in self.results if r.changed)


def _redeploy(settings: Settings, report: ProvisionReport, action: Callable[[Settings], None]) -> None:
    if settings.redeploy_policy == "on-change" and not report.changed:
        logger.info("redeploy_skipped policy=on-change changed=0")
        return
    action(settings)
    # A dry run only logs the command.
    report.redeployed = not settings.dry_run


def _verify(settings: Settings, report: ProvisionReport) -> None:
    for check in gather_checks(settings):
        if check["ok"]:
            logger.info("check_ok name=%r details=%s", check["name"], check["details"])
            continue
        logger.warning("check_failed name=%r details=%s", check["name"], check["details"])
        report.failed_checks.append(check["name"])


def run_install(settings: Settings) -> ProvisionReport:
    """
    Provision the whole deployment and recreate the proxy.

    Order matters: nothing on disk is touched before the preconditions pass and every
    file is rendered, and the credentials file exists before anything that references it.
    """
    check_preconditions(settings)
    secrets = secrets_file(settings)
    desired = install_files(settings)

    try:
        ensure_layout_dirs(settings)
    except OSError as exc:
        raise ReconcileError(f"cannot create {settings.traefik_dir} layout: {exc.strerror or exc}") from exc

    report = ProvisionReport()
    report.results.append(ensure_storage_file(settings.storage_path))
    report.results.append(reconcile_file(secrets, overwrite=settings.overwrite_secrets))
    enforce_secret_permissions(settings.secrets_path)

    for item in desired:
        report.results.append(reconcile_file(item))

    report.placeholder_keys = validate_secrets_file(settings.secrets_path)
    if report.placeholder_keys:
        logger.warning(
            "secrets_placeholders keys=%s; ACME will fail until real OVH credentials are set in %s",
            ",".join(report.placeholder_keys),
            settings.secrets_path,
        )

    _redeploy(settings, report, compose_up)
    logger.info(
        "install_done files=%s changed=%s redeployed=%s",
        len(report.results),
        report.changed_count,
        report.redeployed,
    )

    if settings.verify_after_deploy and not settings.dry_run:
        _verify(settings, report)
    return report


def run_harden(settings: Settings) -> ProvisionReport:
    """Write the TLS 1.3, headers and allow-list layer over an existing deployment and restart it."""
    check_preconditions(settings)
    enforce_secret_permissions(settings.secrets_path)
    desired = hardening_files(settings)
    report = ProvisionReport()
    for item in desired:
        report.results.append(reconcile_file(item))

    _redeploy(settings, report, restart_container)
    logger.info(
        "harden_done files=%s changed=%s restarted=%s",
        len(report.results),
        report.changed_count,
        report.redeployed,
    )
    return report


def run_verify(settings: Settings) -> ProvisionReport:
    report = ProvisionReport()
    _verify(settings, report)
    return report
