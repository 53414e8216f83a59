from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from traefikops.observability import configure_logging, write_run_metrics
from traefikops.provision.errors import ProvisionError
from traefikops.provision.runner import ProvisionReport, run_harden, run_install, run_verify
from traefikops.provision.secrets import validate_secrets_file
from traefikops.settings import Settings, get_settings

logger = logging.getLogger("traefikops.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="traefikops", description="Provision and harden a Traefik + OVH DNS-01 deployment")
    ap.add_argument("--env-file", type=Path, default=None, help="settings file (default: ./.env)")
    ap.add_argument("--log-level", default=None, help="override LOG_LEVEL")
    ap.add_argument("--dry-run", action="store_true", default=None, help="render and reconcile files, skip docker")
    ap.add_argument("--traefik-dir", type=Path, default=None, help="override TRAEFIK_DIR")

    sub = ap.add_subparsers(dest="command", required=True)

    install = sub.add_parser("install", help="reconcile all files and recreate the proxy")
    install.add_argument("--overwrite-secrets", action="store_true", default=None, help="reset the credentials file")
    install.add_argument("--harden", action="store_true", default=None, help="include the hardening layer")
    install.add_argument("--verify", dest="verify_after_deploy", action="store_true", default=None)
    install.add_argument("--redeploy-policy", choices=["always", "on-change"], default=None)

    harden = sub.add_parser("harden", help="apply TLS 1.3, security headers and dashboard allow-list, then restart")
    harden.add_argument("--redeploy-policy", choices=["always", "on-change"], default=None)

    sub.add_parser("verify", help="check the running proxy")
    sub.add_parser("check-secrets", help="validate the credentials file structure")
    return ap


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    names = ("log_level", "dry_run", "traefik_dir", "overwrite_secrets", "harden", "verify_after_deploy", "redeploy_policy")
    out = {name: getattr(args, name) for name in names if getattr(args, name, None) is not None}
    if args.command == "harden":
        out["harden"] = True
    return out


def load_settings(args: argparse.Namespace) -> Settings:
    overrides = _overrides(args)
    if args.env_file is not None:
        return Settings(_env_file=args.env_file, **overrides)
    if not overrides:
        return get_settings()
    return Settings(**overrides)


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "settings"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "invalid configuration: " + "; ".join(parts)


def _record(settings: Settings, command: str, report: ProvisionReport | None, success: bool) -> None:
    if not settings.metrics_textfile:
        return
    report = report or ProvisionReport()
    try:
        write_run_metrics(
            settings.metrics_textfile,
            command=command,
            success=success,
            files_total=len(report.results),
            files_changed=report.changed_count,
            redeployed=report.redeployed,
            placeholder_credentials=bool(report.placeholder_keys),
        )
    except OSError as exc:
        logger.warning("metrics_write_failed path=%s error=%s", settings.metrics_textfile, exc)


def _dispatch(settings: Settings, command: str) -> tuple[ProvisionReport, int]:
    if command == "install":
        return run_install(settings), EXIT_OK
    if command == "harden":
        return run_harden(settings), EXIT_OK
    if command == "verify":
        report = run_verify(settings)
        return report, EXIT_FAILED if report.failed_checks else EXIT_OK

    report = ProvisionReport(placeholder_keys=validate_secrets_file(settings.secrets_path))
    if report.placeholder_keys:
        logger.warning("secrets_placeholders keys=%s", ",".join(report.placeholder_keys))
    else:
        logger.info("secrets_ok path=%s", settings.secrets_path)
    return report, EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging(args.log_level or "INFO")

    try:
        settings = load_settings(args)
    except ValidationError as exc:
        logger.error(_format_validation_error(exc))
        return EXIT_CONFIG

    logging.getLogger().setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    report: ProvisionReport | None = None
    try:
        report, code = _dispatch(settings, args.command)
    except ProvisionError as exc:
        logger.error("%s failed: %s", args.command, exc)
        _record(settings, args.command, report, success=False)
        return EXIT_FAILED

    _record(settings, args.command, report, success=code == EXIT_OK)
    return code


def run() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    run()
