from __future__ import annotations

import logging

from traefikops.settings import Settings

from .errors import DeployError, PreconditionError
from .system import need_cmd, run_command

logger = logging.getLogger("traefikops.deploy")

_MAX_DETAILS = 400


def _trim(output: str) -> str:
    details = (output or "").strip() or "no output"
    # Keep diagnostics on a single line.
    details = " ".join(details.split())
    if len(details) > _MAX_DETAILS:
        details = details[:_MAX_DETAILS].rstrip() + "..."
    return details


def check_preconditions(settings: Settings) -> None:
    if settings.dry_run:
        logger.info("preconditions_skipped reason=dry-run")
        return

    docker = settings.docker_bin
    if not need_cmd(docker):
        raise PreconditionError(f"missing command: {docker}")

    ok, out = run_command([docker, "info"], dry_run=False)
    if not ok:
        raise PreconditionError(f"docker daemon not reachable: {_trim(out)}")

    ok, out = run_command([docker, "compose", "version"], dry_run=False)
    if not ok:
        raise PreconditionError(f"docker compose plugin missing: {_trim(out)}")
    logger.info("preconditions_ok docker=%s", docker)


def compose_up(settings: Settings) -> None:
    cmd = [settings.docker_bin, "compose", "up", "-d", "--force-recreate"]
    logger.info("redeploy cwd=%s cmd=%s", settings.traefik_dir, " ".join(cmd))
    ok, out = run_command(cmd, settings.dry_run, cwd=settings.traefik_dir)
    if not ok:
        raise DeployError(f"{' '.join(cmd)} failed: {_trim(out)}")


def restart_container(settings: Settings) -> None:
    cmd = [settings.docker_bin, "restart", settings.container_name]
    logger.info("restart container=%s", settings.container_name)
    ok, out = run_command(cmd, settings.dry_run)
    if not ok:
        raise DeployError(f"{' '.join(cmd)} failed: {_trim(out)}")
