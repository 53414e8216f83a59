from __future__ import annotations

import logging
import time
from pathlib import Path

from prometheus_client import CollectorRegistry, Gauge, write_to_textfile

logger = logging.getLogger("traefikops.metrics")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def write_run_metrics(
    path: str | Path,
    *,
    command: str,
    success: bool,
    files_total: int = 0,
    files_changed: int = 0,
    redeployed: bool = False,
    placeholder_credentials: bool = False,
) -> None:
    """
    Write the outcome of one run as a node-exporter textfile.

    A fresh registry is used per run so the file only ever reflects the latest invocation.
    """
    registry = CollectorRegistry()
    labels = ["command"]

    Gauge(
        "traefikops_run_success",
        "1 if the last run completed without error",
        labelnames=labels,
        registry=registry,
    ).labels(command).set(1 if success else 0)
    Gauge(
        "traefikops_last_run_timestamp_seconds",
        "Unix time of the last run",
        labelnames=labels,
        registry=registry,
    ).labels(command).set(time.time())
    Gauge(
        "traefikops_files_managed",
        "Files reconciled during the last run",
        labelnames=labels,
        registry=registry,
    ).labels(command).set(files_total)
    Gauge(
        "traefikops_files_changed",
        "Files rewritten during the last run",
        labelnames=labels,
        registry=registry,
    ).labels(command).set(files_changed)
    Gauge(
        "traefikops_redeployed",
        "1 if the last run triggered a redeploy or restart",
        labelnames=labels,
        registry=registry,
    ).labels(command).set(1 if redeployed else 0)
    Gauge(
        "traefikops_placeholder_credentials",
        "1 if the credentials file still holds placeholder values",
        labelnames=labels,
        registry=registry,
    ).labels(command).set(1 if placeholder_credentials else 0)

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    write_to_textfile(str(target), registry)
    logger.debug("metrics_written path=%s command=%s success=%s", target, command, success)
