from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .errors import ReconcileError
from .system import atomic_write, file_mode, read_bytes, set_mode

logger = logging.getLogger("traefikops.reconcile")

DEFAULT_MODE = 0o644
SECRET_MODE = 0o600


@dataclass(frozen=True)
class DesiredFile:
    path: Path
    content: bytes
    mode: int = DEFAULT_MODE
    sensitive: bool = False


@dataclass(frozen=True)
class ReconcileResult:
    path: Path
    changed: bool


def _io_error(action: str, path: Path, exc: OSError) -> ReconcileError:
    reason = exc.strerror or str(exc)
    return ReconcileError(f"cannot {action} {path}: {reason}")


def reconcile(path: Path, desired_content: bytes, mode: int = DEFAULT_MODE) -> ReconcileResult:
    """
    Make `path` hold exactly `desired_content`.

    Identical bytes on disk mean no write at all, so mtime and permissions stay untouched.
    A new file is created with `mode`; an existing one keeps its current permission bits.
    """
    path = Path(path)
    try:
        current = read_bytes(path)
    except OSError as exc:
        raise _io_error("read", path, exc) from exc

    if current == desired_content:
        logger.info("file_unchanged path=%s", path)
        return ReconcileResult(path=path, changed=False)

    try:
        write_mode = mode if current is None else file_mode(path)
        atomic_write(path, desired_content, write_mode)
    except OSError as exc:
        raise _io_error("write", path, exc) from exc

    logger.info("file_written path=%s created=%s", path, current is None)
    return ReconcileResult(path=path, changed=True)


def reconcile_file(desired: DesiredFile, *, overwrite: bool = False) -> ReconcileResult:
    if desired.sensitive:
        return reconcile_secrets(desired.path, desired.content, overwrite)
    return reconcile(desired.path, desired.content, desired.mode)


def reconcile_secrets(path: Path, default_content: bytes, overwrite: bool) -> ReconcileResult:
    """
    Provision the credentials file without ever clobbering live secrets.

    An existing file is authoritative unless `overwrite` is set: it is neither read nor
    compared. Fresh content is always written owner-only.
    """
    path = Path(path)
    if path.exists() and not overwrite:
        logger.info("secrets_kept path=%s", path)
        return ReconcileResult(path=path, changed=False)

    logger.warning("secrets_provisioned path=%s overwrite=%s", path, overwrite)
    try:
        atomic_write(path, default_content, SECRET_MODE)
    except OSError as exc:
        raise _io_error("write", path, exc) from exc
    return ReconcileResult(path=path, changed=True)


def enforce_secret_permissions(path: Path) -> bool:
    path = Path(path)
    if not path.exists():
        return False
    try:
        healed = set_mode(path, SECRET_MODE)
    except OSError as exc:
        raise _io_error("chmod", path, exc) from exc
    if healed:
        logger.warning("secret_mode_restored path=%s mode=%o", path, SECRET_MODE)
    return healed


def ensure_storage_file(path: Path) -> ReconcileResult:
    """Create the ACME certificate store empty and owner-only; never touch its content."""
    path = Path(path)
    if path.exists():
        enforce_secret_permissions(path)
        logger.info("storage_exists path=%s mode=%o", path, SECRET_MODE)
        return ReconcileResult(path=path, changed=False)

    try:
        atomic_write(path, b"", SECRET_MODE)
    except OSError as exc:
        raise _io_error("create", path, exc) from exc
    logger.info("storage_created path=%s", path)
    return ReconcileResult(path=path, changed=True)
