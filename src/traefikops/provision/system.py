from __future__ import annotations

import os
import shutil
import socket
import ssl
import stat
import subprocess
from pathlib import Path

import httpx


def read_bytes(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def file_mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


def set_mode(path: Path, mode: int) -> bool:
    """Set permission bits on `path`; returns True if they were different before."""
    if file_mode(path) == mode:
        return False
    os.chmod(path, mode)
    return True


def atomic_write(path: Path, content: bytes, mode: int) -> None:
    """
    Replace `path` with `content` through a temporary sibling file.

    The temp file is opened with `mode` and then fchmod'ed so the umask cannot widen or narrow
    the final permissions. The parent directory is never created here.
    """
    tmp = path.with_name(path.name + ".tmp")
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    try:
        with os.fdopen(fd, "wb") as fh:
            os.fchmod(fh.fileno(), mode)
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            tmp.unlink()
        except OSError:
            pass
        raise


def need_cmd(name: str) -> bool:
    return shutil.which(name) is not None


def run_command(args: list[str], dry_run: bool, cwd: Path | None = None) -> tuple[bool, str]:
    if dry_run:
        return True, f"dry-run: {' '.join(args)}"
    try:
        proc = subprocess.run(args, cwd=cwd, capture_output=True, text=True)
    except FileNotFoundError:
        return False, f"command not found: {args[0]}"
    except OSError as exc:
        return False, f"cannot run {args[0]}: {exc.strerror or exc}"
    output = (proc.stdout + "\n" + proc.stderr).strip()
    return proc.returncode == 0, output


def check_dashboard(address: str, domain: str) -> tuple[bool, str]:
    # The local entrypoint serves a certificate for the public name, so verification is off
    # and routing relies on the Host header alone.
    url = f"https://{address}/dashboard/"
    try:
        resp = httpx.get(url, headers={"Host": domain}, verify=False, timeout=5)
    except httpx.HTTPError as exc:
        return False, str(exc) or exc.__class__.__name__

    ok = resp.status_code < 400 or resp.status_code in {401, 403}
    return ok, f"status={resp.status_code}"


def check_tls_version(host: str, port: int, server_name: str, version: ssl.TLSVersion) -> tuple[bool, str]:
    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    ctx.minimum_version = version
    ctx.maximum_version = version
    try:
        with socket.create_connection((host, port), timeout=5) as sock:
            with ctx.wrap_socket(sock, server_hostname=server_name) as tls:
                return True, f"protocol={tls.version()}"
    except (ssl.SSLError, OSError) as exc:
        return False, str(exc) or exc.__class__.__name__


def _name(rdns: tuple) -> str:
    return ",".join(f"{key}={value}" for rdn in rdns for key, value in rdn)


def check_served_certificate(host: str, port: int, server_name: str) -> tuple[bool, str]:
    """Verify the certificate served for `server_name` against the system trust store."""
    ctx = ssl.create_default_context()
    try:
        with socket.create_connection((host, port), timeout=5) as sock:
            with ctx.wrap_socket(sock, server_hostname=server_name) as tls:
                cert = tls.getpeercert()
    except ssl.SSLCertVerificationError as exc:
        # Traefik serves its self-signed default certificate until ACME succeeds.
        return False, exc.verify_message or str(exc)
    except (ssl.SSLError, OSError) as exc:
        return False, str(exc) or exc.__class__.__name__

    return True, (
        f"issuer={_name(cert.get('issuer', ()))} subject={_name(cert.get('subject', ()))} "
        f"not_before={cert.get('notBefore')} not_after={cert.get('notAfter')}"
    )
