from __future__ import annotations

from pathlib import Path

from .errors import SecretsValidationError

REQUIRED_KEYS = (
    "OVH_ENDPOINT",
    "OVH_APPLICATION_KEY",
    "OVH_APPLICATION_SECRET",
    "OVH_CONSUMER_KEY",
)
PLACEHOLDER = "CHANGE_ME"


def default_secrets_content(endpoint: str) -> bytes:
    lines = [
        "# OVH DNS-01 credentials for Traefik (lego)",
        "# Generate these in the OVH API console with rights on the DNS zone records.",
        f"OVH_ENDPOINT={endpoint}",
    ]
    lines.extend(f"{key}={PLACEHOLDER}" for key in REQUIRED_KEYS[1:])
    return ("\n".join(lines) + "\n").encode("utf-8")


def _key_lines(text: str) -> dict[str, str]:
    """
    Map KEY -> raw value for every `KEY=value` line. Comments and blanks are skipped.

    A repeated key keeps its last assignment, matching what docker compose `env_file` passes to
    the container.
    """
    out: dict[str, str] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped.startswith("export "):
            stripped = stripped[7:].lstrip()
        if "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        out[key.strip()] = value.strip().strip('"').strip("'")
    return out


def validate_secrets_text(text: str) -> list[str]:
    """
    Check that every required key has a line; return keys still holding the placeholder.

    Raises SecretsValidationError naming each missing key. Values are never included in
    messages.
    """
    found = _key_lines(text)
    missing = [key for key in REQUIRED_KEYS if key not in found]
    if missing:
        raise SecretsValidationError(f"missing {', '.join(missing)} in secrets file")
    return [key for key in REQUIRED_KEYS if found[key] == PLACEHOLDER]


def validate_secrets_file(path: Path) -> list[str]:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise SecretsValidationError(f"secrets file not found: {path}") from exc
    except OSError as exc:
        raise SecretsValidationError(f"cannot read secrets file {path}: {exc.strerror or exc}") from exc
    except UnicodeDecodeError as exc:
        raise SecretsValidationError(f"secrets file {path} is not valid UTF-8") from exc
    return validate_secrets_text(text)
