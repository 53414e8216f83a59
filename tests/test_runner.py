import logging
import os
import stat
from pathlib import Path

import pytest

from traefikops.provision import deploy, runner, system
from traefikops.provision.errors import DeployError, PreconditionError, ReconcileError, SecretsValidationError
from traefikops.settings import Settings

REAL_SECRETS = (
    "OVH_ENDPOINT=ovh-eu\n"
    "OVH_APPLICATION_KEY=ak\n"
    "OVH_APPLICATION_SECRET=as\n"
    "OVH_CONSUMER_KEY=ck\n"
)


def _settings(tmp_path: Path, **kwargs) -> Settings:
    base = dict(
        domain="example.org",
        acme_email="admin@example.org",
        traefik_dir=tmp_path / "traefik",
        dry_run=False,
    )
    base.update(kwargs)
    return Settings(**base)


@pytest.fixture
def docker_calls(monkeypatch: pytest.MonkeyPatch) -> list[list[str]]:
    calls: list[list[str]] = []

    def _run(args: list[str], dry_run: bool, cwd=None) -> tuple[bool, str]:
        assert dry_run is False
        calls.append(list(args))
        return True, "ok"

    monkeypatch.setattr(deploy, "need_cmd", lambda name: True)
    monkeypatch.setattr(deploy, "run_command", _run)
    return calls


def _redeploys(calls: list[list[str]]) -> list[list[str]]:
    return [c for c in calls if c[1:3] == ["compose", "up"]]


def _files(root: Path) -> list[str]:
    return sorted(str(p.relative_to(root)) for p in root.rglob("*") if p.is_file())


def test_initial_run_creates_layout_and_redeploys_once(tmp_path: Path, docker_calls) -> None:
    settings = _settings(tmp_path)

    report = runner.run_install(settings)

    root = tmp_path / "traefik"
    assert _files(root) == [
        "acme.env",
        "data/acme.json",
        "docker-compose.yml",
        "dynamic/dashboard.yml",
        "traefik.yml",
    ]
    assert report.changed_count == 5
    assert report.redeployed is True
    assert _redeploys(docker_calls) == [["docker", "compose", "up", "-d", "--force-recreate"]]
    assert stat.S_IMODE((root / "acme.env").stat().st_mode) == 0o600
    assert stat.S_IMODE((root / "data" / "acme.json").stat().st_mode) == 0o600
    assert report.placeholder_keys == ["OVH_APPLICATION_KEY", "OVH_APPLICATION_SECRET", "OVH_CONSUMER_KEY"]


def test_second_run_changes_nothing_but_still_redeploys(tmp_path: Path, docker_calls) -> None:
    settings = _settings(tmp_path)
    runner.run_install(settings)
    snapshot = {p: (tmp_path / "traefik" / p).read_bytes() for p in _files(tmp_path / "traefik")}

    report = runner.run_install(settings)

    assert report.changed is False
    assert report.changed_count == 0
    assert len(_redeploys(docker_calls)) == 2
    assert {p: (tmp_path / "traefik" / p).read_bytes() for p in snapshot} == snapshot


def test_on_change_policy_skips_redeploy_when_unchanged(tmp_path: Path, docker_calls) -> None:
    settings = _settings(tmp_path, redeploy_policy="on-change")
    assert runner.run_install(settings).redeployed is True

    report = runner.run_install(settings)

    assert report.redeployed is False
    assert len(_redeploys(docker_calls)) == 1


def test_existing_secrets_survive_and_permissions_heal(tmp_path: Path, docker_calls) -> None:
    root = tmp_path / "traefik"
    root.mkdir()
    secrets = root / "acme.env"
    secrets.write_text(REAL_SECRETS, encoding="utf-8")
    os.chmod(secrets, 0o644)

    report = runner.run_install(_settings(tmp_path))

    assert secrets.read_text(encoding="utf-8") == REAL_SECRETS
    assert stat.S_IMODE(secrets.stat().st_mode) == 0o600
    assert report.placeholder_keys == []


def test_overwrite_secrets_resets_to_placeholders(tmp_path: Path, docker_calls) -> None:
    root = tmp_path / "traefik"
    root.mkdir()
    (root / "acme.env").write_text(REAL_SECRETS, encoding="utf-8")

    report = runner.run_install(_settings(tmp_path, overwrite_secrets=True, ovh_endpoint="ovh-ca"))

    text = (root / "acme.env").read_text(encoding="utf-8")
    assert "OVH_ENDPOINT=ovh-ca" in text
    assert "OVH_APPLICATION_KEY=CHANGE_ME" in text
    assert len(report.placeholder_keys) == 3


@pytest.mark.parametrize(
    "key",
    ["OVH_ENDPOINT", "OVH_APPLICATION_KEY", "OVH_APPLICATION_SECRET", "OVH_CONSUMER_KEY"],
)
def test_missing_secret_key_aborts_before_redeploy(tmp_path: Path, docker_calls, key: str) -> None:
    root = tmp_path / "traefik"
    root.mkdir()
    kept = [line for line in REAL_SECRETS.splitlines() if not line.startswith(f"{key}=")]
    (root / "acme.env").write_text("\n".join(kept) + "\n", encoding="utf-8")

    with pytest.raises(SecretsValidationError, match=key):
        runner.run_install(_settings(tmp_path))

    assert _redeploys(docker_calls) == []


def test_placeholder_warns_but_completes(tmp_path: Path, docker_calls, caplog: pytest.LogCaptureFixture) -> None:
    root = tmp_path / "traefik"
    root.mkdir()
    (root / "acme.env").write_text(REAL_SECRETS.replace("OVH_CONSUMER_KEY=ck", "OVH_CONSUMER_KEY=CHANGE_ME"))

    with caplog.at_level(logging.WARNING, logger="traefikops"):
        report = runner.run_install(_settings(tmp_path))

    assert report.placeholder_keys == ["OVH_CONSUMER_KEY"]
    assert report.redeployed is True
    assert any("OVH_CONSUMER_KEY" in r.getMessage() for r in caplog.records if r.levelno == logging.WARNING)


def test_missing_docker_aborts_before_touching_disk(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(deploy, "need_cmd", lambda name: False)

    with pytest.raises(PreconditionError, match="missing command: docker"):
        runner.run_install(_settings(tmp_path))

    assert not (tmp_path / "traefik").exists()


def test_unreachable_daemon_aborts(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(deploy, "need_cmd", lambda name: True)
    monkeypatch.setattr(deploy, "run_command", lambda args, dry_run, cwd=None: (False, "Cannot connect"))

    with pytest.raises(PreconditionError, match="daemon not reachable"):
        runner.run_install(_settings(tmp_path))
    assert not (tmp_path / "traefik").exists()


def test_compose_failure_is_fatal(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _run(args, dry_run, cwd=None):
        if args[1:3] == ["compose", "up"]:
            return False, "pull access denied\nfor traefik"
        return True, "ok"

    monkeypatch.setattr(deploy, "need_cmd", lambda name: True)
    monkeypatch.setattr(deploy, "run_command", _run)

    with pytest.raises(DeployError, match="pull access denied for traefik"):
        runner.run_install(_settings(tmp_path))


def test_dry_run_never_spawns_processes(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _boom(*args, **kwargs):  # pragma: no cover - must not be called
        raise AssertionError("subprocess must not run in dry-run")

    monkeypatch.setattr(system.subprocess, "run", _boom)

    report = runner.run_install(_settings(tmp_path, dry_run=True))

    assert report.redeployed is False
    assert (tmp_path / "traefik" / "traefik.yml").exists()


def test_harden_writes_layer_and_restarts_once(tmp_path: Path, docker_calls) -> None:
    runner.run_install(_settings(tmp_path))
    settings = _settings(tmp_path, harden=True)

    report = runner.run_harden(settings)

    dynamic = tmp_path / "traefik" / "dynamic"
    assert sorted(p.name for p in dynamic.iterdir()) == [
        "dashboard-allowlist.yml",
        "dashboard.yml",
        "security-headers.yml",
        "tls-options.yml",
    ]
    assert report.changed_count == 4
    assert [c for c in docker_calls if c[1] == "restart"] == [["docker", "restart", "traefik"]]
    assert "strict@file" in (dynamic / "dashboard.yml").read_text(encoding="utf-8")

    # Hardened install keeps the same dashboard router, so nothing flips back.
    assert runner.run_install(settings).changed is False


def test_harden_requires_existing_layout(tmp_path: Path, docker_calls) -> None:
    with pytest.raises(ReconcileError):
        runner.run_harden(_settings(tmp_path, harden=True))
    assert [c for c in docker_calls if c[1] == "restart"] == []


def test_harden_heals_secret_permissions(tmp_path: Path, docker_calls) -> None:
    runner.run_install(_settings(tmp_path))
    secrets = tmp_path / "traefik" / "acme.env"
    os.chmod(secrets, 0o644)

    runner.run_harden(_settings(tmp_path, harden=True))

    assert stat.S_IMODE(secrets.stat().st_mode) == 0o600


def test_dry_run_redeploy_is_not_reported_as_done(tmp_path: Path) -> None:
    settings = _settings(tmp_path, dry_run=True)
    runner.run_install(settings)

    report = runner.run_harden(settings)

    assert report.redeployed is False
