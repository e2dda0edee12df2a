"""Tests for the kubexdb command line."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import pytest

from kubexdb import cli
from kubexdb.core.container.adapter import ContainerEngineAdapter
from kubexdb.core.errors import EngineUnavailable

from conftest import FakeDockerClient


@pytest.fixture(autouse=True)
def quiet_logger(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "create_app_logger", lambda *args, **kwargs: None)
    monkeypatch.setenv("KUBEXDB_HIDEBANNER", "true")


def test_version(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["version"]) == 0

    assert capsys.readouterr().out.strip() == cli.get_app_version()


def test_config_prints_path(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    target = tmp_path / "config.json"

    assert cli.main(["config", "--config-file", str(target)]) == 0

    assert capsys.readouterr().out.strip() == str(target.absolute())
    assert target.is_file()


def test_config_show_masks_secrets(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    target = tmp_path / "config.json"

    assert cli.main(["config", "--show", "--config-file", str(target)]) == 0

    shown = json.loads(capsys.readouterr().out)
    stored = json.loads(target.read_text(encoding="utf-8"))
    password = stored["databases"][0]["pass"]
    assert shown["databases"][0]["pass"] == "******"
    assert password not in json.dumps(shown)
    assert shown["databases"][0]["dsn"].startswith("postgres://kubexdb_adm:***@")
    assert shown["databases"][0]["options"]["sslmode"] == "disable"


def test_mask_document_keeps_plain_fields() -> None:
    masked = cli._mask_document({"user": "adm", "password": "x", "options": {"token": "t", "pool_size": 3}})

    assert masked == {"user": "adm", "password": "******", "options": {"token": "******", "pool_size": 3}}


def test_engine_errors_exit_with_one(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    async def _unreachable(self: Any) -> None:
        raise EngineUnavailable("engine down")

    monkeypatch.setattr(cli.ContainerEngineAdapter, "initialize", _unreachable)

    assert cli.main(["docker", "list", "--config-file", str(tmp_path / "c.json")]) == 1


def test_env_and_volume_parsing() -> None:
    assert cli._parse_env(["A=1", "B=x=y"]) == {"A": "1", "B": "x=y"}
    assert cli._parse_volume("/data:/var/lib/data:ro").mode == "ro"
    with pytest.raises(SystemExit):
        cli._parse_env(["broken"])
    with pytest.raises(SystemExit):
        cli._parse_volume("only-one")


def test_subcommands_accept_common_flags() -> None:
    parser = cli.build_parser()

    args = parser.parse_args(["database", "migrate", "--dry-run", "-d", "--config-file", "x.json"])

    assert args.func is cli.cmd_database_migrate
    assert args.dry_run and args.debug
    assert args.config_file == "x.json"
    assert not args.keep_alive


def test_dotenv_in_working_directory_is_read(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    target = tmp_path / "from-dotenv.json"
    (tmp_path / ".env").write_text(f"KUBEXDB_HIDEBANNER=1\nKUBEXDB_CONFIGFILE={target}\n", encoding="utf-8")

    try:
        assert cli.main(["config"]) == 0
    finally:
        os.environ.pop("KUBEXDB_CONFIGFILE", None)

    assert capsys.readouterr().out.strip() == str(target.absolute())
    assert target.is_file()


def test_explicit_env_file_is_read(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    target = tmp_path / "explicit.json"
    env_file = tmp_path / "custom.env"
    env_file.write_text(f"KUBEXDB_CONFIGFILE={target}\n", encoding="utf-8")

    try:
        assert cli.main(["config", "--env-file", str(env_file)]) == 0
    finally:
        os.environ.pop("KUBEXDB_CONFIGFILE", None)

    assert capsys.readouterr().out.strip() == str(target.absolute())


def test_docker_commands_close_the_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    client = FakeDockerClient()
    monkeypatch.setattr(cli, "ContainerEngineAdapter", lambda: ContainerEngineAdapter(client))

    assert cli.main(["docker", "list", "--config-file", str(tmp_path / "c.json")]) == 0

    assert client.pings == 1
    assert client.closed
