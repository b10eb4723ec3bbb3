from __future__ import annotations

from pathlib import Path
from typing import Dict

import pytest
from pydantic import ValidationError

from wakamiti_cli.config.loader import (
    Endpoint,
    candidate_paths,
    discover_properties_path,
    endpoint_from_properties,
    load_endpoint,
    load_merged_properties,
)
from wakamiti_cli.core.errors import ConfigError

VALID = "server.host=localhost\nserver.port=7264\nserver.auth.origin=tok\n"


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_endpoint_urls() -> None:
    ep = Endpoint(host="example.org", port=8080, origin="tok")
    assert ep.submit_url == "http://example.org:8080/exec"
    assert ep.stream_url == "ws://example.org:8080/exec/out"


def test_endpoint_is_frozen_and_validated() -> None:
    ep = Endpoint(host=" h ", port=1, origin="o")
    assert ep.host == "h"
    with pytest.raises(ValidationError):
        ep.host = "other"  # type: ignore[misc]
    with pytest.raises(ValidationError):
        Endpoint(host="h", port=70000, origin="o")
    with pytest.raises(ValidationError):
        Endpoint(host="   ", port=1, origin="o")


def test_cwd_file_is_found(tmp_path: Path) -> None:
    p = _write(tmp_path / "wakamiti.properties", VALID)
    assert discover_properties_path(cwd=tmp_path, env={}) == p


def test_explicit_path_wins_over_cwd(tmp_path: Path) -> None:
    _write(tmp_path / "wakamiti.properties", VALID)
    explicit = _write(tmp_path / "conf" / "custom.properties", VALID)
    env = {"WAKAMITI_PROPERTIES": "conf/custom.properties"}
    assert discover_properties_path(cwd=tmp_path, env=env) == explicit


def test_explicit_path_must_exist(tmp_path: Path) -> None:
    _write(tmp_path / "wakamiti.properties", VALID)
    with pytest.raises(ConfigError) as ei:
        discover_properties_path(cwd=tmp_path, env={"WAKAMITI_PROPERTIES": "missing.properties"})
    assert ei.value.code == "CONFIG_NOT_FOUND"


def test_home_is_used_when_cwd_has_no_file(tmp_path: Path) -> None:
    cwd = tmp_path / "work"
    cwd.mkdir()
    home_file = _write(tmp_path / "home" / "wakamiti.properties", VALID)
    env = {"WAKAMITI_HOME": str(tmp_path / "home")}
    assert candidate_paths(cwd=cwd, env=env)[:2] == [cwd / "wakamiti.properties", home_file]
    assert discover_properties_path(cwd=cwd, env=env) == home_file


def test_nothing_found(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("sys.argv", [str(tmp_path / "bin" / "wakamiti")])
    with pytest.raises(ConfigError) as ei:
        discover_properties_path(cwd=tmp_path, env={})
    assert ei.value.code == "CONFIG_NOT_FOUND"
    assert "wakamiti.properties" in str(ei.value)


def test_effective_properties_override(tmp_path: Path) -> None:
    main = _write(tmp_path / "wakamiti.properties", VALID + "effective.properties=local.properties\n")
    _write(tmp_path / "local.properties", "server.port=9000\n")
    props = load_merged_properties(main)
    assert props["server.port"] == "9000"
    assert props["server.host"] == "localhost"


def test_effective_properties_missing_is_config_error(tmp_path: Path) -> None:
    main = _write(tmp_path / "wakamiti.properties", VALID + "effective.properties=gone.properties\n")
    with pytest.raises(ConfigError) as ei:
        load_merged_properties(main)
    assert ei.value.code == "CONFIG_EFFECTIVE_UNREADABLE"
    assert "gone.properties" in str(ei.value)


def test_env_overrides_host_and_port() -> None:
    props: Dict[str, str] = {"server.host": "a", "server.port": "1", "server.auth.origin": "o"}
    ep = endpoint_from_properties(props, env={"WAKAMITI_HOST": "b", "WAKAMITI_PORT": "2"})
    assert (ep.host, ep.port, ep.origin) == ("b", 2, "o")


def test_blank_env_values_do_not_override() -> None:
    props = {"server.host": "a", "server.port": "1", "server.auth.origin": "o"}
    ep = endpoint_from_properties(props, env={"WAKAMITI_HOST": "  ", "WAKAMITI_PORT": ""})
    assert (ep.host, ep.port) == ("a", 1)


@pytest.mark.parametrize(
    "props, fragment",
    [
        ({"server.port": "1", "server.auth.origin": "o"}, "server.host is required"),
        ({"server.host": "h", "server.auth.origin": "o"}, "server.port is required"),
        ({"server.host": "h", "server.port": "1"}, "server.auth.origin is required"),
        ({"server.host": "h", "server.port": "http", "server.auth.origin": "o"}, "valid TCP port"),
        ({"server.host": "h", "server.port": "0", "server.auth.origin": "o"}, "valid TCP port"),
        ({"server.host": "h", "server.port": "65536", "server.auth.origin": "o"}, "valid TCP port"),
    ],
)
def test_invalid_configuration(props: Dict[str, str], fragment: str) -> None:
    with pytest.raises(ConfigError) as ei:
        endpoint_from_properties(props, env={})
    assert ei.value.code == "CONFIG_INVALID"
    assert str(ei.value).startswith("invalid configuration: ")
    assert fragment in str(ei.value)


def test_load_endpoint_end_to_end(tmp_path: Path) -> None:
    _write(tmp_path / "wakamiti.properties", VALID)
    ep = load_endpoint(cwd=tmp_path, env={"WAKAMITI_PORT": "8000"})
    assert ep == Endpoint(host="localhost", port=8000, origin="tok")
