# File: tests/unit/config/test_loader_unit.py

import os
import pathlib

import pytest
import yaml

from rustowl_client.config import loader
from rustowl_client.config.loader import (
    DEFAULT_CONFIG,
    ENV_CONFIG_PATH,
    ENV_OVERRIDES,
    ConfigStore,
    _deep_merge,
    _update_nested_dict,
    load_configuration,
    resolve_config_path,
)
from rustowl_client.config.settings import get_decoration_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keeps real environment overrides out of the tests."""
    for env_var, _, _ in ENV_OVERRIDES:
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.delenv(ENV_CONFIG_PATH, raising=False)


@pytest.fixture
def no_dotenv(tmp_path):
    return str(tmp_path / "absent.env")


def write_yaml(path: pathlib.Path, data) -> pathlib.Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


# --- load_configuration ---


def test_defaults_when_file_missing(tmp_path, no_dotenv):
    config = load_configuration(tmp_path / "missing.yml", dotenv_path=no_dotenv)
    assert config == DEFAULT_CONFIG


def test_yaml_values_merge_over_defaults(tmp_path, no_dotenv):
    path = write_yaml(tmp_path / "config.yml", {"display": {"mode": "hover"}, "server": {"path": "/bin/owl"}})
    config = load_configuration(path, dotenv_path=no_dotenv)
    assert config["display"]["mode"] == "hover"
    assert config["display"]["delay_ms"] == 500
    assert config["server"]["path"] == "/bin/owl"
    assert config["server"]["required_version"] == DEFAULT_CONFIG["server"]["required_version"]


def test_broken_yaml_falls_back_to_defaults(tmp_path, no_dotenv):
    path = tmp_path / "config.yml"
    path.write_text("display: [unclosed\n", encoding="utf-8")
    assert load_configuration(path, dotenv_path=no_dotenv) == DEFAULT_CONFIG


@pytest.mark.parametrize(
    "env_var, value, keys, expected",
    [
        ("RUSTOWL_DISPLAY_DELAY", "250", ["display", "delay_ms"], 250),
        ("RUSTOWL_DISPLAY_MODE", "manual", ["display", "mode"], "manual"),
        ("RUSTOWL_REQUEST_TIMEOUT", "2.5", ["server", "request_timeout"], 2.5),
        ("RUSTOWL_HIGHLIGHT_BACKGROUND", "yes", ["decoration", "highlight_background"], True),
        ("RUSTOWL_HIGHLIGHT_BACKGROUND", "off", ["decoration", "highlight_background"], False),
    ],
)
def test_env_overrides_are_typed(monkeypatch, tmp_path, no_dotenv, env_var, value, keys, expected):
    monkeypatch.setenv(env_var, value)
    config = load_configuration(tmp_path / "missing.yml", dotenv_path=no_dotenv)
    assert config[keys[0]][keys[1]] == expected


def test_unconvertible_env_override_is_skipped(monkeypatch, tmp_path, no_dotenv):
    monkeypatch.setenv("RUSTOWL_DISPLAY_DELAY", "soon")
    config = load_configuration(tmp_path / "missing.yml", dotenv_path=no_dotenv)
    assert config["display"]["delay_ms"] == 500


def test_dotenv_values_feed_overrides(monkeypatch, tmp_path):
    # Register the variable with monkeypatch so the value dotenv sets is undone.
    monkeypatch.setenv("RUSTOWL_SERVER_PATH", "")
    monkeypatch.delenv("RUSTOWL_SERVER_PATH")
    env_file = tmp_path / ".env"
    env_file.write_text("RUSTOWL_SERVER_PATH=/from/dotenv/rustowl\n", encoding="utf-8")
    config = load_configuration(tmp_path / "missing.yml", dotenv_path=str(env_file))
    assert config["server"]["path"] == "/from/dotenv/rustowl"


def test_resolve_config_path_prefers_env(monkeypatch, tmp_path):
    target = tmp_path / "custom.yml"
    monkeypatch.setenv(ENV_CONFIG_PATH, str(target))
    assert resolve_config_path() == target.resolve()


# --- Helpers ---


def test_update_nested_dict_creates_intermediate_dicts():
    d = {}
    assert _update_nested_dict(d, ["a", "b", "c"], 1)
    assert d == {"a": {"b": {"c": 1}}}


def test_update_nested_dict_reports_conflict():
    d = {"a": "scalar"}
    assert not _update_nested_dict(d, ["a", "b"], 1)
    assert d == {"a": "scalar"}


def test_deep_merge_does_not_mutate_inputs():
    base = {"a": {"b": 1, "c": 2}}
    overlay = {"a": {"b": 3}}
    merged = _deep_merge(base, overlay)
    assert merged == {"a": {"b": 3, "c": 2}}
    assert base == {"a": {"b": 1, "c": 2}}


# --- ConfigStore ---


def test_store_get_dotted_and_default():
    store = ConfigStore()
    assert store.get("display.mode") == "selected"
    assert store.get("display.nope", "fallback") == "fallback"
    assert store.get("display.mode.deeper", "x") == "x"


def test_store_update_persists_only_touched_key(tmp_path):
    path = write_yaml(tmp_path / "config.yml", {"server": {"path": "/bin/owl"}})
    store = ConfigStore.load(path, dotenv_path=str(tmp_path / "absent.env"))
    store.update("display.mode", "hover")

    on_disk = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert on_disk == {"server": {"path": "/bin/owl"}, "display": {"mode": "hover"}}
    assert store.get("display.mode") == "hover"


def test_store_update_without_persist_leaves_file_alone(tmp_path):
    path = tmp_path / "config.yml"
    store = ConfigStore(path=path)
    store.update("display.mode", "manual", persist=False)
    assert store.get("display.mode") == "manual"
    assert not path.exists()


def test_store_observers_and_unsubscribe(tmp_path):
    store = ConfigStore(path=tmp_path / "config.yml")
    seen = []
    unsubscribe = store.subscribe(seen.append)
    store.update("display.mode", "hover")
    unsubscribe()
    store.update("display.mode", "manual")
    assert seen == ["display.mode"]


def test_store_observer_failure_does_not_block_others(tmp_path):
    store = ConfigStore(path=tmp_path / "config.yml")
    seen = []

    def broken(key):
        raise RuntimeError("observer bug")

    store.subscribe(broken)
    store.subscribe(seen.append)
    store.update("display.delay_ms", 100)
    assert seen == ["display.delay_ms"]


def test_store_update_conflict_raises(tmp_path):
    store = ConfigStore(path=tmp_path / "config.yml")
    with pytest.raises(ValueError):
        store.update("display.mode.sub", "x")


def test_as_dict_is_a_copy():
    store = ConfigStore()
    snapshot = store.as_dict()
    snapshot["display"]["mode"] = "disabled"
    assert store.get("display.mode") == "selected"


def bump_mtime(path: pathlib.Path) -> None:
    """Moves the modification time forward so a rewrite is visible on coarse clocks."""
    st = path.stat()
    os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 2_000_000_000))


def test_store_reload_picks_up_file_edits(tmp_path):
    path = write_yaml(tmp_path / "config.yml", {"decoration": {"lifetime_color": "red"}})
    store = ConfigStore.load(path, dotenv_path=str(tmp_path / "absent.env"))
    seen = []
    store.subscribe(seen.append)

    write_yaml(path, {"decoration": {"lifetime_color": "blue"}, "display": {"mode": "hover"}})
    bump_mtime(path)

    assert store.reload() == ["decoration.lifetime_color", "display.mode"]
    assert get_decoration_config(store).lifetime_color == "blue"
    assert store.get("display.mode") == "hover"
    assert seen == ["decoration.lifetime_color", "display.mode"]


def test_store_reload_without_file_change_is_a_no_op(tmp_path):
    path = write_yaml(tmp_path / "config.yml", {"display": {"mode": "manual"}})
    store = ConfigStore.load(path, dotenv_path=str(tmp_path / "absent.env"))
    seen = []
    store.subscribe(seen.append)

    assert store.reload() == []
    assert seen == []


def test_store_own_writes_are_not_reported_again(tmp_path):
    store = ConfigStore(path=tmp_path / "config.yml")
    seen = []
    store.subscribe(seen.append)

    store.update("display.mode", "hover")

    assert store.reload() == []
    assert seen == ["display.mode"]


def test_store_reload_of_removed_key_restores_default(tmp_path):
    path = write_yaml(tmp_path / "config.yml", {"display": {"delay_ms": 50}})
    store = ConfigStore.load(path, dotenv_path=str(tmp_path / "absent.env"))
    assert store.get("display.delay_ms") == 50

    write_yaml(path, {"display": {"mode": "selected"}})
    bump_mtime(path)

    assert store.reload() == ["display.delay_ms"]
    assert store.get("display.delay_ms") == DEFAULT_CONFIG["display"]["delay_ms"]


def test_resolve_config_path_falls_back_to_cwd(monkeypatch, tmp_path):
    monkeypatch.setattr(loader, "USER_CONFIG_DIR", tmp_path / "no-user-config")
    monkeypatch.setattr(loader, "_find_project_root", lambda start_path: None)
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)

    assert resolve_config_path() == (tmp_path / "no-user-config" / "config.yml").resolve()

    write_yaml(work / "config.yml", {"display": {"mode": "hover"}})
    assert resolve_config_path() == (work / "config.yml").resolve()
