# File: rustowl_client/config/loader.py

"""Loads, merges and persists the client configuration.

Configuration is layered the same way on every load:

1. Built-in defaults (`DEFAULT_CONFIG`), so every key always has a value.
2. A YAML file (`config.yml`). Its path is taken from the
   `RUSTOWL_CLIENT_CONFIG_FILE` environment variable, otherwise the user
   config directory (`~/.config/rustowl-client/config.yml`) if that file
   exists, otherwise a project root found by searching upwards for
   `pyproject.toml`, and finally the current working directory. When none
   of these exists, the user config path is used so edits have a home.
3. Variables from a `.env` file (via `python-dotenv`).
4. Typed environment variable overrides (`ENV_OVERRIDES`).

The merged result is wrapped by `ConfigStore`, which offers dotted-key access,
persists edits made by commands (for example the display mode cycle) back to
the YAML file, and notifies subscribers about changed keys.
"""

import copy
import functools
import logging
import os
import pathlib
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "config.yml"
PROJECT_ROOT_MARKER = "pyproject.toml"  # File to indicate project root
USER_CONFIG_DIR = pathlib.Path.home() / ".config" / "rustowl-client"

# Environment variable for specifying the config file path explicitly
ENV_CONFIG_PATH = "RUSTOWL_CLIENT_CONFIG_FILE"

DEFAULT_CONFIG: Dict[str, Any] = {
    "server": {
        "path": "",
        "required_version": "1.0.0",
        "repo_url": "https://github.com/wvhulle/rustowl.git",
        "cache_dir": str(pathlib.Path.home() / ".cache" / "rustowl"),
        "install_dir": str(pathlib.Path.home() / ".cargo" / "bin"),
        "request_timeout": 30,
        "install_timeout": 1800,
    },
    "display": {
        "mode": "selected",
        "delay_ms": 500,
        "language_id": "rust",
    },
    "decoration": {
        "underline_thickness": "2",
        "lifetime_color": "hsla(125, 80%, 60%, 0.6)",
        "move_call_color": "hsla(35, 80%, 60%, 0.6)",
        "immutable_borrow_color": "hsla(230, 80%, 60%, 0.6)",
        "mutable_borrow_color": "hsla(300, 80%, 60%, 0.6)",
        "outlive_color": "hsla(0, 80%, 60%, 0.6)",
        "shared_mut_color": "",
        "highlight_background": False,
    },
}


def _to_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# Format: (ENV_VARIABLE_NAME, [list, of, config, keys], target_type_for_conversion)
ENV_OVERRIDES: List[Tuple[str, List[str], Type]] = [
    ("RUSTOWL_SERVER_PATH", ["server", "path"], str),
    ("RUSTOWL_REQUIRED_VERSION", ["server", "required_version"], str),
    ("RUSTOWL_REPO_URL", ["server", "repo_url"], str),
    ("RUSTOWL_CACHE_DIR", ["server", "cache_dir"], str),
    ("RUSTOWL_INSTALL_DIR", ["server", "install_dir"], str),
    ("RUSTOWL_REQUEST_TIMEOUT", ["server", "request_timeout"], float),
    ("RUSTOWL_DISPLAY_MODE", ["display", "mode"], str),
    ("RUSTOWL_DISPLAY_DELAY", ["display", "delay_ms"], int),
    ("RUSTOWL_HIGHLIGHT_BACKGROUND", ["decoration", "highlight_background"], _to_bool),
]


def _find_project_root(
    start_path: pathlib.Path, marker_filename: str = PROJECT_ROOT_MARKER
) -> Optional[pathlib.Path]:
    """Searches upward from start_path for a directory containing marker_filename.

    Args:
        start_path: The directory path to begin the search from.
        marker_filename: The filename to look for as the project root indicator.

    Returns:
        The Path object for the directory containing the marker file, or None if
        not found before reaching the filesystem root.
    """
    current_path = start_path.resolve()
    while True:
        if (current_path / marker_filename).is_file():
            logger.debug(f"Found project root marker '{marker_filename}' at '{current_path}'")
            return current_path
        parent_path = current_path.parent
        if parent_path == current_path:
            logger.debug(f"Project root marker '{marker_filename}' not found searching from '{start_path}'.")
            return None
        current_path = parent_path


def _update_nested_dict(d: Dict[str, Any], keys: List[str], value: Any) -> bool:
    """Sets a value in a nested dictionary based on a list of keys.

    Creates intermediate dictionaries if they don't exist. Logs an error
    if a path conflict occurs (e.g., expecting a dict but finding a non-dict).

    Args:
        d: The dictionary to update.
        keys: A list of strings representing the path to the key.
        value: The value to set at the specified path.

    Returns:
        True if the value was set, False on a structure conflict.
    """
    node = d
    for key in keys[:-1]:
        child = node.setdefault(key, {})
        if not isinstance(child, dict):
            logger.error(
                f"Config structure conflict: Expected dict at '{key}' "
                f"while setting path '{'.'.join(keys)}', but found type {type(child)}. "
                f"Cannot apply value '{value}'."
            )
            return False
        node = child
    node[keys[-1]] = value
    return True


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Returns a copy of base with overlay merged in, recursing into dicts."""
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def resolve_config_path() -> pathlib.Path:
    """Determines which YAML file backs the configuration.

    Returns:
        The resolved path. The file itself may not exist yet.
    """
    env_config_path_str = os.getenv(ENV_CONFIG_PATH)
    if env_config_path_str:
        logger.info(f"Using config path from environment variable {ENV_CONFIG_PATH}: '{env_config_path_str}'")
        return pathlib.Path(env_config_path_str).expanduser().resolve()

    user_config = USER_CONFIG_DIR / DEFAULT_CONFIG_FILENAME
    if user_config.is_file():
        return user_config.resolve()

    project_root = _find_project_root(start_path=pathlib.Path(__file__).parent)
    if project_root and (project_root / DEFAULT_CONFIG_FILENAME).is_file():
        logger.info(f"Determined project root: '{project_root}'")
        return (project_root / DEFAULT_CONFIG_FILENAME).resolve()

    cwd_config = pathlib.Path.cwd() / DEFAULT_CONFIG_FILENAME
    if cwd_config.is_file():
        logger.info(f"Using config file from the current working directory: '{cwd_config}'")
        return cwd_config.resolve()

    logger.debug("No config file found, edits will be written to the user config directory.")
    return user_config.resolve()


def _read_yaml(path: pathlib.Path) -> Dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            loaded_yaml = yaml.safe_load(f)
        logger.info(f"Loaded config from '{path}'.")
        return loaded_yaml if isinstance(loaded_yaml, dict) else {}
    except FileNotFoundError:
        logger.debug(f"Config file '{path}' not found, using defaults.")
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML '{path}': {e}", exc_info=True)
    return {}


def load_configuration(
    config_path: Optional[pathlib.Path] = None,
    dotenv_path: Optional[str] = None,
    env_override_map: List[Tuple[str, List[str], Type]] = ENV_OVERRIDES,
) -> Dict[str, Any]:
    """Loads configuration layers: defaults, YAML file and env overrides.

    Args:
        config_path: Explicit YAML path. If None, `resolve_config_path` decides.
        dotenv_path: Explicit path to the .env file. If None, `python-dotenv`
            searches standard locations.
        env_override_map: Which environment variables override which keys.

    Returns:
        A dictionary containing the fully merged configuration. Defaults are
        always present even when the YAML file is missing or broken.
    """
    path = config_path or resolve_config_path()
    config = _deep_merge(DEFAULT_CONFIG, _read_yaml(path))

    try:
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.debug(".env file loaded into environment variables.")
    except OSError as e:
        logger.error(f"Error loading .env file: {e}", exc_info=True)

    override_count = 0
    for env_var, config_keys, target_type in env_override_map:
        env_value_str = os.getenv(env_var)
        if env_value_str is None:
            continue
        try:
            typed_value = target_type(env_value_str)
        except ValueError:
            logger.warning(
                f"Value override failed: Cannot convert env var '{env_var}' "
                f"value '{env_value_str}' to target type {getattr(target_type, '__name__', target_type)}."
            )
            continue
        if _update_nested_dict(config, config_keys, typed_value):
            logger.info(f"Applied value override: '{'.'.join(config_keys)}' = '{typed_value}' (from env '{env_var}')")
            override_count += 1
    if override_count:
        logger.info(f"Applied {override_count} environment variable value override(s).")

    return config


ConfigObserver = Callable[[str], None]


def _flatten(d: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Maps every leaf of a nested dict to its dotted key."""
    flat: Dict[str, Any] = {}
    for key, value in d.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{dotted}."))
        else:
            flat[dotted] = value
    return flat


class ConfigStore:
    """Merged configuration plus persistence of command-driven edits.

    Edits made to the YAML file by hand are picked up by `reload`, which is
    cheap when the file has not changed.

    Attributes:
        path: The YAML file that edits are written to.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None, path: Optional[pathlib.Path] = None):
        self.path = path
        self._data: Dict[str, Any] = _deep_merge(DEFAULT_CONFIG, data or {})
        self._observers: List[ConfigObserver] = []
        self._reader: Callable[[], Dict[str, Any]] = functools.partial(self._merge_file, copy.deepcopy(data or {}))
        self._stamp = self._file_stamp()

    @classmethod
    def load(cls, config_path: Optional[pathlib.Path] = None, dotenv_path: Optional[str] = None) -> "ConfigStore":
        path = config_path or resolve_config_path()
        store = cls(load_configuration(path, dotenv_path=dotenv_path), path=path)
        store._reader = functools.partial(load_configuration, path, dotenv_path)
        return store

    def _merge_file(self, base: Dict[str, Any]) -> Dict[str, Any]:
        if self.path is None:
            return base
        return _deep_merge(base, _read_yaml(self.path))

    def _file_stamp(self) -> Optional[Tuple[int, int]]:
        if self.path is None:
            return None
        try:
            st = self.path.stat()
        except OSError:
            return None
        return st.st_mtime_ns, st.st_size

    def get(self, key: str, default: Any = None) -> Any:
        """Reads a dotted key such as ``display.mode``."""
        node: Any = self._data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def as_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)

    def subscribe(self, observer: ConfigObserver) -> Callable[[], None]:
        """Registers an observer called with each changed dotted key.

        Returns:
            A callable that removes the observer again.
        """
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def _notify(self, key: str) -> None:
        for observer in list(self._observers):
            try:
                observer(key)
            except Exception as e:
                logger.exception(f"Configuration observer failed for '{key}': {e}")

    def reload(self) -> List[str]:
        """Re-reads the configuration if the YAML file changed on disk.

        The file's modification time and size are compared with the last
        read or write, so calling this before every use is cheap. Values set
        with ``persist=False`` do not survive a reload.

        Returns:
            The dotted keys whose value changed, sorted. Observers are called
            once for each of them.
        """
        stamp = self._file_stamp()
        if stamp == self._stamp:
            return []
        self._stamp = stamp
        fresh = _deep_merge(DEFAULT_CONFIG, self._reader())
        old_flat, new_flat = _flatten(self._data), _flatten(fresh)
        changed = sorted(k for k in old_flat.keys() | new_flat.keys() if old_flat.get(k) != new_flat.get(k))
        self._data = fresh
        if changed:
            logger.info(f"Configuration file '{self.path}' changed: {', '.join(changed)}")
        for key in changed:
            self._notify(key)
        return changed

    def update(self, key: str, value: Any, persist: bool = True) -> None:
        """Sets a dotted key, persists it to the YAML file and notifies observers.

        Only the touched key is written to the file; values that came from
        defaults or environment overrides stay out of it.

        Args:
            key: Dotted configuration key.
            value: New value.
            persist: Write the change to `self.path` when True.

        Raises:
            ValueError: If the key collides with a non-mapping value.
        """
        keys = key.split(".")
        if not _update_nested_dict(self._data, keys, value):
            raise ValueError(f"Cannot set configuration key '{key}'.")
        if persist and self.path is not None:
            self._persist(keys, value)
        self._notify(key)

    def _persist(self, keys: List[str], value: Any) -> None:
        if self.path is None:
            return
        on_disk = _read_yaml(self.path)
        _update_nested_dict(on_disk, keys, value)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                yaml.safe_dump(on_disk, f, default_flow_style=False, sort_keys=True)
            logger.debug(f"Persisted '{'.'.join(keys)}' to '{self.path}'.")
        except OSError as e:
            logger.error(f"Failed to persist configuration to '{self.path}': {e}")
        # Our own write is not an external edit.
        self._stamp = self._file_stamp()
