"""Loading, layering and persisting of kernel configuration documents.

TOML documents are handled with :mod:`tomlkit` so that comments survive the
round trip. The kernel reads the trailing type notes (``# uint``, ``# str``,
``# [(uint, uint)]``) of ``axconfig.toml`` to decide how each value is typed,
so they must be carried from the built-in fragments into the written file.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Sequence, Tuple

import json

import tomlkit
import yaml
from tomlkit.exceptions import TOMLKitError
from tomlkit.items import Item
from tomlkit.toml_document import TOMLDocument


ConfigLoader = Callable[[Any], Mapping[str, Any]]

CONFIG_FILE_NAME = "axconfig.toml"
"""Name of the merged configuration file inside the binary directory."""

SMP_KEY = "smp"
"""Global key carrying the number of CPUs."""


class ConfigError(RuntimeError):
    """Raised when a configuration document cannot be read, merged or written."""


class MergeConflict(ValueError):
    """Raised when an overlay replaces a table with a value or the reverse."""

    def __init__(self, key_path: Sequence[str]):
        self.key_path = tuple(key_path)
        super().__init__(f"cannot replace `{'.'.join(self.key_path)}`: table and value types differ")


FILE_LOADERS: Dict[str, ConfigLoader] = {
    ".toml": lambda stream: tomlkit.load(stream),
    ".json": lambda stream: json.load(stream),
    ".yaml": lambda stream: yaml.safe_load(stream),
    ".yml": lambda stream: yaml.safe_load(stream),
}
"""Mapping of file suffixes to loader callables.

Files with any other suffix are read as TOML.
"""


def load_config_file(path: Path) -> Mapping[str, Any]:
    """Load and decode a configuration mapping from ``path``.

    Raises :class:`ConfigError` naming ``path`` when the file cannot be read
    or does not decode to a mapping.
    """

    loader = FILE_LOADERS.get(path.suffix.lower(), FILE_LOADERS[".toml"])

    try:
        handle = path.open("r", encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to read config file `{path}`: {exc.strerror or exc}") from exc

    with handle:
        try:
            data = loader(handle)
        except (TOMLKitError, json.JSONDecodeError, yaml.YAMLError, UnicodeDecodeError) as exc:
            raise ConfigError(f"failed to parse config file `{path}`: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"failed to parse config file `{path}`: the document root must be a table")

    return data


def overlay_config(
    target: MutableMapping[str, Any],
    overlay: Mapping[str, Any],
    _path: Tuple[str, ...] = (),
) -> None:
    """Apply ``overlay`` onto ``target`` in place, keys in ``overlay`` winning.

    Tables are merged key by key; every other value, lists included, is
    replaced as a whole. A replaced value keeps the trailing comment of the
    value it replaces unless it carries its own.
    """

    for key, value in overlay.items():
        key_path = (*_path, str(key))
        existing = target.get(key)
        existing_is_table = isinstance(existing, Mapping)
        value_is_table = isinstance(value, Mapping)
        if existing_is_table and value_is_table:
            overlay_config(existing, value, key_path)
        elif key in target and existing_is_table != value_is_table:
            raise MergeConflict(key_path)
        else:
            target[key] = value if isinstance(value, Item) else _copy_value(value)


def _copy_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _copy_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_copy_value(item) for item in value]
    return value


def copy_document(config: Mapping[str, Any]) -> TOMLDocument:
    """Return an independent TOML document holding ``config``, comments included."""

    return tomlkit.parse(dump_config(config))


def merge_config(base: Mapping[str, Any], overrides: Iterable[Path], cpus: int) -> TOMLDocument:
    """Layer ``overrides`` on top of ``base`` and force the CPU count.

    ``base`` is the built-in document of the selected platform. Override files
    are applied in order, later files winning. The global ``smp`` key always
    ends up equal to ``cpus``, whatever the overlays say.
    """

    config = copy_document(base)
    for path in overrides:
        overlay = load_config_file(Path(path))
        try:
            overlay_config(config, overlay)
        except (MergeConflict, TOMLKitError, TypeError) as exc:
            raise ConfigError(f"failed to merge config file `{path}`: {exc}") from exc
    if isinstance(config.get(SMP_KEY), Mapping):
        raise ConfigError(f"global key `{SMP_KEY}` must not be a table")
    config[SMP_KEY] = cpus
    return config


def dump_config(config: Mapping[str, Any]) -> str:
    """Serialize ``config`` back to TOML."""

    try:
        return tomlkit.dumps(config)
    except (TOMLKitError, TypeError) as exc:
        raise ConfigError(f"failed to serialize config: {exc}") from exc


def write_if_changed(path: Path, content: str) -> bool:
    """Write ``content`` to ``path`` unless the file already holds it.

    Returns ``True`` when the file was (re)written. Leaving an identical file
    untouched keeps its modification time, so cargo does not rebuild.
    """

    if path.exists():
        try:
            if path.read_text(encoding="utf-8") == content:
                return False
        except (OSError, UnicodeDecodeError):
            pass  # unreadable content is replaced below
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to write config file `{path}`: {exc}") from exc
    return True


__all__ = [
    "CONFIG_FILE_NAME",
    "ConfigError",
    "ConfigLoader",
    "FILE_LOADERS",
    "MergeConflict",
    "SMP_KEY",
    "copy_document",
    "dump_config",
    "load_config_file",
    "merge_config",
    "overlay_config",
    "write_if_changed",
]
