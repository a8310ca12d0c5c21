import json
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import yaml


class LeakPolicy(Enum):
    """What ``teardown`` does about handles that are still live."""

    IGNORE = "ignore"
    """
    Drop them silently.
    """

    WARN = "warn"
    """
    Log a warning naming the number of leaked handles, then drop them.
    """

    RAISE = "raise"
    """
    Raise ``RuntimeStateError``. The runtime is still torn down.
    """


@dataclass(kw_only=True, frozen=True, slots=True, weakref_slot=True)
class BridgeConfig:
    search_paths: tuple[Path, ...] = ()
    """
    Directories searched, in order, for relative script paths that do not exist
    relative to the working directory.
    """

    module_prefix: str = "scriptbridge_script_"
    """
    Prefix of the module names given to loaded scripts.
    """

    leak_policy: LeakPolicy = LeakPolicy.WARN


def _parse_search_paths(value: Any, base_directory: Path) -> tuple[Path, ...]:
    if not isinstance(value, list):
        raise ValueError(f"search_paths must be a list, got {type(value).__name__}")
    paths: list[Path] = []
    for element in value:
        if not isinstance(element, str):
            raise ValueError(
                f"search_paths element must be a string, got {type(element).__name__}: {element!r}"
            )
        path = Path(element)
        paths.append(path if path.is_absolute() else base_directory / path)
    return tuple(paths)


def config_from_mapping(data: Mapping[str, Any], base_directory: Path) -> BridgeConfig:
    """
    Build a :class:`BridgeConfig` from parsed configuration data.

    :param data: The top-level mapping of a configuration file.
    :param base_directory: Directory that relative search paths are resolved against.
    :raises ValueError: On unknown keys or wrongly typed values.
    """
    unknown = set(data) - {"search_paths", "module_prefix", "leak_policy"}
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    options: dict[str, Any] = {}
    if "search_paths" in data:
        options["search_paths"] = _parse_search_paths(data["search_paths"], base_directory)
    if "module_prefix" in data:
        module_prefix = data["module_prefix"]
        if not isinstance(module_prefix, str) or not module_prefix.isidentifier():
            raise ValueError(f"module_prefix must be an identifier, got {module_prefix!r}")
        options["module_prefix"] = module_prefix
    if "leak_policy" in data:
        try:
            options["leak_policy"] = LeakPolicy(data["leak_policy"])
        except ValueError as e:
            raise ValueError(
                f"leak_policy must be one of {', '.join(policy.value for policy in LeakPolicy)}, "
                f"got {data['leak_policy']!r}"
            ) from e
    return BridgeConfig(**options)


def load_config(file_path: Path) -> BridgeConfig:
    """
    Load a configuration file (YAML/JSON/TOML).

    :param file_path: Path to the configuration file.
    :return: The parsed configuration.
    :raises ValueError: If the file format is not recognized or the content is invalid.
    """
    content = file_path.read_text(encoding="utf-8")

    suffix = file_path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = yaml.safe_load(content)
    elif suffix == ".json":
        data = json.loads(content)
    elif suffix == ".toml":
        data = tomllib.loads(content)
    else:
        raise ValueError(
            f"Unrecognized configuration format: {file_path.name}. "
            f"Expected .yaml, .yml, .json, or .toml"
        )

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(
            f"Configuration must contain a mapping at top level, got {type(data).__name__}"
        )

    return config_from_mapping(data, base_directory=file_path.parent)
