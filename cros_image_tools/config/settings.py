"""Settings storage for tool configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "CROS_IMAGE_TOOLS_SETTINGS_PATH",
        Path.home() / ".config" / "cros-image-tools" / "settings.json",
    )
)

# Partition tool names understood by the locator, in default priority order
DEFAULT_PARTITION_TOOLS = ["cgpt", "parted", "unpack_partitions"]

DEFAULT_SETTINGS: dict[str, Any] = {
    "use_sudo": True,
    "show_progress": False,
    "partition_tools": list(DEFAULT_PARTITION_TOOLS),
    "kernel_config_tool": "dump_kernel_config",
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def save_settings() -> None:
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(
        json.dumps(settings_store.values, indent=2, sort_keys=True),
        encoding="utf-8",
    )


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value
    save_settings()


def get_bool(key: str, default: bool = False) -> bool:
    return bool(get_setting(key, default))


def set_bool(key: str, value: bool) -> None:
    set_setting(key, bool(value))


def get_partition_tools() -> list[str]:
    """Return the configured partition tool order, ignoring unknown names."""
    tools = get_setting("partition_tools", DEFAULT_PARTITION_TOOLS)
    if not isinstance(tools, (list, tuple)):
        return list(DEFAULT_PARTITION_TOOLS)
    return [str(tool) for tool in tools if tool in DEFAULT_PARTITION_TOOLS]


load_settings()
