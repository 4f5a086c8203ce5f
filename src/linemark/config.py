"""LinemarkConfig: project-local configuration plus a runtime settings overlay.

Default layout (all relative to the project root):

    linemark.toml         # project config (git-tracked)
    .env                  # optional: LINEMARK_ENCRYPTION_SECRET (gitignore this)
    .linemark/
        store/            # diskcache blob store shared by every window
        settings.json     # runtime overrides (generated secret, `linemark config set`)
        .gitignore        # auto-written: ignores everything in .linemark/

linemark.toml example:

    [linemark]
    name = "my-project"
    # state_dir = ".linemark"     # default
    storage_scope = "per-workspace"   # or "global"
    encryption_enabled = false
    group_sort_order = "name-asc"     # name|count|path - asc|desc
    node_scale = 1.5
    save_delay = 0.5
    auto_detect_changes = true

    [[workspaces]]
    path = "."

    [[workspaces]]
    path = "../shared-lib"

Options resolve in this order: built-in default < linemark.toml < .env
(secret only) < settings.json.
"""

from __future__ import annotations

import fcntl
import json
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from linemark.signals import Signal

logger = logging.getLogger("linemark.config")

_CONFIG_FILENAME = "linemark.toml"
_DEFAULT_STATE_DIR = ".linemark"
_SETTINGS_FILENAME = "settings.json"
_GITIGNORE_CONTENT = "*\n"
_SECRET_ENV = "LINEMARK_ENCRYPTION_SECRET"

SCOPE_GLOBAL = "global"
SCOPE_WORKSPACE = "per-workspace"
STORAGE_SCOPES = (SCOPE_GLOBAL, SCOPE_WORKSPACE)
GROUP_SORT_ORDERS = tuple(f"{by}-{d}" for by in ("name", "count", "path") for d in ("asc", "desc"))

DEFAULTS: dict[str, Any] = {
    "encryption_enabled": False,
    "encryption_secret": "",
    "storage_scope": SCOPE_WORKSPACE,
    "group_sort_order": "name-asc",
    "node_scale": 1.5,
    "save_delay": 0.5,
    "auto_detect_changes": True,
}


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off", ""):
            return False
        msg = f"not a boolean: {value!r}"
        raise ValueError(msg)
    return bool(value)


def _coerce_choice(choices: tuple[str, ...]) -> Any:
    def coerce(value: Any) -> str:
        text = str(value)
        if text not in choices:
            msg = f"expected one of {', '.join(choices)}; got {text!r}"
            raise ValueError(msg)
        return text
    return coerce


def _coerce_non_negative(value: Any) -> float:
    number = float(value)
    if number < 0:
        msg = f"must be >= 0, got {number}"
        raise ValueError(msg)
    return number


_COERCE: dict[str, Any] = {
    "encryption_enabled": _coerce_bool,
    "encryption_secret": str,
    "storage_scope": _coerce_choice(STORAGE_SCOPES),
    "group_sort_order": _coerce_choice(GROUP_SORT_ORDERS),
    "node_scale": _coerce_non_negative,
    "save_delay": _coerce_non_negative,
    "auto_detect_changes": _coerce_bool,
}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class Settings:
    """Recognized options with change notification.

    `changed` fires (option, old, new) after every effective change. When
    overlay_path is set, overrides are persisted there (atomic write under
    flock) so a generated secret survives the process.
    """

    def __init__(self, base: dict[str, Any] | None = None, overlay_path: Path | None = None) -> None:
        self._base = {**DEFAULTS}
        for option, value in (base or {}).items():
            if option in _COERCE:
                self._base[option] = _COERCE[option](value)
        self.overlay_path = overlay_path
        self._overlay = self._read_overlay()
        self.changed = Signal("settings.changed")

    def get(self, option: str) -> Any:
        if option not in DEFAULTS:
            raise KeyError(option)
        return self._overlay.get(option, self._base[option])

    def as_dict(self) -> dict[str, Any]:
        return {option: self.get(option) for option in DEFAULTS}

    def set(self, option: str, value: Any) -> None:
        """Validate, store and announce a new value. Raises ValueError/KeyError."""
        if option not in _COERCE:
            raise KeyError(option)
        new = _COERCE[option](value)
        old = self.get(option)
        self._overlay[option] = new
        self._write_overlay()
        if new != old:
            logger.info("setting changed: %s", option)
            self.changed.emit(option, old, new)

    def reset(self, option: str) -> None:
        """Drop the override for option, falling back to linemark.toml / default."""
        if option not in DEFAULTS:
            raise KeyError(option)
        old = self.get(option)
        self._overlay.pop(option, None)
        self._write_overlay()
        new = self.get(option)
        if new != old:
            self.changed.emit(option, old, new)

    def _read_overlay(self) -> dict[str, Any]:
        path = self.overlay_path
        if path is None or not path.exists():
            return {}
        try:
            with path.open() as f:
                fcntl.flock(f, fcntl.LOCK_SH)
                raw = json.load(f)
        except (json.JSONDecodeError, OSError):
            logger.warning("ignoring unreadable settings file: %s", path)
            return {}
        overlay: dict[str, Any] = {}
        for option, value in raw.items():
            if option not in _COERCE:
                continue
            try:
                overlay[option] = _COERCE[option](value)
            except ValueError:
                logger.warning("ignoring invalid setting %s=%r in %s", option, value, path)
        return overlay

    def _write_overlay(self) -> None:
        path = self.overlay_path
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write to tmp then rename for atomicity
        tmp = path.with_suffix(".json.tmp")
        with tmp.open("w") as f:
            fcntl.flock(f, fcntl.LOCK_EX)
            json.dump(self._overlay, f, indent=2)
        tmp.replace(path)


# ---------------------------------------------------------------------------
# Project config
# ---------------------------------------------------------------------------

@dataclass
class LinemarkConfig:
    """Resolved configuration for a linemark project."""

    root: Path                      # directory that contains linemark.toml
    name: str = ""
    state_dir: Path = field(default_factory=Path)
    workspaces: list[Path] = field(default_factory=list)
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def store_dir(self) -> Path:
        return self.state_dir / "store"

    @property
    def settings_path(self) -> Path:
        return self.state_dir / _SETTINGS_FILENAME

    def ensure_dirs(self) -> None:
        """Create state_dir and store_dir if they don't exist."""
        self.store_dir.mkdir(parents=True, exist_ok=True)
        gitignore = self.state_dir / ".gitignore"
        if not gitignore.exists():
            gitignore.write_text(_GITIGNORE_CONTENT)

    def settings(self) -> Settings:
        return Settings(self.options, overlay_path=self.settings_path)


def _load_env(root: Path) -> dict[str, str]:
    """LINEMARK_* entries of the project's .env; other keys belong to other tools."""
    env_file = root / ".env"
    if not env_file.is_file():
        return {}
    found: dict[str, str] = {}
    for raw in env_file.read_text(encoding="utf-8", errors="replace").splitlines():
        name, sep, value = raw.strip().removeprefix("export ").partition("=")
        name = name.strip()
        if not sep or not name.startswith("LINEMARK_"):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
            value = value[1:-1]
        found[name] = value
    return found


def load_config(root: Path | str | None = None) -> LinemarkConfig:
    """Load linemark.toml from root (or search upward from cwd if root is None)."""
    root_path = _find_root(Path(root).resolve() if root else Path.cwd())
    config_path = root_path / _CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("rb") as f:
            raw = tomllib.load(f)

    section = dict(raw.get("linemark", {}))
    name = section.pop("name", root_path.name)
    state_rel = section.pop("state_dir", _DEFAULT_STATE_DIR)

    options = {k: v for k, v in section.items() if k in DEFAULTS}
    unknown = sorted(set(section) - set(DEFAULTS))
    if unknown:
        logger.warning("unknown options in %s: %s", config_path, ", ".join(unknown))

    # .env overrides linemark.toml for the secret
    env = _load_env(root_path)
    if env.get(_SECRET_ENV):
        options["encryption_secret"] = env[_SECRET_ENV]

    workspaces = [
        (root_path / w.get("path", ".")).resolve()
        for w in raw.get("workspaces", [])
    ] or [root_path]

    return LinemarkConfig(
        root=root_path,
        name=name,
        state_dir=root_path / state_rel,
        workspaces=workspaces,
        options=options,
    )


def _find_root(start: Path) -> Path:
    """Walk upward from start looking for linemark.toml."""
    for directory in (start, *start.parents):
        if (directory / _CONFIG_FILENAME).exists():
            return directory
    return start


def init_config(root: Path, name: str | None = None) -> Path:
    """Write a default linemark.toml at root. Raises if already exists."""
    config_path = root / _CONFIG_FILENAME
    if config_path.exists():
        msg = f"linemark.toml already exists at {config_path}"
        raise FileExistsError(msg)

    project_name = name or root.name
    content = f"""\
[linemark]
name = "{project_name}"
# state_dir = ".linemark"          # default: blob store and runtime settings

# storage_scope = "per-workspace"  # or "global": one store shared by all projects
# encryption_enabled = false       # secret is generated on first use
# group_sort_order = "name-asc"    # name|count|path - asc|desc
# node_scale = 1.5                 # relatedness graph node size factor
# save_delay = 0.5                 # seconds to debounce saves
# auto_detect_changes = true       # re-check bookmarks when `linemark touch` reports a change

# Workspace roots; bookmarks are stored relative to the root that owns them.
[[workspaces]]
path = "."
"""
    config_path.write_text(content)
    return config_path
