from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap

SETTINGS_FILENAME = "megamenu.yml"

yaml = YAML()


@dataclass
class Settings:
    store_path: Path
    backend_url: str | None = None
    commit_delay: float = 0.1
    http_timeout: float = 10.0
    backup_keep: int = 5


def _resolve_path(raw: str | os.PathLike[str], base: Path) -> Path:
    p = Path(raw)
    return p if p.is_absolute() else (base / p)


def _settings_path() -> Path:
    env = os.environ.get("MEGAMENU_SETTINGS")
    if env:
        return _resolve_path(env, Path.cwd())
    return Path.cwd() / SETTINGS_FILENAME


def _load_settings_file(path: Path) -> CommentedMap:
    if not path.exists():
        return CommentedMap()
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.load(handle) or CommentedMap()
    except Exception as exc:
        raise ValueError(f"Failed to read {path.name}: {exc}") from exc
    if not isinstance(data, CommentedMap):
        raise TypeError(f"{path.name} must contain a mapping at the top level.")
    return data


def _pick(name: str, env_name: str, data: CommentedMap, default: Any) -> Any:
    env = os.environ.get(env_name)
    if env not in (None, ""):
        return env
    value = data.get(name)
    return default if value is None else value


def _number(name: str, raw: Any, cast: type) -> Any:
    try:
        value = cast(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for {name}: {raw!r}") from None
    if value < 0:
        raise ValueError(f"Invalid value for {name}: {raw!r}")
    return value


def load_settings() -> Settings:
    """Settings from the environment, then ``megamenu.yml``, then defaults."""
    settings_path = _settings_path()
    data = _load_settings_file(settings_path)
    base = settings_path.parent

    store_raw = _pick("store_path", "MEGAMENU_STORE_PATH", data, "megamenu-store.yml")
    backend_url = _pick("backend_url", "MEGAMENU_BACKEND_URL", data, None)
    return Settings(
        store_path=_resolve_path(str(store_raw), base),
        backend_url=(str(backend_url).strip() or None) if backend_url is not None else None,
        commit_delay=_number("commit_delay", _pick("commit_delay", "MEGAMENU_COMMIT_DELAY", data, 0.1), float),
        http_timeout=_number("http_timeout", _pick("http_timeout", "MEGAMENU_HTTP_TIMEOUT", data, 10.0), float),
        backup_keep=_number("backup_keep", _pick("backup_keep", "MEGAMENU_BACKUP_KEEP", data, 5), int),
    )
