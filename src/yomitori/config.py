from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .chapters import DEFAULT_COVER_TITLES
from .roles import DEFAULT_ROLE_MODEL, DEFAULT_SKIP_ROLES, Role, RoleModel, load_role_model
from .yomi import SMALL_KANA_EXCEPTIONS

__all__ = ["CONFIG_FILENAME", "BookConfig", "load_book_config"]

CONFIG_FILENAME = "yomitori.json"


@dataclass
class BookConfig:
    """Per-book overrides read from ``yomitori.json`` next to the outputs."""

    role_model: RoleModel = DEFAULT_ROLE_MODEL
    role_model_path: Path | None = None
    skip_roles: frozenset[Role] = DEFAULT_SKIP_ROLES
    cover_titles: frozenset[str] = DEFAULT_COVER_TITLES
    small_kana_exceptions: frozenset[str] = SMALL_KANA_EXCEPTIONS
    source: Path | None = field(default=None, repr=False)


def _string_list(raw: dict[str, Any], key: str, config_path: Path) -> list[str] | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"{config_path.name}: '{key}' must be an array of strings.")
    return value


def load_book_config(output_dir: Path, role_model_path: Path | None = None) -> BookConfig:
    """
    Read ``<output_dir>/yomitori.json``; a missing file means defaults.

    ``role_model_path`` (from the command line) wins over the file's
    ``role_model`` entry. Relative model paths in the file are resolved
    against ``output_dir``.
    """
    config_path = output_dir / CONFIG_FILENAME
    raw: dict[str, Any] = {}
    if config_path.exists():
        try:
            loaded = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ValueError(f"Failed to parse config file: {config_path}") from exc
        if not isinstance(loaded, dict):
            raise ValueError(f"{config_path.name} must contain a JSON object.")
        raw = loaded

    config = BookConfig(source=config_path if config_path.exists() else None)

    model_path = role_model_path
    if model_path is None:
        entry = raw.get("role_model")
        if entry is not None:
            if not isinstance(entry, str) or not entry:
                raise ValueError(f"{config_path.name}: 'role_model' must be a path.")
            model_path = Path(entry)
            if not model_path.is_absolute():
                model_path = output_dir / model_path
    if model_path is not None:
        config.role_model = load_role_model(model_path)
        config.role_model_path = model_path

    skip_roles = _string_list(raw, "skip_roles", config_path)
    if skip_roles is not None:
        try:
            config.skip_roles = frozenset(Role.from_token(token) for token in skip_roles)
        except ValueError as exc:
            raise ValueError(f"{config_path.name}: 'skip_roles': {exc}") from exc

    cover_titles = _string_list(raw, "cover_titles", config_path)
    if cover_titles is not None:
        config.cover_titles = DEFAULT_COVER_TITLES | frozenset(cover_titles)

    exceptions = _string_list(raw, "small_kana_exceptions", config_path)
    if exceptions is not None:
        config.small_kana_exceptions = SMALL_KANA_EXCEPTIONS | frozenset(exceptions)

    return config
