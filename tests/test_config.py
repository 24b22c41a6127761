from __future__ import annotations

import json
from pathlib import Path

import pytest

from yomitori.config import CONFIG_FILENAME, load_book_config
from yomitori.roles import DEFAULT_ROLE_MODEL, DEFAULT_SKIP_ROLES, ROLES, Role


def _write_config(output_dir: Path, payload: object) -> Path:
    path = output_dir / CONFIG_FILENAME
    path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
    return path


def _main_only_model() -> dict:
    emit = [0.0] * len(ROLES)
    emit[Role.MAIN.index] = 1.0
    return {"states": ["main"], "init": [1.0], "trans": [[0.9]], "end": [0.1], "emit": [emit]}


def test_missing_config_means_defaults(tmp_path: Path):
    config = load_book_config(tmp_path)

    assert config.role_model is DEFAULT_ROLE_MODEL
    assert config.role_model_path is None
    assert config.skip_roles == DEFAULT_SKIP_ROLES
    assert "表紙" in config.cover_titles
    assert "清" in config.small_kana_exceptions
    assert config.source is None


def test_config_overrides(tmp_path: Path):
    source = _write_config(
        tmp_path,
        {
            "skip_roles": ["cover", "copyright"],
            "cover_titles": ["カバー"],
            "small_kana_exceptions": ["喋"],
        },
    )

    config = load_book_config(tmp_path)

    assert config.skip_roles == {Role.COVER, Role.COPYRIGHT}
    assert config.cover_titles == {"表紙", "カバー"}
    assert {"清", "日和", "喋"} <= config.small_kana_exceptions
    assert config.source == source


def test_relative_role_model_path_resolves_against_output_dir(tmp_path: Path):
    (tmp_path / "models").mkdir()
    (tmp_path / "models" / "main.json").write_text(json.dumps(_main_only_model()), encoding="utf-8")
    _write_config(tmp_path, {"role_model": "models/main.json"})

    config = load_book_config(tmp_path)

    assert config.role_model.states == (Role.MAIN,)
    assert config.role_model_path == tmp_path / "models" / "main.json"


def test_command_line_role_model_wins(tmp_path: Path):
    cli_model = tmp_path / "cli.json"
    cli_model.write_text(json.dumps(_main_only_model()), encoding="utf-8")
    _write_config(tmp_path, {"role_model": "does-not-exist.json"})

    config = load_book_config(tmp_path, cli_model)

    assert config.role_model_path == cli_model
    assert config.role_model.states == (Role.MAIN,)


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        (["not", "an", "object"], "must contain a JSON object"),
        ({"skip_roles": "cover"}, "'skip_roles' must be an array of strings"),
        ({"skip_roles": ["appendix"]}, "'skip_roles': Unknown role"),
        ({"cover_titles": [1, 2]}, "'cover_titles' must be an array of strings"),
        ({"role_model": 3}, "'role_model' must be a path"),
        ({"role_model": "missing.json"}, "Failed to read role model"),
    ],
)
def test_invalid_config(tmp_path: Path, payload: object, message: str):
    _write_config(tmp_path, payload)

    with pytest.raises(ValueError, match=message):
        load_book_config(tmp_path)


def test_unparsable_config(tmp_path: Path):
    (tmp_path / CONFIG_FILENAME).write_text("{oops", encoding="utf-8")

    with pytest.raises(ValueError, match="Failed to parse config file"):
        load_book_config(tmp_path)
