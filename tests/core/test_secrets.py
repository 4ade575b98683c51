from __future__ import annotations

from pathlib import Path

import pytest

from graphsense.core.secrets import ApiKeys, load_api_keys
from graphsense.errors import PreconditionError


def test_load_api_keys_reads_known_keys(tmp_path: Path) -> None:
    secrets = tmp_path / ".env"
    secrets.write_text(
        "# comment\nCO_API_KEY=co-abc\nANTHROPIC_API_KEY=sk-xyz\nUNRELATED=1\n",
        encoding="utf-8",
    )
    keys = load_api_keys(secrets)
    assert keys.co_api_key == "co-abc"
    assert keys.anthropic_api_key == "sk-xyz"
    assert keys.as_env() == {"CO_API_KEY": "co-abc", "ANTHROPIC_API_KEY": "sk-xyz"}


def test_missing_keys_become_empty(tmp_path: Path) -> None:
    secrets = tmp_path / ".env"
    secrets.write_text("ANTHROPIC_API_KEY=sk-only\n", encoding="utf-8")
    keys = load_api_keys(secrets)
    assert keys.co_api_key == ""
    assert keys.as_env() == {"ANTHROPIC_API_KEY": "sk-only"}


def test_missing_file_is_precondition_failure(tmp_path: Path) -> None:
    with pytest.raises(PreconditionError, match="API keys file not found"):
        load_api_keys(tmp_path / "absent.env")


def test_process_environment_is_ignored(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CO_API_KEY", "from-shell")
    secrets = tmp_path / ".env"
    secrets.write_text("", encoding="utf-8")
    assert load_api_keys(secrets).co_api_key == ""


def test_as_env_skips_blank_values() -> None:
    assert ApiKeys(co_api_key="  ", anthropic_api_key="").as_env() == {}
