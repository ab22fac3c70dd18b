"""
tests/test_config.py — YAML configuration loading
"""

from __future__ import annotations

from pathlib import Path

import pytest

from veebee.api.deps import get_config
from veebee.config import load_config

MINIMAL = """\
bot_prefix: "!"
admin_role_id: 30
premium_guild_id: 10
premium_role_id: 20
premium_role_ids: [21, 22]
"""

EXAMPLE = Path(__file__).parent.parent / "config.yaml.example"


class TestLoadConfig:
    def test_minimal_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(MINIMAL, encoding="utf-8")

        cfg = load_config(path)

        assert cfg.premium_guild_id == 10
        assert cfg.premium_role_id == 20
        assert cfg.premium_role_ids == (21, 22)
        assert cfg.default_duration_days == 30
        assert cfg.sync_interval_minutes == 60
        assert cfg.sync_batch_size == 100
        assert cfg.api_port == 3000

    def test_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            MINIMAL + "sync_batch_size: 25\nsync_batch_delay_seconds: 0.5\napi_port: 8080\n",
            encoding="utf-8",
        )

        cfg = load_config(path)

        assert cfg.sync_batch_size == 25
        assert cfg.sync_batch_delay_seconds == 0.5
        assert cfg.api_port == 8080

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_missing_required_key(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text('bot_prefix: "!"\n', encoding="utf-8")
        with pytest.raises(KeyError):
            load_config(path)

    def test_synced_role_in_allow_list_is_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(MINIMAL.replace("[21, 22]", "[20, 21]"), encoding="utf-8")
        with pytest.raises(ValueError, match="premium_role_id 20"):
            load_config(path)

    def test_example_file_loads(self):
        cfg = load_config(EXAMPLE)
        assert cfg.premium_role_id not in cfg.premium_role_ids
        assert cfg.premium_role_ids


# ===========================================================================
# API dependency
# ===========================================================================
class TestGetConfig:
    def test_reads_working_directory_once(self, tmp_path, monkeypatch):
        (tmp_path / "config.yaml").write_text(MINIMAL, encoding="utf-8")
        monkeypatch.chdir(tmp_path)
        get_config.cache_clear()
        try:
            first = get_config()
            (tmp_path / "config.yaml").unlink()
            assert get_config() is first
            assert first.premium_role_ids == (21, 22)
        finally:
            get_config.cache_clear()
