"""
Tests for configuration, logging setup and the command-line entrypoint.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import main
from logging_config import setup_logging
from settings import DEFAULT_TEMPLATES, Settings, load_settings


@pytest.fixture
def env(tmp_path, monkeypatch):
    for name in ("SAI_API_KEY", "SMARTDOC_AI_PROVIDER", "SMARTDOC_PORT", "PORT", "SAI_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SMARTDOC_DATA_DIR", str(tmp_path / "data"))
    return tmp_path


# ── Settings ──────────────────────────────────────────────────────────────────

class TestSettings:
    def test_defaults(self, env):
        settings = load_settings()
        assert settings.data_dir == env / "data"
        assert settings.port == 3001
        assert settings.sai_timeout is None
        assert settings.templates == DEFAULT_TEMPLATES
        assert not settings.ai_configured

    def test_environment_overrides(self, env, monkeypatch):
        monkeypatch.setenv("SAI_API_KEY", "key")
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("SAI_TIMEOUT", "12.5")
        monkeypatch.setenv("SAI_BASE_URL", "https://sai.example/api/templates/")
        monkeypatch.setenv("SMARTDOC_AI_PROVIDER", "SAI")
        settings = load_settings()
        assert settings.port == 8080
        assert settings.sai_timeout == 12.5
        assert settings.sai_base_url == "https://sai.example/api/templates"
        assert settings.ai_provider == "sai"
        assert settings.ai_configured

    def test_env_file(self, env, monkeypatch):
        env_file = env / ".env"
        env_file.write_text("SAI_TEMPLATE_DVP=custom-template\n", encoding="utf-8")
        monkeypatch.delenv("SAI_TEMPLATE_DVP", raising=False)
        settings = load_settings(str(env_file))
        assert settings.templates["dvp"] == "custom-template"

    def test_settings_are_frozen(self):
        with pytest.raises(Exception):
            Settings().port = 1


# ── Logging ───────────────────────────────────────────────────────────────────

class TestLogging:
    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in handlers:
            root.addHandler(handler)
        root.setLevel(level)

    def test_console_only(self):
        setup_logging("DEBUG")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1

    def test_file_handler(self, tmp_path):
        setup_logging("INFO", tmp_path / "logs")
        logging.getLogger("smartdoc.test").info("hello file")
        files = list((tmp_path / "logs").glob("smartdoc_*.log"))
        assert len(files) == 1
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "hello file" in files[0].read_text(encoding="utf-8")


# ── CLI ───────────────────────────────────────────────────────────────────────

class TestCLI:
    @pytest.fixture(autouse=True)
    def quiet_logging(self, monkeypatch):
        monkeypatch.setattr(main, "setup_logging", MagicMock())

    def _seed(self, capsys) -> dict:
        main.main(["seed"])
        return json.loads(capsys.readouterr().out)

    def test_seed_creates_linked_example(self, env, capsys):
        ids = self._seed(capsys)
        assert set(ids) == {"edps", "dvp", "dfmea"}
        stored = json.loads((env / "data" / "dfmea.json").read_text(encoding="utf-8"))
        assert stored[0]["rpn"] == 108
        assert stored[0]["preventionControl"]["edpsId"] == ids["edps"]

    @pytest.mark.parametrize("fmt", ["xlsx", "pdf", "html"])
    def test_export_one(self, env, capsys, fmt):
        ids = self._seed(capsys)
        out = env / "out"
        main.main(["export", ids["dfmea"], "--format", fmt, "--output-dir", str(out)])
        assert (out / f"DFMEA_{ids['dfmea']}.{fmt}").stat().st_size > 0

    def test_export_all(self, env, capsys):
        self._seed(capsys)
        main.main(["export-all", "--format", "xlsx", "--output-dir", str(env / "out")])
        assert (env / "out" / "DFMEA_All.xlsx").exists()
        assert "Total entries  : 1" in capsys.readouterr().err

    def test_unknown_id_exits_with_error(self, env, capsys):
        with pytest.raises(SystemExit) as exc:
            main.main(["export", "ghost", "--output-dir", str(env / "out")])
        assert exc.value.code == 1
        assert "ERROR:" in capsys.readouterr().err

    def test_generate_without_key(self, env, capsys):
        with pytest.raises(SystemExit):
            main.main(["generate", "edps", "bolt torque norm"])
        assert "SAI_API_KEY" in capsys.readouterr().err

    def test_chat_session_from_stdin(self, env, monkeypatch, capsys):
        answers = iter(["1", "NP-020", "Seal material", "Skip", "Skip", "Skip", "Yes, save it", "Go back to home"])
        monkeypatch.setattr("builtins.input", lambda prompt="": next(answers))
        main.main(["chat", "edps"])
        stored = json.loads((env / "data" / "edps.json").read_text(encoding="utf-8"))
        assert stored[0]["normNumber"] == "NP-020"
        assert "Bye!" in capsys.readouterr().err
