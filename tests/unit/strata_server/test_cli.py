"""Tests for the strata-suggest hook entry point."""

import io
import json
import sys

import pytest
import yaml

from strata_server.cli import suggest_cli


@pytest.fixture
def hook_config(tmp_path, monkeypatch, sample_layers):
    """Config with only the sample base layer, selected via STRATA_CONFIG_PATH."""
    config_path = tmp_path / "strata-config.yaml"
    config_path.write_text(
        yaml.safe_dump(
            {
                "layers": [
                    {"name": "base", "type": "local", "path": str(sample_layers / "base")}
                ],
                "project_layer": {"auto_detect": False},
            }
        )
    )
    monkeypatch.setenv("STRATA_CONFIG_PATH", str(config_path))
    monkeypatch.delenv("STRATA_PROJECT_LAYER_PATH", raising=False)
    monkeypatch.delenv("STRATA_CAPABILITIES", raising=False)
    return config_path


def run_hook(monkeypatch, argv=(), stdin=""):
    monkeypatch.setattr(sys, "argv", ["strata-suggest", *argv])
    monkeypatch.setattr(sys, "stdin", io.StringIO(stdin))
    suggest_cli()


class TestSuggestCli:
    """Tests for suggest_cli."""

    def test_message_from_args(self, hook_config, monkeypatch, capsys):
        run_hook(monkeypatch, argv=["my", "app", "has", "performance", "issues"])

        out = capsys.readouterr().out
        assert '<specialist id="dean-debug"' in out

    def test_message_from_hook_json(self, hook_config, monkeypatch, capsys):
        payload = {"prompt": "designing a new module", "session_id": "abc", "cwd": "/tmp"}

        run_hook(monkeypatch, stdin=json.dumps(payload))

        assert '<specialist id="alex-architect"' in capsys.readouterr().out

    def test_plain_text_stdin(self, hook_config, monkeypatch, capsys):
        run_hook(monkeypatch, stdin="performance issues again")

        assert "dean-debug" in capsys.readouterr().out

    def test_no_match_prints_nothing(self, hook_config, monkeypatch, capsys):
        run_hook(monkeypatch, argv=["quantum", "basket", "weaving"])

        assert capsys.readouterr().out == ""

    def test_empty_stdin_exits_cleanly(self, monkeypatch):
        with pytest.raises(SystemExit) as exc:
            run_hook(monkeypatch, stdin="")

        assert exc.value.code == 0

    def test_json_without_prompt_exits_cleanly(self, monkeypatch):
        with pytest.raises(SystemExit) as exc:
            run_hook(monkeypatch, stdin=json.dumps({"session_id": "abc"}))

        assert exc.value.code == 0

    def test_configuration_error_goes_to_stderr(self, tmp_path, monkeypatch, capsys):
        config_path = tmp_path / "strata-config.yaml"
        config_path.write_text(yaml.safe_dump({"layers": [{"name": "r", "type": "git"}]}))
        monkeypatch.setenv("STRATA_CONFIG_PATH", str(config_path))

        with pytest.raises(SystemExit) as exc:
            run_hook(monkeypatch, argv=["performance"])

        captured = capsys.readouterr()
        assert exc.value.code == 1
        assert captured.out == ""
        assert "unsupported type" in captured.err
