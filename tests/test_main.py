"""
Tests for the command-line entry point and its exit codes
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from vbs.config import VBSConfig
from vbs.exceptions import JSONExtractionError
from vbs.main import create_parser, main, normalize_argv


@pytest.fixture
def offline_config(tmp_path):
    def factory(api_key="test-api-key"):
        return VBSConfig(api_key=api_key, config_dir=str(tmp_path / "home"))
    return factory


class TestArgumentParsing:
    """Tests for argv handling"""

    def test_prompt_prefix_and_ampersand(self):
        assert normalize_argv(["prompt='todo api'", "-t", "api", "&"]) == ["todo api", "-t", "api"]

    def test_short_h_is_host_not_help(self):
        args = create_parser().parse_args(["-h", "-s", "-t", "fullstack", "shop", "app"])
        assert args.show_host is True
        assert args.extended_summary is True
        assert args.project_type == "fullstack"
        assert args.prompt == ["shop", "app"]

    def test_defaults(self):
        args = create_parser().parse_args(["todo"])
        assert args.project_type == "api"
        assert not (args.show_host or args.extended_summary or args.debug or args.assume_yes)

    def test_invalid_type_rejected(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["-t", "desktop", "x"])


class TestExitCodes:
    """Tests for exit codes of each command"""

    def test_missing_credential_exits_before_any_phase(self, offline_config):
        with patch("vbs.main.VBSConfig.load_default", return_value=offline_config(api_key=None)), \
                patch("vbs.main.BuildPipeline") as pipeline_cls:
            code = main(["todo REST API"])

        assert code == 1
        pipeline_cls.assert_not_called()

    def test_successful_build(self, offline_config):
        report = SimpleNamespace(project_dir="/var/www/todo-api")
        pipeline = MagicMock()
        pipeline.run = AsyncMock(return_value=report)

        with patch("vbs.main.VBSConfig.load_default", return_value=offline_config()), \
                patch("vbs.main.LLMGateway"), \
                patch("vbs.main.BuildPipeline", return_value=pipeline):
            code = main(["prompt=todo REST API", "-y", "-s", "--dir", "/srv"])

        assert code == 0
        request = pipeline.run.await_args.args[0]
        assert request.prompt == "todo REST API"
        assert request.assume_yes is True
        assert request.extended_summary is True
        assert request.base_dir == "/srv"

    def test_fatal_error_exits_one(self, offline_config, capsys):
        """Test a parse failure exits 1 and shows the start of the model output"""
        pipeline = MagicMock()
        pipeline.run = AsyncMock(side_effect=JSONExtractionError("Sorry, no files today", "no JSON"))
        with patch("vbs.main.VBSConfig.load_default", return_value=offline_config()), \
                patch("vbs.main.LLMGateway"), \
                patch("vbs.main.BuildPipeline", return_value=pipeline):
            assert main(["todo REST API", "-y"]) == 1

        out = capsys.readouterr().out
        assert "Could not parse JSON from model output" in out
        assert "Sorry, no files today" in out
        assert "Traceback" not in out

    def test_debug_shows_error_details(self, offline_config, capsys):
        pipeline = MagicMock()
        pipeline.run = AsyncMock(side_effect=JSONExtractionError("Sorry, no files today", "no JSON"))
        with patch("vbs.main.VBSConfig.load_default", return_value=offline_config()), \
                patch("vbs.main.LLMGateway"), \
                patch("vbs.main.BuildPipeline", return_value=pipeline):
            assert main(["todo REST API", "-y", "-d"]) == 1

        out = capsys.readouterr().out
        assert "raw_snippet" in out
        assert "Traceback" in out

    def test_malformed_env_number_is_reported(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("VBS_HOME", str(tmp_path / "home"))
        monkeypatch.setenv("VBS_BUILD_FIX_ATTEMPTS", "five")

        assert main(["list"]) == 1

        out = capsys.readouterr().out
        assert "VBS_BUILD_FIX_ATTEMPTS must be a number" in out
        assert "Traceback" not in out

    def test_list_empty_registry(self, offline_config):
        with patch("vbs.main.VBSConfig.load_default", return_value=offline_config(api_key=None)):
            assert main(["list"]) == 0

    def test_open_unknown_project(self, offline_config, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        with patch("vbs.main.VBSConfig.load_default", return_value=offline_config()):
            assert main(["open", "ghost-project"]) == 1

    def test_modify_unknown_project(self, offline_config, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        with patch("vbs.main.VBSConfig.load_default", return_value=offline_config()), \
                patch("vbs.main.LLMGateway"):
            assert main(["modify", "ghost-project", "add", "a", "route"]) == 1

    def test_modify_requires_credential(self, offline_config, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        with patch("vbs.main.VBSConfig.load_default", return_value=offline_config(api_key=None)):
            assert main(["modify", "anything"]) == 1
