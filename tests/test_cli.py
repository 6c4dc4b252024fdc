"""
Tests for the command-line interface that need no network or ffmpeg.
"""

import pytest
from typer.testing import CliRunner

from livevod_cli import __main__ as entry_point
from livevod_cli import __version__
from livevod_cli.cli import app as cli_app
from livevod_cli.exceptions import FFmpegNotFoundError
from livevod_cli.storage.config_manager import ConfigManager

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "config" / "config.ini"
    monkeypatch.setattr(cli_app, "CONFIG_DIR", path.parent)
    monkeypatch.setattr(cli_app, "CONFIG_FILE", path)
    return path


def test_version():
    result = runner.invoke(cli_app.app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_init_writes_config(config_file, tmp_path):
    result = runner.invoke(
        cli_app.app,
        ["init", "--save-path", str(tmp_path / "vods"), "-w", "4", "-c", "mkv"],
    )

    assert result.exit_code == 0, result.output
    config = ConfigManager(config_file).load_config()
    assert config.save_path == str(tmp_path / "vods")
    assert config.max_concurrent == 4
    assert config.container == "mkv"


def test_init_rejects_invalid_settings(config_file):
    result = runner.invoke(cli_app.app, ["init", "-w", "0"])
    assert result.exit_code == 1
    assert not config_file.exists()


def test_download_requires_a_selection(config_file):
    result = runner.invoke(cli_app.app, ["download", "12345"])
    assert result.exit_code == 1
    assert "No replays selected" in result.output


def test_download_without_config(config_file):
    result = runner.invoke(cli_app.app, ["download", "12345", "--all"])
    assert result.exit_code == 1
    assert "Error" in result.output


def test_select_replays_by_key():
    replays = [{"live_key": "a"}, {"live_key": "b"}, {"live_key": "c"}]

    assert cli_app._select_replays(replays, ["c", "a", "zzz"], False) == [
        {"live_key": "c"},
        {"live_key": "a"},
    ]
    assert cli_app._select_replays(replays, [], True) == replays


def test_build_descriptors_skips_malformed_replays():
    replays = [
        {"live_key": "a", "start_time": 1, "end_time": 2, "live_info": {"title": "A"}},
        {"live_key": "", "start_time": 1, "end_time": 2},
    ]
    descriptors = cli_app._build_descriptors(replays, "99")
    assert [d.live_key for d in descriptors] == ["a"]
    assert descriptors[0].owner_id == "99"


def test_entry_point_reports_unhandled_errors(monkeypatch, capsys):
    def failing_app(**kwargs):
        raise FFmpegNotFoundError("no ffmpeg")

    monkeypatch.setattr(entry_point, "app", failing_app)

    with pytest.raises(SystemExit) as exc_info:
        entry_point.main()

    assert exc_info.value.code == 1
    err = capsys.readouterr().err
    assert "FFmpegNotFoundError" in err
    assert "no ffmpeg" in err
