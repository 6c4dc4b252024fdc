"""
Tests for configuration loading, migration and validation.
"""

import configparser

import pytest

from livevod_cli.exceptions import ConfigurationError
from livevod_cli.models.config import DownloadConfig
from livevod_cli.storage.config_manager import DEFAULT_SAVE_PATH, ConfigManager


@pytest.fixture
def config_file(tmp_path):
    return tmp_path / "livevod-cli" / "config.ini"


def read_ini(path) -> configparser.SectionProxy:
    parser = configparser.ConfigParser(interpolation=None)
    parser.read(path, encoding="utf-8")
    return parser["DEFAULT"]


def test_save_and_load_round_trip(config_file, tmp_path):
    manager = ConfigManager(config_file)
    manager.save_new_config({"save_path": str(tmp_path / "vods"), "max_concurrent": 5})

    config = manager.load_config()

    assert config.save_path == str(tmp_path / "vods")
    assert config.max_concurrent == 5
    assert config.container == "mp4"
    assert config.verify_integrity is True
    assert config.tolerance == 0.01
    assert config.config_path == str(config_file.parent)


def test_new_config_contains_every_key(config_file):
    ConfigManager(config_file).save_new_config({})
    section = read_ini(config_file)

    assert set(section) == DownloadConfig.get_ini_keys()
    assert section["save_path"] == DEFAULT_SAVE_PATH
    assert section["verify_integrity"] == "true"


def test_cli_options_override_file(config_file):
    manager = ConfigManager(config_file)
    manager.save_new_config({"max_concurrent": 2})

    config = manager.load_config(
        {"max_concurrent": 6, "save_path": None, "verify_integrity": False}
    )

    assert config.max_concurrent == 6
    assert config.save_path == DEFAULT_SAVE_PATH
    assert config.verify_integrity is False


def test_missing_keys_are_migrated(config_file):
    config_file.parent.mkdir(parents=True)
    config_file.write_text("[DEFAULT]\nsave_path = /data/vods\n", encoding="utf-8")

    config = ConfigManager(config_file).load_config()

    assert config.save_path == "/data/vods"
    assert config.max_concurrent == 3
    section = read_ini(config_file)
    assert section["max_concurrent"] == "3"
    assert section["save_path"] == "/data/vods"


def test_missing_file(config_file):
    with pytest.raises(ConfigurationError, match="livevod init"):
        ConfigManager(config_file).load_config()


@pytest.mark.parametrize(
    "overrides",
    [
        {"max_concurrent": 0},
        {"max_concurrent": 17},
        {"container": "avi"},
        {"tolerance": 1.5},
        {"kill_timeout": 0},
    ],
)
def test_invalid_values(config_file, overrides):
    manager = ConfigManager(config_file)
    manager.save_new_config({})
    with pytest.raises(ConfigurationError):
        manager.load_config(overrides)


def test_unparseable_number(config_file):
    config_file.parent.mkdir(parents=True)
    config_file.write_text("[DEFAULT]\nmax_concurrent = many\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        ConfigManager(config_file).load_config()


def test_container_is_normalized(config_file):
    manager = ConfigManager(config_file)
    manager.save_new_config({})
    assert manager.load_config({"container": ".MKV"}).container == "mkv"
