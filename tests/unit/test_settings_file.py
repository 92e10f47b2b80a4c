"""
Unit tests for the persisted settings file.
"""
import pytest

from deplaunch.exceptions import ConfigError
from deplaunch.MANAGERS.config_resolver import ConfigResolver
from deplaunch.PARSERS.settings_file import SettingsFile
from deplaunch.REGISTRY.service_registry import default_registry


def test_missing_file_is_empty(tmp_path):
    settings = SettingsFile(str(tmp_path / ".env"))
    assert not settings.exists()
    assert settings.load() == {}


def test_empty_file_is_empty(tmp_path):
    path = tmp_path / ".env"
    path.write_text("")
    assert SettingsFile(str(path)).load() == {}


def test_load_ignores_comments_and_blank_lines(tmp_path):
    path = tmp_path / ".env"
    path.write_text(
        "# local overrides\n"
        "\n"
        "REDIS_PORT=6400\n"
        "MYSQL_HOST = 127.0.0.2\n"
        "# MYSQL_PORT=1\n"
        "BARE_KEY\n"
    )
    values = SettingsFile(str(path)).load()
    assert values == {"REDIS_PORT": "6400", "MYSQL_HOST": "127.0.0.2"}


def test_write_if_absent_persists_resolved_values(tmp_path):
    registry = default_registry()
    config = ConfigResolver(registry, {}, {"REDIS_PORT": "6500"}).resolve()
    settings = SettingsFile(str(tmp_path / "conf" / ".env"))

    assert settings.write_if_absent(registry, config) is True
    content = (tmp_path / "conf" / ".env").read_text()
    assert content.startswith("#")
    assert "# redis (redis:7-alpine)" in content

    values = settings.load()
    assert values["REDIS_PORT"] == "6500"
    assert values["MYSQL_PORT"] == "3306"
    assert values["ELASTICSEARCH_HOST"] == "127.0.0.1"
    assert len(values) == 6


def test_write_if_absent_keeps_existing_file(tmp_path):
    path = tmp_path / ".env"
    path.write_text("REDIS_PORT=6400\n")
    registry = default_registry()
    config = ConfigResolver(registry, {}, {}).resolve()

    assert SettingsFile(str(path)).write_if_absent(registry, config) is False
    assert path.read_text() == "REDIS_PORT=6400\n"


def test_undecodable_file_is_config_error(tmp_path):
    path = tmp_path / ".env"
    path.write_bytes(b"REDIS_PORT=\xff\xfe\n")
    with pytest.raises(ConfigError) as excinfo:
        SettingsFile(str(path)).load()
    assert str(path) in str(excinfo.value)
    assert excinfo.value.exit_code == 3


def test_render_uses_resolved_bindings(tmp_path):
    registry = default_registry().subset(["redis"])
    config = ConfigResolver(registry, {}, {"REDIS_HOST": "0.0.0.0"}).resolve()
    content = SettingsFile(str(tmp_path / ".env")).render(registry, config)
    assert "REDIS_HOST=0.0.0.0\n" in content
    assert "REDIS_PORT=6379\n" in content
    assert "MYSQL" not in content
