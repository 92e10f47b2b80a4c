"""
Unit tests for configuration resolution and override precedence.
"""
import pytest

from deplaunch.exceptions import ConfigError
from deplaunch.MANAGERS.config_resolver import ConfigResolver, overridden_keys
from deplaunch.MODELS.resolved_config import OverrideSource
from deplaunch.REGISTRY.service_registry import default_registry


class TestConfigResolver:
    """Tests for ConfigResolver."""

    def test_defaults_without_overrides(self):
        """Test that every service falls back to its descriptor default."""
        registry = default_registry()
        config = ConfigResolver(registry, {}, {}).resolve()
        assert list(config) == ["mysql", "redis", "elasticsearch"]
        for descriptor in registry:
            assert config[descriptor.name].port == descriptor.default_host_port
            assert config[descriptor.name].host == "127.0.0.1"
            assert config[descriptor.name].port_source == OverrideSource.NONE

    def test_file_value_used(self):
        """Test that the settings file overrides the default."""
        config = ConfigResolver(default_registry(), {"REDIS_PORT": "6400"}, {}).resolve()
        assert config["redis"].port == 6400
        assert config["redis"].port_source == OverrideSource.PERSISTED_FILE

    def test_environment_beats_file(self):
        """Test that the environment wins when both sources define a key."""
        config = ConfigResolver(
            default_registry(),
            {"REDIS_PORT": "6400"},
            {"REDIS_PORT": "6500"},
        ).resolve()
        assert config["redis"].port == 6500
        assert config["redis"].port_source == OverrideSource.PROCESS_ENVIRONMENT

    def test_host_override(self):
        """Test host lookup follows the same order."""
        config = ConfigResolver(
            default_registry(),
            {"MYSQL_HOST": "10.0.0.5"},
            {"ELASTICSEARCH_HOST": "0.0.0.0"},
        ).resolve()
        assert config["mysql"].host == "10.0.0.5"
        assert config["mysql"].host_source == OverrideSource.PERSISTED_FILE
        assert config["elasticsearch"].host == "0.0.0.0"
        assert config["redis"].host == "127.0.0.1"

    def test_empty_value_counts_as_unset(self):
        """Test that empty values fall through to the next source."""
        config = ConfigResolver(
            default_registry(),
            {"REDIS_PORT": "6400"},
            {"REDIS_PORT": ""},
        ).resolve()
        assert config["redis"].port == 6400

    def test_malformed_port_isolated_to_service(self):
        """Test that a bad value fails only the service it belongs to."""
        resolver = ConfigResolver(default_registry(), {"MYSQL_PORT": "notanumber"}, {})
        entries, errors = resolver.resolve_all()
        assert set(errors) == {"mysql"}
        assert errors["mysql"].service == "mysql"
        assert errors["mysql"].key == "MYSQL_PORT"
        assert entries["redis"].port == 6379
        assert entries["elasticsearch"].port == 9200

    def test_resolve_raises_aggregate(self):
        """Test that resolve() reports every failing service."""
        resolver = ConfigResolver(
            default_registry(),
            {"MYSQL_PORT": "notanumber"},
            {"REDIS_PORT": "70000"},
        )
        with pytest.raises(ConfigError) as excinfo:
            resolver.resolve()
        assert set(excinfo.value.errors) == {"mysql", "redis"}
        assert "MYSQL_PORT" in str(excinfo.value)
        assert "REDIS_PORT" in str(excinfo.value)

    def test_errors_outside_required_fall_back_to_defaults(self):
        resolver = ConfigResolver(default_registry(), {"MYSQL_PORT": "notanumber"}, {"REDIS_PORT": "6500"})
        config = resolver.resolve(required=["redis"])
        assert config["mysql"].port == 3306
        assert config["mysql"].port_source == OverrideSource.NONE
        assert config["redis"].port == 6500
        with pytest.raises(ConfigError) as excinfo:
            resolver.resolve(required=["mysql"])
        assert set(excinfo.value.errors) == {"mysql"}

    @pytest.mark.parametrize("value", ["0", "65536", "-1", "80.5", "1_000"])
    def test_out_of_range_ports(self, value):
        _, errors = ConfigResolver(default_registry(), {}, {"REDIS_PORT": value}).resolve_all()
        assert "redis" in errors

    def test_host_with_whitespace_rejected(self):
        _, errors = ConfigResolver(default_registry(), {"REDIS_HOST": "local host"}, {}).resolve_all()
        assert errors["redis"].key == "REDIS_HOST"

    def test_inputs_not_mutated(self):
        """Test that resolution leaves both sources untouched."""
        file_values = {"REDIS_PORT": "6400"}
        environ = {"REDIS_PORT": "6500"}
        ConfigResolver(default_registry(), file_values, environ).resolve()
        assert file_values == {"REDIS_PORT": "6400"}
        assert environ == {"REDIS_PORT": "6500"}

    def test_unrelated_keys_ignored(self):
        config = ConfigResolver(default_registry(), {"POSTGRES_PORT": "x"}, {"PATH": "/bin"}).resolve()
        assert config["redis"].port == 6379

    def test_as_env(self):
        config = ConfigResolver(default_registry(), {}, {}).resolve()
        env = config.as_env()
        assert env["REDIS_HOST"] == "127.0.0.1"
        assert env["MYSQL_PORT"] == "3306"


def test_overridden_keys():
    keys = overridden_keys(default_registry(), {"REDIS_PORT": "1", "MYSQL_HOST": "", "OTHER": "x"})
    assert keys == ["REDIS_PORT"]
