"""
Unit tests for the orchestration driver against an in-memory backend.
"""
import socket

import pytest

from conftest import FakeBackend
from deplaunch.exceptions import OrchestrationError
from deplaunch.MANAGERS.config_resolver import ConfigResolver
from deplaunch.MANAGERS.orchestration_driver import OrchestrationDriver
from deplaunch.REGISTRY.service_registry import ServiceRegistry


def _driver(registry, backend, environ=None):
    config = ConfigResolver(registry, {}, environ or {}).resolve()
    return OrchestrationDriver(registry, config, backend)


class TestOrchestrationDriver:
    """Tests for OrchestrationDriver."""

    def test_start(self, test_registry, fake_backend):
        """Test that start pings, checks ports and makes one up call."""
        _driver(test_registry, fake_backend).start()
        assert fake_backend.calls.count("up") == 1
        assert fake_backend.calls[0] == "ping"
        assert fake_backend.containers == {"cache": "running", "store": "running"}

    def test_container_specs(self, test_registry, fake_backend):
        """Test that specs join descriptors with resolved bindings."""
        cache_port = test_registry.get("cache").default_host_port
        driver = _driver(test_registry, fake_backend, {"CACHE_HOST": "0.0.0.0"})
        spec = driver.container_specs()[0]
        assert spec.service == "cache"
        assert spec.port_binding == f"0.0.0.0:{cache_port}:{cache_port}"
        assert spec.volume_binding == "cache_data:/data"

    def test_start_backend_unreachable(self, test_registry):
        """Test that an unreachable backend fails before anything starts."""
        backend = FakeBackend(reachable=False)
        with pytest.raises(OrchestrationError):
            _driver(test_registry, backend).start()
        assert "up" not in backend.calls

    def test_start_port_collision(self, test_registry, fake_backend):
        """Test that a port held by another process names the service and port."""
        port = test_registry.get("store").default_host_port
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
            listener.bind(("127.0.0.1", port))
            listener.listen(1)
            with pytest.raises(OrchestrationError) as excinfo:
                _driver(test_registry, fake_backend).start()
        assert excinfo.value.service == "store"
        assert excinfo.value.port == port
        assert str(port) in str(excinfo.value)
        assert "up" not in fake_backend.calls
        assert fake_backend.containers == {}

    def test_restart_with_own_container_holding_port(self, test_registry, fake_backend):
        """Test that a running container of this project is not a collision."""
        port = test_registry.get("store").default_host_port
        fake_backend.containers["store"] = "running"
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
            listener.bind(("127.0.0.1", port))
            listener.listen(1)
            _driver(test_registry, fake_backend).start()
        assert "up" in fake_backend.calls

    def test_stop_preserving_volumes_keeps_data(self, test_registry, fake_backend):
        """Test the volume persistence round trip."""
        driver = _driver(test_registry, fake_backend)
        driver.start()
        fake_backend.volumes["cache_data"]["key"] = "value"

        driver.stop(preserve_volumes=True)
        assert fake_backend.containers == {}
        driver.start()
        assert fake_backend.volumes["cache_data"] == {"key": "value"}

    def test_stop_removing_volumes_empties_data(self, test_registry, fake_backend):
        driver = _driver(test_registry, fake_backend)
        driver.start()
        fake_backend.volumes["cache_data"]["key"] = "value"

        driver.stop(preserve_volumes=False)
        assert "down(remove_volumes=True)" in fake_backend.calls
        driver.start()
        assert fake_backend.volumes["cache_data"] == {}

    def test_stop_requires_explicit_intent(self, test_registry, fake_backend):
        driver = _driver(test_registry, fake_backend)
        with pytest.raises(TypeError):
            driver.stop()
        with pytest.raises(TypeError):
            driver.stop(True)

    def test_status(self, test_registry, fake_backend):
        driver = _driver(test_registry, fake_backend)
        assert driver.status() == {"cache": "absent", "store": "absent"}
        driver.start()
        assert driver.status() == {"cache": "running", "store": "running"}

    def test_missing_config_entry(self, test_registry, fake_backend):
        partial = ServiceRegistry([test_registry.get("cache")])
        config = ConfigResolver(partial, {}, {}).resolve()
        with pytest.raises(ValueError):
            OrchestrationDriver(test_registry, config, fake_backend)

    def test_start_selected_only(self, test_registry, fake_backend):
        """Test that a partial start still hands the whole project to the backend."""
        config = ConfigResolver(test_registry, {}, {}).resolve()
        OrchestrationDriver(test_registry, config, fake_backend, selected=["store"]).start()
        assert fake_backend.containers == {"store": "running"}
        assert [s.service for s in fake_backend.last_specs] == ["cache", "store"]

    def test_purge_after_partial_start(self, test_registry, fake_backend):
        """Test that removing volumes covers services a partial start skipped."""
        config = ConfigResolver(test_registry, {}, {}).resolve()
        OrchestrationDriver(test_registry, config, fake_backend).start()
        OrchestrationDriver(test_registry, config, fake_backend, selected=["store"]).start()

        OrchestrationDriver(test_registry, config, fake_backend).stop(preserve_volumes=False)
        assert {s.volume_name for s in fake_backend.down_specs} == {"cache_data", "store_data"}
        assert fake_backend.volumes == {}
