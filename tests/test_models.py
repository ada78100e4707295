"""Tests for lbcontroller models."""

import pytest
from pydantic import ValidationError

from lbcontroller.errors import InvalidResourceKeyError
from lbcontroller.models import (
    Backend,
    ChecksumFile,
    ControllerConfig,
    IngressConfig,
    ReloaderConfig,
    SyncStatus,
    TLSCredential,
    Upstream,
    split_key,
)


class TestSplitKey:
    """Tests for namespace/name key parsing."""

    def test_valid_key(self):
        """Test splitting a well formed key."""
        assert split_key("kube-system/default-http-backend") == ("kube-system", "default-http-backend")

    @pytest.mark.parametrize("key", ["", "name", "a/b/c", "/name", "ns/"])
    def test_invalid_key(self, key):
        """Test that malformed keys are rejected."""
        with pytest.raises(InvalidResourceKeyError):
            split_key(key)

    def test_invalid_key_is_value_error(self):
        """Test that key errors can be caught as ValueError."""
        with pytest.raises(ValueError):
            split_key("no-slash")


class TestControllerConfig:
    """Tests for ControllerConfig model."""

    def test_minimal_controller_config(self):
        """Test creating a config with only the required field."""
        config = ControllerConfig(default_backend_service="kube-system/default-http-backend")

        assert config.resync_period == 30
        assert config.watch_namespace == ""
        assert config.ingress_class == "lbcontroller"
        assert config.config_map is None
        assert config.default_tls_secret is None
        assert config.pod_selector == {}
        assert config.queue_size == 128
        assert isinstance(config.reloader, ReloaderConfig)
        assert config.reloader.tls_dir == "/etc/lbcontroller/tls"

    def test_missing_default_backend(self):
        """Test that the default backend is required."""
        with pytest.raises(ValidationError):
            ControllerConfig()

    def test_invalid_default_backend_key(self):
        """Test that the default backend must be a namespace/name key."""
        with pytest.raises(ValidationError):
            ControllerConfig(default_backend_service="default-http-backend")

    def test_invalid_tls_secret_key(self):
        """Test that the default TLS secret must be a namespace/name key."""
        with pytest.raises(ValidationError):
            ControllerConfig(default_backend_service="a/b", default_tls_secret="a/b/c")

    def test_empty_optional_keys_become_none(self):
        """Test that empty optional references are treated as unset."""
        config = ControllerConfig(default_backend_service="a/b", config_map="", default_tls_secret="")

        assert config.config_map is None
        assert config.default_tls_secret is None

    def test_invalid_resync_period(self):
        """Test that the resync period must be positive."""
        with pytest.raises(ValidationError):
            ControllerConfig(default_backend_service="a/b", resync_period=0)

    def test_nested_reloader_config(self):
        """Test loading the reloader section from a dict."""
        config = ControllerConfig(
            default_backend_service="a/b",
            reloader={"config_dir": "/tmp/lb", "reload_command": ["kill", "-HUP", "1"]},
        )

        assert config.reloader.config_dir == "/tmp/lb"
        assert config.reloader.reload_command == ["kill", "-HUP", "1"]
        assert config.reloader.proxy_command == []


class TestIngressConfig:
    """Tests for the generated proxy configuration model."""

    @pytest.fixture
    def credential(self):
        return TLSCredential(
            name="kube-system/default-tls",
            key=ChecksumFile(path="/tls/kube-system_default-tls.key", content=b"key", checksum="k1"),
            cert=ChecksumFile(path="/tls/kube-system_default-tls.crt", content=b"cert", checksum="c1"),
        )

    def test_defaults(self):
        """Test an empty configuration."""
        config = IngressConfig()

        assert config.tls is False
        assert config.default_tls_cred is None
        assert config.sub_tls_cred == []
        assert config.upstreams == []
        assert config.extra_config == ""

    def test_equality(self, credential):
        """Test that configurations built from the same data compare equal."""
        def build():
            return IngressConfig(
                tls=True,
                default_tls_cred=credential,
                upstreams=[Upstream(name="a/b", backends=[Backend(address="10.0.0.1", port="80")])],
            )

        assert build() == build()
        changed = build()
        changed.upstreams[0].backends.append(Backend(address="10.0.0.2", port="80"))
        assert changed != build()

    def test_key_material_not_serialized(self, credential):
        """Test that file content stays out of dumps."""
        data = IngressConfig(tls=True, default_tls_cred=credential).model_dump(mode="json")

        assert "content" not in data["default_tls_cred"]["key"]
        assert data["default_tls_cred"]["key"]["checksum"] == "k1"
        assert "b'key'" not in repr(credential.key)

    def test_upstream_defaults(self):
        """Test upstream default values."""
        upstream = Upstream(name="kube-system/default-http-backend")

        assert upstream.host == ""
        assert upstream.path == ""
        assert upstream.backends == []
        assert upstream.redirect_if_not_tls is False


class TestSyncStatus:
    """Tests for SyncStatus model."""

    def test_defaults(self):
        """Test initial sync statistics."""
        status = SyncStatus()

        assert status.sync_count == 0
        assert status.error_count == 0
        assert status.last_sync is None
        assert status.addresses == []
