"""Data models for lbcontroller configuration and the generated proxy config."""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from .errors import InvalidResourceKeyError


def split_key(key: str) -> Tuple[str, str]:
    """Split a ``namespace/name`` key into its parts.

    Raises:
        InvalidResourceKeyError: If the key is not exactly two non-empty parts.
    """
    parts = key.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InvalidResourceKeyError(f"invalid resource key {key!r}, expected namespace/name")
    return parts[0], parts[1]


class ReloaderConfig(BaseModel):
    """Configuration for the file based proxy reloader."""

    config_dir: str = Field("/etc/lbcontroller", description="Directory the proxy configuration is written to")
    tls_dir: str = Field("/etc/lbcontroller/tls", description="Directory TLS key and certificate files are written to")
    reload_command: List[str] = Field(default_factory=list, description="Command run after the configuration changed")
    proxy_command: List[str] = Field(default_factory=list, description="Proxy process to supervise, if any")


class ControllerConfig(BaseModel):
    """Configuration for the load balancer controller."""

    resync_period: int = Field(30, ge=1, description="Seconds between forced full rebuilds")
    default_backend_service: str = Field(..., description="namespace/name of the default backend Service")
    watch_namespace: str = Field("", description="Namespace to watch for Ingresses (empty for all)")
    config_map: Optional[str] = Field(None, description="namespace/name of the auxiliary ConfigMap")
    ingress_class: str = Field("lbcontroller", description="Ingress class this controller serves")
    default_tls_secret: Optional[str] = Field(None, description="namespace/name of the default TLS Secret")
    pod_selector: Dict[str, str] = Field(default_factory=dict, description="Labels selecting controller pods")
    kubeconfig_path: Optional[str] = Field(None, description="Path to kubeconfig file")
    context: Optional[str] = Field(None, description="Kubernetes context name")
    queue_size: int = Field(128, ge=1, description="Maximum number of pending sync keys")
    retry_base_delay: float = Field(0.5, gt=0, description="Initial requeue delay in seconds")
    retry_max_delay: float = Field(60.0, gt=0, description="Maximum requeue delay in seconds")
    shutdown_retries: int = Field(5, ge=1, description="Attempts to remove addresses on shutdown")
    reloader: ReloaderConfig = Field(default_factory=ReloaderConfig, description="Reloader settings")

    @field_validator("default_backend_service", "config_map", "default_tls_secret")
    @classmethod
    def _check_key(cls, value: Optional[str]) -> Optional[str]:
        if value:
            split_key(value)
        return value or None


class PodInfo(BaseModel):
    """Identity of the pod this controller runs in."""

    pod_name: str = Field(..., description="Controller pod name")
    pod_namespace: str = Field(..., description="Controller pod namespace")


class Backend(BaseModel):
    """A dial target behind an upstream."""

    address: str = Field(..., description="Endpoint IP address")
    port: str = Field(..., description="Endpoint port")


class Upstream(BaseModel):
    """A routed path and the backends serving it."""

    name: str = Field(..., description="Unique upstream name")
    host: str = Field("", description="Virtual host, empty for any")
    path: str = Field("", description="Request path prefix, empty for the default backend")
    backends: List[Backend] = Field(default_factory=list, description="Backends in endpoint order")
    redirect_if_not_tls: bool = Field(False, description="Redirect plain HTTP requests to HTTPS")


class ChecksumFile(BaseModel):
    """A file the reloader materializes, with the checksum of its content."""

    path: str = Field(..., description="Absolute file path")
    content: bytes = Field(b"", exclude=True, repr=False, description="Raw file content")
    checksum: str = Field(..., description="Hex encoded SHA-256 of the content")


class TLSCredential(BaseModel):
    """A TLS private key and certificate pair resolved from a Secret."""

    name: str = Field(..., description="namespace/name of the source Secret")
    key: ChecksumFile = Field(..., description="Private key file")
    cert: ChecksumFile = Field(..., description="Certificate file")


class IngressConfig(BaseModel):
    """The global proxy configuration handed to the reloader."""

    tls: bool = Field(False, description="Whether the TLS frontend is enabled")
    default_tls_cred: Optional[TLSCredential] = Field(None, description="Default TLS credential")
    sub_tls_cred: List[TLSCredential] = Field(default_factory=list, description="Additional TLS credentials")
    upstreams: List[Upstream] = Field(default_factory=list, description="Upstreams, default backend first")
    extra_config: str = Field("", description="Verbatim auxiliary proxy configuration")


class SyncStatus(BaseModel):
    """Runtime statistics of the reconcile loop."""

    sync_count: int = Field(0, description="Number of successful syncs")
    error_count: int = Field(0, description="Number of failed syncs")
    reload_count: int = Field(0, description="Number of syncs that changed the proxy")
    last_sync: Optional[datetime] = Field(None, description="Time of the last successful sync")
    last_error: Optional[str] = Field(None, description="Message of the last sync failure")
    queue_depth: int = Field(0, description="Pending sync keys")
    addresses: List[str] = Field(default_factory=list, description="Addresses last published on Ingress status")
