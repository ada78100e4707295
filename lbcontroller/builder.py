"""Assembly of the global proxy configuration from a cache snapshot."""

from typing import Any, Dict, List, Optional

from .backends import BackendResolver
from .cache import ResourceCache, object_key
from .logging_config import get_logger, log_function_entry, log_function_exit
from .models import ControllerConfig, IngressConfig, Upstream, split_key
from .tls import TLSCredentialResolver

logger = get_logger(__name__)

INGRESS_CLASS_KEY = "kubernetes.io/ingress.class"
EXTRA_CONFIG_KEY = "proxy-conf"


def is_managed_ingress(ing: Any, ingress_class: str) -> bool:
    """Whether an Ingress belongs to the given class.

    An empty class accepts every Ingress; otherwise the class annotation must
    match exactly, so unannotated Ingresses are left to other controllers.
    """
    if not ingress_class:
        return True
    annotations = ing.metadata.annotations or {}
    return annotations.get(INGRESS_CLASS_KEY) == ingress_class


def list_managed_ingresses(cache: ResourceCache, config: ControllerConfig) -> List[Any]:
    """Ingresses in the watched namespace that carry our class, ordered by key."""
    return [
        ing for ing in cache.ingresses.list()
        if (not config.watch_namespace or ing.metadata.namespace == config.watch_namespace)
        and is_managed_ingress(ing, config.ingress_class)
    ]


def backend_port_ref(port: Any) -> str:
    """String form of a V1ServiceBackendPort: its name, else its number."""
    if port is None:
        return ""
    if port.name:
        return port.name
    return str(port.number)


def upstream_name(namespace: str, service: str, port_ref: str, host: str, path: str) -> str:
    return f"{namespace}/{service},{port_ref};{host}{path}"


def extra_config(cache: ResourceCache, config_map: Optional[str]) -> str:
    """The verbatim auxiliary proxy configuration, empty when unavailable."""
    if not config_map:
        return ""
    namespace, name = split_key(config_map)
    cm = cache.config_maps.get(namespace, name)
    if cm is None:
        logger.debug("Auxiliary config map not found", config_map=config_map)
        return ""
    return (cm.data or {}).get(EXTRA_CONFIG_KEY, "")


def build_ingress_config(cache: ResourceCache, config: ControllerConfig) -> IngressConfig:
    """Build the proxy configuration from the cache.

    Only a missing default backend or default TLS Secret aborts the build;
    problems with individual Ingresses shrink their upstreams instead.
    Identical cache content always yields an equal result.

    Every upstream redirects plain HTTP when a default TLS Secret is
    configured. Without one, only the upstreams of Ingresses whose own
    credential resolved redirect; the default upstream does not, even when
    an Ingress credential was promoted to serve as the default certificate.

    Raises:
        DefaultBackendNotFoundError: If the default backend cannot be resolved.
        TLSSecretNotFoundError: If the configured default TLS Secret is unusable.
    """
    log_function_entry(logger, "build_ingress_config",
                       default_backend=config.default_backend_service,
                       ingress_class=config.ingress_class)

    resolver = BackendResolver(cache)
    default_backends = resolver.resolve_default(config.default_backend_service)

    ingresses = list_managed_ingresses(cache, config)
    tls = TLSCredentialResolver(cache, config.default_tls_secret, config.reloader.tls_dir).resolve(ingresses)

    default_upstream = Upstream(
        name=config.default_backend_service,
        path="",
        backends=default_backends,
        redirect_if_not_tls=tls.default_configured,
    )

    upstreams: Dict[str, Upstream] = {}
    for ing in ingresses:
        namespace = ing.metadata.namespace
        redirect = tls.default_configured or object_key(ing) in tls.secured_ingresses
        for rule in ing.spec.rules or []:
            if rule.http is None:
                continue
            host = rule.host or ""
            for ing_path in rule.http.paths or []:
                service = ing_path.backend.service if ing_path.backend else None
                if service is None:
                    logger.debug("Skipping non-service backend", ingress=object_key(ing), host=host)
                    continue
                port_ref = backend_port_ref(service.port)
                path = ing_path.path or "/"
                name = upstream_name(namespace, service.name, port_ref, host, path)
                if name in upstreams:
                    continue
                upstreams[name] = Upstream(
                    name=name,
                    host=host,
                    path=path,
                    backends=resolver.resolve(namespace, service.name, port_ref),
                    redirect_if_not_tls=redirect,
                )

    ing_config = IngressConfig(
        tls=tls.tls,
        default_tls_cred=tls.default_cred,
        sub_tls_cred=tls.sub_creds,
        upstreams=[default_upstream] + [upstreams[k] for k in sorted(upstreams)],
        extra_config=extra_config(cache, config.config_map),
    )

    log_function_exit(logger, "build_ingress_config",
                      upstreams=len(ing_config.upstreams),
                      tls=ing_config.tls,
                      sub_tls_creds=len(ing_config.sub_tls_cred))
    return ing_config
