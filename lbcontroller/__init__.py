"""lbcontroller: Ingress load balancer controller."""

__version__ = "0.1.0"

# Lazy imports to avoid loading heavy dependencies for CLI usage
__all__ = [
    "LoadBalancerController",
    "ResourceCache",
    "IngressConfig",
    "ControllerConfig",
    "build_ingress_config",
]


def __getattr__(name):
    if name == "LoadBalancerController":
        from .controller import LoadBalancerController
        return LoadBalancerController
    elif name == "ResourceCache":
        from .cache import ResourceCache
        return ResourceCache
    elif name == "IngressConfig":
        from .models import IngressConfig
        return IngressConfig
    elif name == "ControllerConfig":
        from .models import ControllerConfig
        return ControllerConfig
    elif name == "build_ingress_config":
        from .builder import build_ingress_config
        return build_ingress_config
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
