"""Command-line interface for lbcontroller."""

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .logging_config import setup_logging, get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATHS = [Path("lbcontroller.yaml"), Path("/etc/lbcontroller/config.yaml")]

# Flags that override the configuration file, by ControllerConfig field.
OVERRIDES = (
    "default_backend_service",
    "watch_namespace",
    "config_map",
    "ingress_class",
    "default_tls_secret",
    "resync_period",
    "kubeconfig_path",
    "context",
)


def load_controller_config(args: argparse.Namespace):
    """Load the configuration file, if any, and apply flag overrides.

    Exits with status 1 when the result is invalid.
    """
    from pydantic import ValidationError
    from .models import ControllerConfig

    config_path: Optional[Path] = None
    if getattr(args, "config", None):
        config_path = Path(args.config)
        if not config_path.exists():
            print(f"Configuration file not found: {config_path}", file=sys.stderr)
            sys.exit(1)
    else:
        for path in DEFAULT_CONFIG_PATHS:
            if path.exists():
                config_path = path
                break

    data: Dict[str, Any] = {}
    if config_path:
        logger.debug("Loading configuration file", config_path=str(config_path))
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            print(f"Error loading configuration: {e}", file=sys.stderr)
            sys.exit(1)

    for field in OVERRIDES:
        value = getattr(args, field, None)
        if value is not None:
            data[field] = value

    try:
        controller_config = ControllerConfig(**data)
    except ValidationError as e:
        logger.error("Invalid configuration", config_path=str(config_path), error=str(e))
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    logger.info("Configuration loaded",
                config_path=str(config_path) if config_path else None,
                ingress_class=controller_config.ingress_class,
                default_backend=controller_config.default_backend_service)
    return controller_config


def pod_info_from_env():
    """Controller pod identity from the downward API environment."""
    from .models import PodInfo

    name = os.getenv("POD_NAME")
    namespace = os.getenv("POD_NAMESPACE")
    if not name or not namespace:
        logger.warning("POD_NAME or POD_NAMESPACE not set, ingress status relies on pod_selector")
        return None
    return PodInfo(pod_name=name, pod_namespace=namespace)


def serve_command(args: argparse.Namespace) -> None:
    """Run the controller and its status API."""
    import uvicorn
    from .api import app, initialize_controller
    from .cache import ResourceCache
    from .controller import LoadBalancerController
    from .kube import KubeClient
    from .reloader import FileReloader

    setup_logging(args.verbose)
    controller_config = load_controller_config(args)

    kube = KubeClient(controller_config)
    try:
        kube.connect()
    except Exception as e:
        print(f"Could not connect to cluster: {e}", file=sys.stderr)
        sys.exit(1)

    cache = ResourceCache()
    controller = LoadBalancerController(
        controller_config,
        cache,
        FileReloader(controller_config.reloader),
        kube.networking_v1,
        pod_info=pod_info_from_env(),
    )
    controller.informers = kube.build_informers(cache, controller.event_handlers())
    initialize_controller(controller)

    logger.info("Starting status server", host=args.host, port=args.port)
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level="info" if not args.verbose else "debug",
    )


def render_command(args: argparse.Namespace) -> None:
    """Build the configuration once from the live cluster and print it."""
    from kubernetes.client.rest import ApiException
    from .builder import build_ingress_config
    from .cache import ResourceCache
    from .errors import ControllerError
    from .kube import KubeClient

    setup_logging(args.verbose)
    controller_config = load_controller_config(args)

    kube = KubeClient(controller_config)
    try:
        kube.connect()
    except Exception as e:
        print(f"Could not connect to cluster: {e}", file=sys.stderr)
        sys.exit(1)

    cache = ResourceCache()
    try:
        kube.load_snapshot(cache)
        ing_config = build_ingress_config(cache, controller_config)
    except ApiException as e:
        print(f"Could not list cluster resources: {e.status} {e.reason}", file=sys.stderr)
        sys.exit(1)
    except ControllerError as e:
        print(f"Could not build configuration: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        kube.close()

    data = ing_config.model_dump(mode="json")
    if args.output == "json":
        print(json.dumps(data, indent=2))
    elif args.output == "yaml":
        print(yaml.dump(data, default_flow_style=False, sort_keys=False))
    else:
        print(f"TLS: {'enabled' if ing_config.tls else 'disabled'}")
        if ing_config.default_tls_cred:
            print(f"Default certificate: {ing_config.default_tls_cred.name}")
        print(f"\n{'Upstream':<60} {'Backends':<40} {'Redirect':<8}")
        print("-" * 110)
        for upstream in ing_config.upstreams:
            backends = ", ".join(f"{b.address}:{b.port}" for b in upstream.backends) or "-"
            redirect = "yes" if upstream.redirect_if_not_tls else "no"
            print(f"{upstream.name:<60} {backends:<40} {redirect:<8}")


def init_config_command(args: argparse.Namespace) -> None:
    """Generate a sample configuration file."""
    sample_config = {
        "default_backend_service": "kube-system/default-http-backend",
        "watch_namespace": "",
        "ingress_class": "lbcontroller",
        "config_map": "kube-system/lbcontroller-config",
        "default_tls_secret": None,
        "resync_period": 30,
        "reloader": {
            "config_dir": "/etc/lbcontroller",
            "tls_dir": "/etc/lbcontroller/tls",
            "reload_command": ["/usr/local/bin/reload-proxy"],
            "proxy_command": [],
        },
    }

    config_yaml = yaml.dump(sample_config, default_flow_style=False, sort_keys=False)

    if args.output:
        output_path = Path(args.output)
        output_path.write_text(config_yaml)
        print(f"Sample configuration written to {output_path}")
    else:
        print("Sample configuration:\n")
        print(config_yaml)


def validate_config_command(args: argparse.Namespace) -> None:
    """Validate a configuration file."""
    from .models import ControllerConfig

    config_path = Path(args.config)

    try:
        with open(config_path) as f:
            config_data = yaml.safe_load(f) or {}
        controller_config = ControllerConfig(**config_data)
    except Exception as e:
        print(f"✗ Configuration file {config_path} is invalid: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"✓ Configuration file {config_path} is valid")
    print("\nConfiguration summary:")
    print(f"  Default backend: {controller_config.default_backend_service}")
    print(f"  Ingress class: {controller_config.ingress_class or 'any'}")
    print(f"  Watch namespace: {controller_config.watch_namespace or 'all'}")
    print(f"  Config map: {controller_config.config_map or 'None'}")
    print(f"  Default TLS secret: {controller_config.default_tls_secret or 'None'}")
    print(f"  Resync period: {controller_config.resync_period}s")


def version_command(args: argparse.Namespace) -> None:
    """Show version information."""
    from . import __version__
    print(f"lbcontroller {__version__}")


def _add_override_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", "-c", help="Configuration file path")
    parser.add_argument("--default-backend-service", help="namespace/name of the default backend Service")
    parser.add_argument("--watch-namespace", help="Namespace to watch for Ingresses (default: all)")
    parser.add_argument("--config-map", help="namespace/name of the auxiliary ConfigMap")
    parser.add_argument("--ingress-class", help="Ingress class to serve")
    parser.add_argument("--default-tls-secret", help="namespace/name of the default TLS Secret")
    parser.add_argument("--resync-period", type=int, help="Seconds between forced full rebuilds")
    parser.add_argument("--kubeconfig", dest="kubeconfig_path", help="Path to kubeconfig file")
    parser.add_argument("--context", help="Kubernetes context name")


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="lbcontroller: Ingress load balancer controller",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the controller")
    _add_override_flags(serve_parser)
    serve_parser.add_argument("--host", default="0.0.0.0", help="Status server host (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=10254, help="Status server port (default: 10254)")
    serve_parser.set_defaults(func=serve_command)

    render_parser = subparsers.add_parser("render", help="Build the configuration once and print it")
    _add_override_flags(render_parser)
    render_parser.add_argument(
        "--output", "-o",
        choices=["json", "yaml", "table"],
        default="table",
        help="Output format (default: table)",
    )
    render_parser.set_defaults(func=render_command)

    init_parser = subparsers.add_parser("init-config", help="Generate a sample configuration file")
    init_parser.add_argument("--output", "-o", help="Output file path (default: stdout)")
    init_parser.set_defaults(func=init_config_command)

    validate_parser = subparsers.add_parser("validate-config", help="Validate a configuration file")
    validate_parser.add_argument("--config", "-c", required=True, help="Configuration file path")
    validate_parser.set_defaults(func=validate_config_command)

    version_parser = subparsers.add_parser("version", help="Show version information")
    version_parser.set_defaults(func=version_command)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
