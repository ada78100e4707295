"""Exceptions raised by the reconcile core."""


class ControllerError(Exception):
    """Base class for all lbcontroller errors."""


class InvalidResourceKeyError(ControllerError, ValueError):
    """A namespace/name reference could not be parsed."""


class DefaultBackendNotFoundError(ControllerError):
    """The default backend Service or its Endpoints are missing."""


class TLSSecretNotFoundError(ControllerError):
    """A required TLS Secret is missing or lacks key material."""


class ReloadError(ControllerError):
    """The reloader failed to apply a configuration."""


class StatusUpdateError(ControllerError):
    """Writing Ingress status failed, typically on a resource version conflict."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status
