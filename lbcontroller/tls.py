"""TLS credential resolution from Kubernetes Secrets."""

import base64
import binascii
import hashlib
import os
from typing import Any, Dict, List, NamedTuple, Optional, Set

from .cache import ResourceCache, object_key
from .errors import TLSSecretNotFoundError
from .logging_config import get_logger
from .models import ChecksumFile, TLSCredential, split_key

logger = get_logger(__name__)

TLS_CERT_KEY = "tls.crt"
TLS_PRIVATE_KEY_KEY = "tls.key"
DEFAULT_TLS_DIR = "/etc/lbcontroller/tls"


def tls_cred_prefix(secret: Any) -> str:
    """File name prefix for the credential files of a Secret."""
    return f"{secret.metadata.namespace}_{secret.metadata.name}"


def create_tls_key_path(prefix: str, tls_dir: str = DEFAULT_TLS_DIR) -> str:
    return os.path.join(tls_dir, f"{prefix}.key")


def create_tls_cert_path(prefix: str, tls_dir: str = DEFAULT_TLS_DIR) -> str:
    return os.path.join(tls_dir, f"{prefix}.crt")


def checksum(data: bytes) -> str:
    """Hex encoded SHA-256 of data."""
    return hashlib.sha256(data).hexdigest()


def _secret_bytes(secret: Any, key: str) -> bytes:
    data = secret.data or {}
    if not data.get(key):
        raise TLSSecretNotFoundError(f"secret {object_key(secret)} has no {key}")
    try:
        return base64.b64decode(data[key], validate=True)
    except (binascii.Error, ValueError) as e:
        raise TLSSecretNotFoundError(f"secret {object_key(secret)} has malformed {key}: {e}") from e


def create_tls_cred(secret: Any, tls_dir: str = DEFAULT_TLS_DIR) -> TLSCredential:
    """Build a credential whose paths derive from the Secret identity.

    Raises:
        TLSSecretNotFoundError: If the Secret lacks a certificate or key.
    """
    cert = _secret_bytes(secret, TLS_CERT_KEY)
    key = _secret_bytes(secret, TLS_PRIVATE_KEY_KEY)
    prefix = tls_cred_prefix(secret)
    return TLSCredential(
        name=object_key(secret),
        key=ChecksumFile(path=create_tls_key_path(prefix, tls_dir), content=key, checksum=checksum(key)),
        cert=ChecksumFile(path=create_tls_cert_path(prefix, tls_dir), content=cert, checksum=checksum(cert)),
    )


class TLSResolution(NamedTuple):
    """Outcome of TLS resolution for one build."""

    default_cred: Optional[TLSCredential]
    sub_creds: List[TLSCredential]
    secured_ingresses: Set[str]
    default_configured: bool

    @property
    def tls(self) -> bool:
        return self.default_cred is not None


class TLSCredentialResolver:
    """Resolves the default and per-Ingress TLS credentials.

    Credentials are deduplicated by Secret identity; the default Secret is
    never repeated among the sub credentials.
    """

    def __init__(self, cache: ResourceCache, default_tls_secret: Optional[str] = None,
                 tls_dir: str = DEFAULT_TLS_DIR):
        self._cache = cache
        self.default_tls_secret = default_tls_secret
        self.tls_dir = tls_dir

    def resolve_default(self) -> Optional[TLSCredential]:
        """Resolve the configured default credential, if any.

        Raises:
            TLSSecretNotFoundError: If a default Secret is configured but unusable.
        """
        if not self.default_tls_secret:
            return None
        namespace, name = split_key(self.default_tls_secret)
        secret = self._cache.secrets.get(namespace, name)
        if secret is None:
            raise TLSSecretNotFoundError(f"default TLS secret {self.default_tls_secret} not found")
        return create_tls_cred(secret, self.tls_dir)

    def resolve(self, ingresses: List[Any]) -> TLSResolution:
        """Resolve credentials for the given, already class-filtered, Ingresses."""
        default_cred = self.resolve_default()
        default_configured = default_cred is not None

        creds: Dict[str, TLSCredential] = {}
        secured: Set[str] = set()
        for ing in ingresses:
            for binding in ing.spec.tls or []:
                if not binding.secret_name:
                    continue
                secret_key = f"{ing.metadata.namespace}/{binding.secret_name}"
                if default_cred is not None and secret_key == default_cred.name:
                    secured.add(object_key(ing))
                    continue
                if secret_key not in creds:
                    cred = self._resolve_secret(secret_key, ing)
                    if cred is None:
                        continue
                    creds[secret_key] = cred
                secured.add(object_key(ing))

        sub_creds = [creds[k] for k in sorted(creds)]
        if default_cred is None and sub_creds:
            default_cred, sub_creds = sub_creds[0], sub_creds[1:]
            logger.debug("Promoted first ingress TLS credential to default", secret=default_cred.name)

        return TLSResolution(
            default_cred=default_cred,
            sub_creds=sub_creds,
            secured_ingresses=secured,
            default_configured=default_configured,
        )

    def _resolve_secret(self, secret_key: str, ing: Any) -> Optional[TLSCredential]:
        namespace, name = split_key(secret_key)
        secret = self._cache.secrets.get(namespace, name)
        if secret is None:
            logger.warning("TLS secret not found, skipping",
                           secret=secret_key,
                           ingress=object_key(ing))
            return None
        try:
            return create_tls_cred(secret, self.tls_dir)
        except TLSSecretNotFoundError as e:
            logger.warning("TLS secret unusable, skipping",
                           secret=secret_key,
                           ingress=object_key(ing),
                           error=str(e))
            return None
