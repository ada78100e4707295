"""The reloader seam: applying a built configuration to the proxy."""

import abc
import hashlib
import os
import subprocess
import tempfile
import threading
from typing import List, Optional

import yaml

from .errors import ReloadError
from .logging_config import get_logger, log_function_entry, log_function_exit
from .models import ChecksumFile, IngressConfig, ReloaderConfig

logger = get_logger(__name__)

CONFIG_FILE_NAME = "ingress.yaml"
RELOAD_TIMEOUT_SECONDS = 30
PROXY_STOP_TIMEOUT_SECONDS = 10


class Reloader(abc.ABC):
    """Applies an IngressConfig to the proxy."""

    @abc.abstractmethod
    def check_and_reload(self, ing_config: IngressConfig) -> bool:
        """Apply the configuration.

        Returns:
            True if the proxy state changed.

        Raises:
            ReloadError: If the configuration could not be applied.
        """

    @abc.abstractmethod
    def start(self, stop_event: threading.Event) -> None:
        """Start any background lifecycle; it must end once stop_event is set."""


def render_config(ing_config: IngressConfig) -> str:
    """Render the configuration as YAML, without key material."""
    return yaml.safe_dump(ing_config.model_dump(mode="json"), default_flow_style=False, sort_keys=False)


def _file_checksum(path: str) -> Optional[str]:
    try:
        with open(path, "rb") as f:
            return hashlib.sha256(f.read()).hexdigest()
    except FileNotFoundError:
        return None


def _write_atomic(path: str, data: bytes, mode: int = 0o644) -> None:
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class FileReloader(Reloader):
    """Writes the configuration and TLS files to disk and runs a reload command.

    Files are only rewritten when their checksum differs from what is on
    disk, and the reload command only runs when something was rewritten.
    """

    def __init__(self, config: ReloaderConfig):
        self.config = config
        self.config_path = os.path.join(config.config_dir, CONFIG_FILE_NAME)
        self._lock = threading.Lock()
        self._proxy: Optional[subprocess.Popen] = None

    def check_and_reload(self, ing_config: IngressConfig) -> bool:
        log_function_entry(logger, "check_and_reload", config_path=self.config_path)
        with self._lock:
            try:
                changed = self._write_tls_files(ing_config)
                rendered = render_config(ing_config).encode()
                if _file_checksum(self.config_path) != hashlib.sha256(rendered).hexdigest():
                    _write_atomic(self.config_path, rendered)
                    changed = True
            except OSError as e:
                raise ReloadError(f"could not write proxy configuration: {e}") from e

            if changed:
                self._run_reload_command()

        log_function_exit(logger, "check_and_reload", changed=changed)
        return changed

    def _write_tls_files(self, ing_config: IngressConfig) -> bool:
        creds = ([ing_config.default_tls_cred] if ing_config.default_tls_cred else []) + ing_config.sub_tls_cred
        changed = False
        for cred in creds:
            changed = self._write_checksum_file(cred.key, 0o600) or changed
            changed = self._write_checksum_file(cred.cert, 0o644) or changed
        return changed

    def _write_checksum_file(self, checksum_file: ChecksumFile, mode: int) -> bool:
        if _file_checksum(checksum_file.path) == checksum_file.checksum:
            return False
        _write_atomic(checksum_file.path, checksum_file.content, mode)
        logger.debug("Wrote TLS file", path=checksum_file.path)
        return True

    def _run_reload_command(self) -> None:
        if not self.config.reload_command:
            return
        logger.info("Reloading proxy", command=self.config.reload_command)
        try:
            subprocess.run(
                self.config.reload_command,
                check=True,
                capture_output=True,
                timeout=RELOAD_TIMEOUT_SECONDS,
            )
        except subprocess.CalledProcessError as e:
            raise ReloadError(
                f"reload command exited with {e.returncode}: {e.stderr.decode(errors='replace').strip()}"
            ) from e
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ReloadError(f"reload command failed: {e}") from e

    def start(self, stop_event: threading.Event) -> None:
        if not self.config.proxy_command:
            logger.debug("No proxy command configured, nothing to supervise")
            return
        self._proxy = self._spawn(self.config.proxy_command)
        threading.Thread(
            target=self._supervise,
            args=(stop_event,),
            name="proxy-supervisor",
            daemon=True,
        ).start()

    @staticmethod
    def _spawn(command: List[str]) -> subprocess.Popen:
        logger.info("Starting proxy", command=command)
        try:
            return subprocess.Popen(command)
        except OSError as e:
            raise ReloadError(f"could not start proxy: {e}") from e

    def _supervise(self, stop_event: threading.Event) -> None:
        stop_event.wait()
        proxy = self._proxy
        if proxy is None or proxy.poll() is not None:
            return
        logger.info("Stopping proxy", pid=proxy.pid)
        proxy.terminate()
        try:
            proxy.wait(timeout=PROXY_STOP_TIMEOUT_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning("Proxy did not stop in time, killing", pid=proxy.pid)
            proxy.kill()
