from __future__ import annotations

"""
Bootstraps the two local services the pipeline depends on.

ensure_running(descriptor):
  1) probe the health endpoint; alive => done (never spawns twice)
  2) resolve the binary: env override -> bundled next to the program ->
     configured install dir -> well-known OS locations -> PATH
  3) spawn it detached with stdout/stderr discarded
  4) poll the probe at a fixed interval up to a bounded attempt count
"""

import os
import shutil
import subprocess
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import httpx
from loguru import logger

from . import config
from .config import ServiceEndpoint
from .errors import ExecutableNotFound, ServiceStartTimeout

IS_WINDOWS = sys.platform.startswith("win")


def exe_name(base: str) -> str:
    return f"{base}.exe" if IS_WINDOWS else base


@dataclass
class ServiceDescriptor:
    """Everything needed to find, start and probe one local service."""

    name: str
    binary: str
    endpoint: ServiceEndpoint
    args: List[str] = field(default_factory=list)
    env_override: Optional[str] = None
    install_dir: Optional[Path] = None
    well_known: List[Path] = field(default_factory=list)
    extra_env: Dict[str, str] = field(default_factory=dict)
    ensure_dirs: List[Path] = field(default_factory=list)
    start_attempts: int = 30
    poll_interval: float = config.START_POLL_INTERVAL_S


def _common_locations(binary: str) -> List[Path]:
    name = exe_name(binary)
    if IS_WINDOWS:
        roots = [os.getenv("ProgramFiles", r"C:\Program Files"), os.getenv("LOCALAPPDATA", "")]
        return [Path(r) / "Programs" / binary / name for r in roots if r] + [
            Path(r) / binary / name for r in roots if r
        ]
    return [
        Path("/usr/local/bin") / name,
        Path("/usr/bin") / name,
        Path("/opt/homebrew/bin") / name,
        Path.home() / ".local" / "bin" / name,
    ]


def kiwix_descriptor(
    zim_path: str | Path,
    endpoint: Optional[ServiceEndpoint] = None,
    install_dir: Optional[Path] = None,
) -> ServiceDescriptor:
    zim = Path(zim_path)
    if not zim.is_file():
        raise FileNotFoundError(f"ZIM file not found: {zim}")
    endpoint = endpoint or config.kiwix_endpoint()
    return ServiceDescriptor(
        name="kiwix-serve",
        binary="kiwix-serve",
        endpoint=endpoint,
        args=[f"--port={endpoint.port}", f"--address={endpoint.host}", str(zim)],
        env_override=config.KIWIX_BIN_ENV,
        install_dir=install_dir or config.TOOLS_DIR,
        well_known=_common_locations("kiwix-serve"),
        start_attempts=config.KIWIX_START_ATTEMPTS,
    )


def ollama_descriptor(
    endpoint: Optional[ServiceEndpoint] = None,
    models_dir: Optional[Path] = None,
    install_dir: Optional[Path] = None,
) -> ServiceDescriptor:
    endpoint = endpoint or config.ollama_endpoint()
    extra_env = {"OLLAMA_HOST": f"{endpoint.host}:{endpoint.port}"}
    ensure_dirs: List[Path] = []
    if models_dir:
        extra_env[config.OLLAMA_MODELS_ENV] = str(models_dir)
        ensure_dirs.append(Path(models_dir))

    well_known = _common_locations("ollama")
    if sys.platform == "darwin":
        well_known.append(Path("/Applications/Ollama.app/Contents/Resources/ollama"))

    return ServiceDescriptor(
        name="ollama",
        binary="ollama",
        endpoint=endpoint,
        args=["serve"],
        env_override=config.OLLAMA_BIN_ENV,
        install_dir=install_dir or config.OLLAMA_INSTALL_DIR,
        well_known=well_known,
        extra_env=extra_env,
        ensure_dirs=ensure_dirs,
        start_attempts=config.OLLAMA_START_ATTEMPTS,
    )


def _detach_kwargs() -> dict:
    if IS_WINDOWS:
        flags = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0) | getattr(subprocess, "DETACHED_PROCESS", 0)
        return {"creationflags": flags}
    return {"start_new_session": True}


class ServiceSupervisor:
    """
    Idempotently makes a named local service reachable.

    `spawn` and `sleep` are injectable so tests never start processes or wait.
    """

    def __init__(
        self,
        client: httpx.Client,
        spawn: Callable[..., object] = subprocess.Popen,
        sleep: Callable[[float], None] = time.sleep,
        program_dir: Optional[Path] = None,
    ) -> None:
        self._client = client
        self._spawn = spawn
        self._sleep = sleep
        self._program_dir = program_dir or Path(sys.argv[0] or ".").resolve().parent
        self.processes: Dict[str, object] = {}

    def is_alive(self, endpoint: ServiceEndpoint) -> bool:
        try:
            r = self._client.get(endpoint.health_url, timeout=config.HEALTH_TIMEOUT_S)
        except httpx.HTTPError as e:
            logger.debug("Probe {} failed: {}", endpoint.health_url, e)
            return False
        return r.is_success

    def candidate_paths(self, descriptor: ServiceDescriptor) -> List[Path]:
        """Fallback chain of on-disk locations, PATH lookup excluded."""
        name = exe_name(descriptor.binary)
        paths: List[Path] = []
        if descriptor.env_override:
            override = os.getenv(descriptor.env_override)
            if override:
                paths.append(Path(override))
        paths.append(self._program_dir / name)
        paths.append(self._program_dir / "tools" / name)
        if descriptor.install_dir:
            paths.append(Path(descriptor.install_dir) / name)
        paths.extend(descriptor.well_known)
        return paths

    def resolve_executable(self, descriptor: ServiceDescriptor) -> str:
        tried: List[str] = []
        for p in self.candidate_paths(descriptor):
            tried.append(str(p))
            if p.is_file():
                logger.debug("Resolved {} at {}", descriptor.name, p)
                return str(p)

        found = shutil.which(descriptor.binary)
        tried.append(f"PATH:{descriptor.binary}")
        if found:
            logger.debug("Resolved {} on PATH: {}", descriptor.name, found)
            return found
        raise ExecutableNotFound(descriptor.name, tried)

    def _child_env(self, descriptor: ServiceDescriptor) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(descriptor.extra_env)
        return env

    def ensure_running(self, descriptor: ServiceDescriptor) -> None:
        endpoint = descriptor.endpoint
        if self.is_alive(endpoint):
            logger.info("{} already reachable at {}", descriptor.name, endpoint.base_url)
            return

        exe = self.resolve_executable(descriptor)
        for d in descriptor.ensure_dirs:
            d.mkdir(parents=True, exist_ok=True)

        cmd: Sequence[str] = [exe, *descriptor.args]
        logger.info("Starting {}: {}", descriptor.name, " ".join(cmd))
        proc = self._spawn(
            list(cmd),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            env=self._child_env(descriptor),
            **_detach_kwargs(),
        )
        self.processes[descriptor.name] = proc

        for _ in range(descriptor.start_attempts):
            if self.is_alive(endpoint):
                logger.info("{} is up at {}", descriptor.name, endpoint.base_url)
                return
            self._sleep(descriptor.poll_interval)

        raise ServiceStartTimeout(descriptor.name, descriptor.start_attempts)
