import subprocess

import httpx
import pytest

from eowkit.config import ServiceEndpoint
from eowkit.errors import ExecutableNotFound, ServiceStartTimeout
from eowkit import supervisor as sup
from eowkit.supervisor import ServiceDescriptor, ServiceSupervisor, exe_name, kiwix_descriptor, ollama_descriptor

ENDPOINT = ServiceEndpoint(host="127.0.0.1", port=8080, health_path="/")


class FakeService:
    """Health endpoint that comes up once the fake process is spawned."""

    def __init__(self, alive=False, starts=True):
        self.alive = alive
        self.starts = starts
        self.probes = 0
        self.spawned = []

    def handler(self, request):
        self.probes += 1
        if self.alive:
            return httpx.Response(200, text="ok")
        raise httpx.ConnectError("connection refused", request=request)

    def spawn(self, cmd, **kwargs):
        self.spawned.append((cmd, kwargs))
        if self.starts:
            self.alive = True
        return object()


def _supervisor(service, tmp_path, sleeps=None):
    http = httpx.Client(transport=httpx.MockTransport(service.handler))
    return ServiceSupervisor(
        http,
        spawn=service.spawn,
        sleep=(sleeps.append if sleeps is not None else (lambda s: None)),
        program_dir=tmp_path,
    )


def _descriptor(tmp_path, **kw):
    kw.setdefault("install_dir", tmp_path / "install")
    return ServiceDescriptor(name="svc", binary="svc", endpoint=ENDPOINT, args=["--flag"], **kw)


def _make_exe(path):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n")
    return path


def test_is_alive_false_on_errors(tmp_path):
    http = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(503)))
    assert ServiceSupervisor(http, program_dir=tmp_path).is_alive(ENDPOINT) is False

    svc = FakeService(alive=False)
    assert _supervisor(svc, tmp_path).is_alive(ENDPOINT) is False


def test_ensure_running_is_idempotent_for_live_service(tmp_path):
    svc = FakeService(alive=True)
    s = _supervisor(svc, tmp_path)
    s.ensure_running(_descriptor(tmp_path))
    s.ensure_running(_descriptor(tmp_path))
    assert svc.spawned == []


def test_ensure_running_spawns_once_then_stays_idempotent(tmp_path, monkeypatch):
    monkeypatch.setattr(sup.shutil, "which", lambda name: None)
    exe = _make_exe(tmp_path / exe_name("svc"))
    svc = FakeService(alive=False)
    s = _supervisor(svc, tmp_path)
    d = _descriptor(tmp_path, extra_env={"SVC_HOME": "/data"})

    s.ensure_running(d)
    s.ensure_running(d)

    assert len(svc.spawned) == 1
    cmd, kwargs = svc.spawned[0]
    assert cmd == [str(exe), "--flag"]
    assert kwargs["stdout"] is subprocess.DEVNULL
    assert kwargs["stderr"] is subprocess.DEVNULL
    assert kwargs["env"]["SVC_HOME"] == "/data"


def test_ensure_running_times_out(tmp_path, monkeypatch):
    monkeypatch.setattr(sup.shutil, "which", lambda name: "/usr/bin/svc")
    svc = FakeService(alive=False, starts=False)
    sleeps = []
    s = _supervisor(svc, tmp_path, sleeps=sleeps)

    with pytest.raises(ServiceStartTimeout):
        s.ensure_running(_descriptor(tmp_path, start_attempts=4, poll_interval=0.5))
    assert sleeps == [0.5] * 4
    assert len(svc.spawned) == 1


def test_resolution_order_env_override_first(tmp_path, monkeypatch):
    override = _make_exe(tmp_path / "elsewhere" / "custom-svc")
    _make_exe(tmp_path / exe_name("svc"))
    monkeypatch.setenv("SVC_BIN", str(override))
    s = _supervisor(FakeService(), tmp_path)
    assert s.resolve_executable(_descriptor(tmp_path, env_override="SVC_BIN")) == str(override)


def test_resolution_falls_through_to_install_dir_and_well_known(tmp_path, monkeypatch):
    monkeypatch.setattr(sup.shutil, "which", lambda name: None)
    s = _supervisor(FakeService(), tmp_path / "prog")

    known = _make_exe(tmp_path / "opt" / "svc")
    d = _descriptor(tmp_path, well_known=[known])
    assert s.resolve_executable(d) == str(known)

    installed = _make_exe(tmp_path / "install" / exe_name("svc"))
    assert s.resolve_executable(d) == str(installed)


def test_resolution_uses_path_last(tmp_path, monkeypatch):
    monkeypatch.setattr(sup.shutil, "which", lambda name: f"/somewhere/{name}")
    s = _supervisor(FakeService(), tmp_path)
    assert s.resolve_executable(_descriptor(tmp_path)) == "/somewhere/svc"


def test_executable_not_found_fails_fast(tmp_path, monkeypatch):
    monkeypatch.setattr(sup.shutil, "which", lambda name: None)
    monkeypatch.delenv("SVC_BIN", raising=False)
    svc = FakeService(alive=False)
    s = _supervisor(svc, tmp_path)

    with pytest.raises(ExecutableNotFound) as exc:
        s.ensure_running(_descriptor(tmp_path, env_override="SVC_BIN"))
    assert svc.spawned == []
    assert any("PATH:svc" in t for t in exc.value.tried)


def test_kiwix_descriptor_requires_zim(tmp_path):
    with pytest.raises(FileNotFoundError):
        kiwix_descriptor(tmp_path / "missing.zim", ENDPOINT)

    zim = tmp_path / "wiki.zim"
    zim.write_bytes(b"ZIM")
    d = kiwix_descriptor(zim, ENDPOINT)
    assert d.args == ["--port=8080", "--address=127.0.0.1", str(zim)]
    assert d.start_attempts == 60


def test_ollama_descriptor_sets_models_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(sup.shutil, "which", lambda name: "/usr/bin/ollama")
    models = tmp_path / "models"
    ep = ServiceEndpoint(host="127.0.0.1", port=11434, health_path="/api/tags")
    d = ollama_descriptor(ep, models_dir=models)
    assert d.args == ["serve"]
    assert d.extra_env["OLLAMA_MODELS"] == str(models)
    assert d.start_attempts == 30

    svc = FakeService(alive=False)
    _supervisor(svc, tmp_path).ensure_running(d)
    assert models.is_dir()
    assert svc.spawned[0][1]["env"]["OLLAMA_MODELS"] == str(models)
