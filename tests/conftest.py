"""Shared fixtures: sandbox host, temporary state root and sample descriptors."""

import io
from pathlib import Path

import pytest
from rich.console import Console

from hostplane.core.descriptor.loader import parse_descriptor
from hostplane.core.runtime.state import HostIdentity
from hostplane.engine.generations import GenerationStore
from hostplane.engine.reconciler import Reconciler
from hostplane.providers.sandbox import SandboxBackend

REPO_ROOT = Path(__file__).resolve().parent.parent

BASE_DESCRIPTOR = """\
version: 1
host:
  hostname: workstation
channels: [unstable]
boot:
  kernel_modules: [nvidia]
  blacklisted_modules: [nouveau]
users:
  - name: yumlabs
    description: yumlabs
    groups: [wheel, docker]
services:
  - name: ssh
  - name: ollama
    package: unstable.ollama
    ports: [11434]
    settings:
      host: 0.0.0.0
packages: [git, unstable.ollama]
environment:
  variables:
    CUDA_VISIBLE_DEVICES: 0
  shell_aliases:
    ll: ls -l
"""

# Segunda versión: quita git, agrega htop y cambia una variable
NEXT_DESCRIPTOR = BASE_DESCRIPTOR.replace(
    "packages: [git, unstable.ollama]", "packages: [htop, unstable.ollama]"
).replace("CUDA_VISIBLE_DEVICES: 0", "CUDA_VISIBLE_DEVICES: 1")


@pytest.fixture
def identity():
    return HostIdentity(hostname="workstation", architecture="x86_64", system="Linux")


@pytest.fixture
def write_descriptor(tmp_path):
    def _write(text: str = BASE_DESCRIPTOR, name: str = "host.yaml") -> Path:
        path = tmp_path / name
        path.write_text(text)
        return path
    return _write


@pytest.fixture
def desired():
    return parse_descriptor(BASE_DESCRIPTOR, source="base.yaml")


@pytest.fixture
def next_desired():
    return parse_descriptor(NEXT_DESCRIPTOR, source="next.yaml")


@pytest.fixture
def output():
    """Console de Rich que escribe a un buffer inspeccionable."""
    buffer = io.StringIO()
    return Console(file=buffer, width=200), buffer


@pytest.fixture
def sandbox(tmp_path):
    return SandboxBackend(tmp_path / "sandbox.json")


@pytest.fixture
def store(tmp_path):
    return GenerationStore(tmp_path / "state")


@pytest.fixture
def reconciler(sandbox, store, identity):
    return Reconciler(sandbox, store, identity=identity, watchdog_seconds=60)
