"""Pytest configuration and fixtures for cycleproof tests."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT / "src"))


@pytest.fixture
def registry():
    """A fresh key registry so tests never share keys through module state."""
    from cycleproof.keys import KeyRegistry

    return KeyRegistry()


@pytest.fixture
def backend():
    from cycleproof.backend import get_backend

    return get_backend("transcript")


@pytest.fixture
def orchestrator(backend, registry):
    from cycleproof.orchestrator import ChainOrchestrator

    return ChainOrchestrator(backend=backend, registry=registry)


@pytest.fixture
def mock_orchestrator(registry):
    from cycleproof.backend import get_backend
    from cycleproof.orchestrator import ChainOrchestrator

    return ChainOrchestrator(backend=get_backend("mock"), registry=registry)


@pytest.fixture
def other_program():
    """Same guest code under a different name, hence a different fingerprint."""
    from cycleproof.program import Program
    from cycleproof.step import cycle_guest

    return Program(name="cycler-other", entry=cycle_guest)


def flip_byte(data: bytes, index: int | None = None) -> bytes:
    """Return ``data`` with one byte inverted (middle byte by default)."""
    if not data:
        raise ValueError("nothing to corrupt")
    idx = len(data) // 2 if index is None else index
    out = bytearray(data)
    out[idx] ^= 0xFF
    return bytes(out)


@pytest.fixture
def corrupt():
    return flip_byte
