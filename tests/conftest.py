"""Shared fixtures for archrel tests."""
from __future__ import annotations
import os
import sys
import pytest

# Ensure src/ is on the path so archrel is importable without install
_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
_SRC = os.path.join(_ROOT, "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from archrel.lts_parser import parse_lts_file
from archrel.minimizer import minimize_all

EXAMPLES_DIR = os.path.join(_ROOT, "examples")


def _bundle_path(name: str) -> str:
    return os.path.join(EXAMPLES_DIR, name)


# --------------- Parsed bundles ---------------

@pytest.fixture(scope="session")
def handshake_bundle():
    return parse_lts_file(_bundle_path("handshake.lts"))


@pytest.fixture(scope="session")
def single_bundle():
    return parse_lts_file(_bundle_path("single.lts"))


@pytest.fixture(scope="session")
def sensor_bundle():
    return parse_lts_file(_bundle_path("sensor.lts"))


@pytest.fixture(scope="session")
def plant_bundle():
    return parse_lts_file(_bundle_path("plant.lts"))


# --------------- Minimal automata ---------------

@pytest.fixture(scope="session")
def handshake_minimal(handshake_bundle):
    return minimize_all(handshake_bundle)


@pytest.fixture(scope="session")
def single_minimal(single_bundle):
    return minimize_all(single_bundle)


@pytest.fixture(scope="session")
def sensor_minimal(sensor_bundle):
    return minimize_all(sensor_bundle)


@pytest.fixture(scope="session")
def plant_minimal(plant_bundle):
    return minimize_all(plant_bundle)
