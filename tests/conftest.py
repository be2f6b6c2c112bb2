"""Pytest configuration and fixtures."""

import pytest
import sys
from pathlib import Path

# Add src (and this directory, for the fakes) to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))
sys.path.insert(0, str(Path(__file__).parent))

from zkpool.config import PoolSettings
from zkpool.core.controller import Controller
from zkpool.crypto.encryption import generate_keypair
from zkpool.utils.hash import Sha256FieldHasher

from fakes import FakePoolContract, FakeProvingBackend

TREE_HEIGHT = 8


@pytest.fixture
def hasher():
    return Sha256FieldHasher()


@pytest.fixture
def keypair():
    """(private_key, public_key) of the wallet owner."""
    return generate_keypair()


@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file."""
    return PoolSettings(
        _env_file=None,
        merkle_tree_height=TREE_HEIGHT,
        proving_timeout=5,
        prover_workers=1,
        rate_tolerance_bps=0,
        proving_keys_dir=None,
        database_url=None,
    )


@pytest.fixture
def chain(hasher):
    return FakePoolContract(hasher, tree_height=TREE_HEIGHT)


@pytest.fixture
def lazy_chain(hasher):
    return FakePoolContract(hasher, tree_height=TREE_HEIGHT, lazy=True)


@pytest.fixture
def backend(hasher):
    return FakeProvingBackend(hasher)


@pytest.fixture
def controller(chain, backend, settings, hasher):
    ctrl = Controller(chain, backend, settings=settings, hasher=hasher)
    yield ctrl
    ctrl.close()


@pytest.fixture
def temp_db(tmp_path):
    """Fixture providing a temporary database URL."""
    return f"sqlite:///{tmp_path / 'test.db'}"
