"""Shared fixtures."""

from pathlib import Path

import pytest

from openpaw.memory import MemoryIndex, MemoryManager, MemoryStorage


@pytest.fixture
def storage(tmp_path: Path) -> MemoryStorage:
    """Storage in a temporary directory, structure created."""
    storage = MemoryStorage(tmp_path / "mem", max_facts=200)
    storage.init_structure()
    return storage


@pytest.fixture
def index(tmp_path: Path) -> MemoryIndex:
    """Index with a temporary database."""
    index = MemoryIndex(tmp_path / "memory.db")
    yield index
    index.close()


@pytest.fixture
def manager(tmp_path: Path) -> MemoryManager:
    """Initialized manager; closed without the final flush."""
    manager = MemoryManager(tmp_path / "mem", short_term_window=20, max_facts=200)
    manager.init()
    yield manager
    manager.close(flush=False)
