"""Shared fixtures: a fresh document store per test, callers and a seeded RNG."""

import random

import pytest

from terminal.auth import ADMIN, Caller
from terminal.storage import DocumentStore


@pytest.fixture
async def store(tmp_path):
    store = DocumentStore(str(tmp_path / "terminal.db"))
    await store.initialize()
    return store


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def admin():
    return Caller("admin-1", frozenset({ADMIN}))


@pytest.fixture
def player_caller():
    return Caller("player-1")
