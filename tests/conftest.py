"""Shared fixtures: an initialized session over the bundled runtime."""

from collections.abc import Iterator
from pathlib import Path

import pytest

from scriptbridge import BridgeConfig, LeakPolicy, Runtime, ScriptObject, Session

SCRIPTS_DIR = Path(__file__).parent / "fixtures" / "scripts"


@pytest.fixture
def session() -> Iterator[Session]:
    config = BridgeConfig(search_paths=(SCRIPTS_DIR,), leak_policy=LeakPolicy.IGNORE)
    with Session.from_config(config) as session:
        yield session


@pytest.fixture
def runtime(session: Session) -> Runtime:
    return session.runtime


@pytest.fixture
def calculator(session: Session) -> ScriptObject:
    return session.load("calculator.py")
