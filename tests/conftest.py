"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from helpers import FakeGenerator, RemoteServer

from copydesk.templates.loader import load_builtin_template
from copydesk.templates.schema import TemplateDefinition


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def remote_server() -> RemoteServer:
    return RemoteServer()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture(scope="session")
def brochure() -> TemplateDefinition:
    return load_builtin_template()
