"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from helpers import FakeRunner, SequentialIds
from toolweave.orchestration.message_parser import MessageParser
from toolweave.tools.registry import ToolRegistry, default_registry


@pytest.fixture
def registry() -> ToolRegistry:
    return default_registry()


@pytest.fixture
def ids() -> SequentialIds:
    return SequentialIds()


@pytest.fixture
def parser(registry: ToolRegistry, ids: SequentialIds) -> MessageParser:
    return MessageParser(registry, id_factory=ids)


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()
