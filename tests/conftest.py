from __future__ import annotations

import importlib.util
from typing import Optional

import pytest

from memory_guard.core import BackendRegistry, EventBus, RouterConfig, UnifiedClient
from memory_guard.utils.schema_validator import SchemaRegistry


def _has_httpx() -> bool:
    return importlib.util.find_spec("httpx") is not None


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "api: tests that drive the FastAPI app through TestClient (install with: pip install -e '.[test]')",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    if _has_httpx():
        return

    skip = pytest.mark.skip(reason="Missing 'httpx'. Install: pip install -e '.[test]'")
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip)


class Stack:
    def __init__(self, config: Optional[RouterConfig] = None, strict: bool = False):
        self.bus = EventBus(strict=strict, schemas=SchemaRegistry())
        self.registry = BackendRegistry(config or RouterConfig())
        self.client = UnifiedClient(self.registry)


@pytest.fixture
def make_stack():
    return Stack
