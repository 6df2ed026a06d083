# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from fakes import FakeStreamFactory
from observability import logger


@pytest.fixture
def stream_factory() -> FakeStreamFactory:
    return FakeStreamFactory()


@pytest.fixture(autouse=True)
def captured_logs(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Keep test output clean and let tests inspect emitted log lines."""
    lines: list[str] = []
    monkeypatch.setattr(logger, "_print", lines.append)
    monkeypatch.setattr(logger, "_min_level", logger._LEVELS["debug"])  # pylint: disable=protected-access
    monkeypatch.setattr(logger, "_json_enabled", True)
    return lines
