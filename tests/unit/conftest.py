# pylint: disable=missing-module-docstring,missing-function-docstring
import pytest

from observability import logger


@pytest.fixture(autouse=True)
def quiet_logs(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Keep JSONL output out of test stdout; tests may inspect the lines."""
    lines: list[str] = []
    monkeypatch.setattr(logger, "_print", lines.append)
    return lines
