"""Shared pytest fixtures for the monitor tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from openrouter_model_monitor import BaselineStore

BASE_URL = "https://openrouter.ai/models"


def catalog(*records: dict[str, Any]) -> dict[str, Any]:
    """Build a catalog document in the shape the models API returns."""
    return {"data": list(records)}


class RecordingNotifier:
    """Stand-in notifier that remembers every message it was handed."""

    def __init__(self, error: Exception | None = None) -> None:
        self.messages: list[str] = []
        self.error = error

    def __call__(self, text: str) -> None:
        self.messages.append(text)
        if self.error is not None:
            raise self.error


@pytest.fixture
def state_file(tmp_path: Path) -> Path:
    return tmp_path / "state" / "models_last.txt"


@pytest.fixture
def store(state_file: Path) -> BaselineStore:
    return BaselineStore(state_file)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
