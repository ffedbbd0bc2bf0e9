"""
Pytest configuration.

Why this exists:

The project uses a ``src/`` layout (package code lives in ``src/common``,
``src/classifier`` and ``src/embeddings``). Normally, developers run tests
after installing the package (e.g. ``pip install -e .``).

On some macOS/Python 3.13 setups, editable installs in dot-prefixed virtualenv
folders (like ``.venv``) can result in the generated ``.pth`` file being marked
as hidden, and Python's ``site`` module will skip hidden ``.pth`` files. When
that happens, ``import common`` fails even though the source tree is present.

This file makes tests robust in that scenario by adding ``src/`` to ``sys.path``
only when the package cannot be imported normally. It also provides the small
fakes shared by the test modules.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_src_on_path() -> None:
    try:
        import common  # noqa: F401
        return
    except ModuleNotFoundError:
        pass

    repo_root = Path(__file__).resolve().parents[1]
    src_dir = repo_root / "src"
    sys.path.insert(0, str(src_dir))


_ensure_src_on_path()

from common.errors import TransientAPIError  # noqa: E402
from common.models import EmbeddingResult  # noqa: E402
from common.storage import Storage  # noqa: E402


class FakeClock:
    """Manually advanced clock usable for both wall and monotonic time."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeEmbeddingSource:
    """
    Embedding source returning fixed vectors per text.

    Unknown texts get ``default``; texts in ``failing`` raise
    ``TransientAPIError``.
    """

    def __init__(self, vectors=None, default=None, tokens: int = 10, failing=()):
        self.vectors = dict(vectors or {})
        self.default = default if default is not None else [1.0, 0.0, 0.0]
        self.tokens = tokens
        self.failing = set(failing)
        self.calls: list[str] = []

    def embed(self, text: str) -> EmbeddingResult:
        self.calls.append(text)
        if text in self.failing:
            raise TransientAPIError(f"cannot embed {text!r}")
        return EmbeddingResult(vector=list(self.vectors.get(text, self.default)), usage_tokens=self.tokens)


class MemoryMarker:
    """In-memory freshness marker with the same monotonic write rule."""

    def __init__(self, value: float | None = None):
        self.value = value
        self.writes: list[float] = []

    def read(self) -> float | None:
        return self.value

    def write(self, timestamp: float) -> None:
        self.writes.append(timestamp)
        if self.value is None or timestamp > self.value:
            self.value = timestamp


@pytest.fixture
def storage(tmp_path) -> Storage:
    store = Storage(tmp_path / "classifier.db")
    store.initialize()
    return store


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeClock:
    return FakeClock(start=0.0)
