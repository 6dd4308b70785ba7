from __future__ import annotations

from pathlib import Path
import sys

import pytest

_SRC = Path(__file__).resolve().parents[1] / 'src'


def _ensure_src_first() -> None:
    if not _SRC.is_dir():
        return
    src_key = str(_SRC).replace('\\', '/').lower()
    rest = [item for item in sys.path if str(item).replace('\\', '/').lower() != src_key]
    sys.path[:] = [str(_SRC), *rest]


_ensure_src_first()


@pytest.fixture(autouse=True)
def _isolate_prwatch_env(monkeypatch):
    for name in ('GITHUB_TOKEN', 'github_token', 'AWE_PRWATCH_MOCK_GITHUB'):
        monkeypatch.delenv(name, raising=False)
