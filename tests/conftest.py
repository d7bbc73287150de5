"""
Shared fixtures.

- test environment variables are set for every test (autouse)
- the settings cache is cleared around every test
- small source trees are built on demand under ``tmp_path``
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from sitesnap.config import clear_settings_cache


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Point every setting at throwaway locations.

    ``monkeypatch`` restores the environment when the test ends.
    """

    env: dict[str, str] = {
        "SITESNAP_BACKUP_ROOT": str(tmp_path / "default-backup"),
        # no profile file unless a test writes one
        "SITESNAP_PROFILES_FILE": str(tmp_path / "missing-sitesnap.yaml"),
        "SITESNAP_LOG_LEVEL": "DEBUG",
    }

    for k, v in env.items():
        monkeypatch.setenv(k, v)
    monkeypatch.delenv("SITESNAP_LOG_DIR", raising=False)

    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def make_tree(tmp_path: Path) -> Callable[[dict[str, str | bytes]], Path]:
    """Create files from a ``{relative path: content}`` mapping.

    A key ending in ``/`` creates an empty directory.
    """

    def _make(files: dict[str, str | bytes], root: str = "src") -> Path:
        base = tmp_path / root
        base.mkdir(parents=True, exist_ok=True)
        for rel, content in files.items():
            path = base / rel
            if rel.endswith("/"):
                path.mkdir(parents=True, exist_ok=True)
                continue
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")
        return base

    return _make


@pytest.fixture
def backup_root(tmp_path: Path) -> Path:
    return tmp_path / "backup"
