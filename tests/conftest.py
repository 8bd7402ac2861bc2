import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

from flixbook.core.config import GallerySettings

# Fixed "now" so the Unix-timestamp window never drifts between runs
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_settings(media_root: Path, **sections) -> GallerySettings:
    cfg = {"paths": {"media_root": str(media_root)}}
    cfg.update(sections)
    return GallerySettings(cfg)


def touch(path: Path, data: bytes = b"x") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def write_json(path: Path, payload) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def no_stat(path: Path):
    """File-times lookup for a filesystem that cannot be stat()ed."""
    return None


@pytest.fixture
def media_root(tmp_path: Path) -> Path:
    root = tmp_path / "public"
    root.mkdir()
    return root


@pytest.fixture
def settings(media_root: Path) -> GallerySettings:
    return make_settings(media_root)


@pytest.fixture(autouse=True)
def _flixbook_logs_reach_caplog():
    # setup_logging() (API/CLI) detaches the "flixbook" logger from root; undo that per test
    logger = logging.getLogger("flixbook")
    for h in list(logger.handlers):
        logger.removeHandler(h)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    yield


@pytest.fixture
def east_of_utc(monkeypatch):
    """Run the test with a fixed UTC+9 local zone (POSIX TZ string, no tzdata needed)."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset() not available on this platform")
    monkeypatch.setenv("TZ", "JST-9")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()
