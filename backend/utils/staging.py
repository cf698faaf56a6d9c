"""Ephemeral local files for in-flight merges."""
from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from uuid import uuid4

logger = logging.getLogger(__name__)


class StagingStore:
    def __init__(self, base_dir: str | Path | None = None):
        self.base_dir = Path(base_dir or tempfile.gettempdir())

    def allocate(self, suffix: str = ".bin") -> Path:
        """Return a fresh, not yet created path under the staging directory."""
        if suffix and not suffix.startswith("."):
            suffix = f".{suffix}"
        self.base_dir.mkdir(parents=True, exist_ok=True)
        return self.base_dir / f"{uuid4().hex}{suffix}"

    def release(self, path: str | Path) -> None:
        """Delete a staged file if it exists. Never raises."""
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("staging.release_failed path=%s error=%s", path, exc)

    def session(self) -> StagingSession:
        return StagingSession(self)


class StagingSession:
    """Tracks the files one pipeline run allocates and releases them on exit.

    Usable as a context manager; cleanup runs whether or not the body raised
    and never replaces the exception in flight.
    """

    def __init__(self, store: StagingStore):
        self.store = store
        self._paths: list[Path] = []
        self._released: set[Path] = set()

    @property
    def paths(self) -> list[Path]:
        return list(self._paths)

    def allocate(self, suffix: str = ".bin") -> Path:
        path = self.store.allocate(suffix)
        self._paths.append(path)
        return path

    def release_all(self) -> None:
        for path in self._paths:
            if path in self._released:
                continue
            self._released.add(path)
            self.store.release(path)

    def __enter__(self) -> StagingSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release_all()
