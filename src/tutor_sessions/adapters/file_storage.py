"""File-backed storage medium for the local mirror store."""

import fcntl
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from tutor_sessions.adapters.mirror_store import MirrorStorage
from tutor_sessions.domain.errors import LocalStorageFailure


@dataclass
class JsonFileStorage(MirrorStorage):
    """Keeps the mirror snapshot in a single JSON file.

    Every process pointed at the same path shares the snapshot. Writes go
    through a temporary file and ``os.replace`` so readers never observe a
    half-written document. ``locked`` takes an exclusive ``flock`` on a
    sidecar file, which serialises read-modify-write cycles across processes.
    """

    path: Path
    max_bytes: int | None = None

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(f"{self.path.name}.lock")

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the snapshot exclusively until the block exits."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handle = self.lock_path.open("a")
        except OSError as exc:
            raise LocalStorageFailure(f"Failed to lock {self.path}") from exc
        with handle:
            fcntl.flock(handle, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle, fcntl.LOCK_UN)

    def read(self) -> str | None:
        """Return the stored snapshot text, or ``None`` if nothing is stored."""
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise LocalStorageFailure(f"Failed to read {self.path}") from exc

    def write(self, payload: str) -> None:
        """Replace the stored snapshot."""
        data = payload.encode("utf-8")
        if self.max_bytes is not None and len(data) > self.max_bytes:
            raise LocalStorageFailure("Local storage quota exceeded")
        temp_path: Path | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "wb", dir=self.path.parent, prefix=".mirror-", delete=False
            ) as handle:
                temp_path = Path(handle.name)
                handle.write(data)
            os.replace(temp_path, self.path)
        except OSError as exc:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
            raise LocalStorageFailure(f"Failed to write {self.path}") from exc
