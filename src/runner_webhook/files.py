"""File access used to load the mounted webhook secret."""

from pathlib import Path
from typing import Protocol


class FileReader(Protocol):
    """Reads a file and returns its content."""

    def read_file(self, path: str) -> bytes: ...


class OSFileReader:
    """FileReader backed by the local filesystem."""

    def read_file(self, path: str) -> bytes:
        try:
            return Path(path).read_bytes()
        except OSError as e:
            raise OSError(f"failed to read file {path}: {e.strerror or e}") from e
