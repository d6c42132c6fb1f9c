"""Finds log files under a root directory and decides which have new bytes."""

import logging
import os
import re
import stat
from dataclasses import dataclass
from typing import Iterator

from logbeat.models import FileProgress

logger = logging.getLogger(__name__)


class ScanError(OSError):
    """Directory traversal failed; the current pass is abandoned."""


@dataclass(frozen=True)
class ScannedFile:
    path: str
    modified: int   # st_mtime_ns
    size: int


class FileScanner:
    def __init__(self, directory: str, file_pattern: str | re.Pattern):
        self._directory = directory
        self._pattern = re.compile(file_pattern) if isinstance(file_pattern, str) else file_pattern

    @property
    def directory(self) -> str:
        return self._directory

    @property
    def pattern(self) -> re.Pattern:
        return self._pattern

    def scan(self) -> Iterator[ScannedFile]:
        """Yield matching regular files, recursively, in sorted walk order.

        Raises ScanError on the first traversal failure.
        """
        def _on_error(err: OSError):
            raise ScanError(f"Cannot walk {err.filename or self._directory}: {err}") from err

        root = os.path.abspath(self._directory)
        for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
            dirnames.sort()
            for name in sorted(filenames):
                path = os.path.join(dirpath, name)
                if not self._pattern.search(path):
                    continue
                try:
                    st = os.stat(path)
                except FileNotFoundError:
                    # Rotated away between listing and stat
                    continue
                except OSError as e:
                    raise ScanError(f"Cannot stat {path}: {e}") from e
                if not stat.S_ISREG(st.st_mode):
                    continue
                yield ScannedFile(path=path, modified=st.st_mtime_ns, size=st.st_size)


def has_changed(progress: FileProgress | None, scanned: ScannedFile) -> bool:
    """True when the file was never processed or its mtime moved strictly forward.

    Mtime granularity only: rewrites that keep the mtime, or clocks moving
    backwards, go unnoticed.
    """
    if progress is None:
        return True
    return scanned.modified > progress.last_modified
