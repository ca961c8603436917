"""issue_etl.issue_cache

Read side of the on-disk issue cache written by the analysis step.

The cache is a JSON-lines file, one issue per line, optionally gzip
compressed (``.gz`` suffix). It is read forward-only, one line at a time,
so the whole cache is never held in memory.
"""

from __future__ import annotations

import gzip
import json
from collections.abc import Iterator
from pathlib import Path
from typing import IO

from issue_etl.model import Issue, issue_from_dict
from issue_etl.shared import IssueCacheError


class IssueCacheIterator:
    """Closeable single-pass iterator over the issues of one cache file."""

    def __init__(self, fh: IO[bytes], path: Path) -> None:
        self._fh = fh
        self._path = path
        self._line_no = 0
        self._closed = False

    def __iter__(self) -> Iterator[Issue]:
        return self

    def __next__(self) -> Issue:
        if self._closed:
            raise StopIteration
        for raw in self._fh:
            self._line_no += 1
            try:
                line = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise IssueCacheError(
                    f"{self._path.name}:{self._line_no}: issue record is not valid UTF-8 "
                    f"({exc.reason} at byte {exc.start})"
                ) from exc
            if not line.strip():
                continue
            try:
                return issue_from_dict(json.loads(line))
            except (ValueError, KeyError, TypeError, AttributeError) as exc:
                raise IssueCacheError(
                    f"{self._path.name}:{self._line_no}: malformed issue record "
                    f"({type(exc).__name__}: {exc})"
                ) from exc
        raise StopIteration

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._fh.close()

    def __enter__(self) -> IssueCacheIterator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class IssueCache:
    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def file_size(self) -> int:
        try:
            return self._path.stat().st_size
        except FileNotFoundError as exc:
            raise IssueCacheError(f"issue cache not found: {self._path}") from exc

    def traverse(self) -> IssueCacheIterator:
        try:
            if self._path.suffix == ".gz":
                fh: IO[bytes] = gzip.open(self._path, "rb")
            else:
                fh = self._path.open("rb")
        except FileNotFoundError as exc:
            raise IssueCacheError(f"issue cache not found: {self._path}") from exc
        return IssueCacheIterator(fh, self._path)
