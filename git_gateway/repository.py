"""Repository capability backing the search and fetch tools."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Protocol

log = logging.getLogger("git-gateway.repository")

SKIP_DIRS = {
    "node_modules",
    ".git",
    "target",
    "build",
    "dist",
    "__pycache__",
    ".venv",
}

EXACT_MATCH_SCORE = 100
PARTIAL_MATCH_SCORE = 50
MAX_SNIPPET_LINES = 3
MAX_FILE_BYTES = 1024 * 1024


class RepositoryError(Exception):
    pass


class DocumentNotFound(RepositoryError):
    pass


class InvalidDocumentId(RepositoryError):
    pass


@dataclass
class SearchMatch:
    id: str
    title: str
    snippet: str
    score: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "text": self.snippet, "url": None}


@dataclass
class Document:
    id: str
    title: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "text": self.content,
            "url": None,
            "metadata": self.metadata,
        }


class RepositoryCapability(Protocol):
    def search(self, query: str, limit: int = 10) -> list[SearchMatch]:
        ...

    def fetch(self, document_id: str) -> Document:
        ...


class FilesystemRepository:
    """Search and fetch over a directory tree.

    Ranking: exact filename match first, then partial filename matches, then
    files whose content matches, ordered by number of matching lines.
    """

    def __init__(self, root: str | os.PathLike):
        self.root = Path(root).resolve()

    def _walk(self) -> Iterator[Path]:
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
            for name in sorted(filenames):
                yield Path(dirpath) / name

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    @staticmethod
    def _read_text(path: Path) -> str | None:
        try:
            if path.stat().st_size > MAX_FILE_BYTES:
                return None
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return None

    def search(self, query: str, limit: int = 10) -> list[SearchMatch]:
        needle = query.strip().lower()
        if not needle:
            return []
        exact_names = {needle, f"{needle}.md", f"{needle}.json"}

        matches: list[SearchMatch] = []
        for path in self._walk():
            rel = self._relative(path)
            name = path.name.lower()
            if name in exact_names:
                score = EXACT_MATCH_SCORE
            elif needle in name:
                score = PARTIAL_MATCH_SCORE
            else:
                score = 0

            text = self._read_text(path)
            hits: list[tuple[int, str]] = []
            if text is not None:
                for lineno, line in enumerate(text.splitlines(), start=1):
                    if needle in line.lower():
                        hits.append((lineno, line.strip()))

            if score == 0:
                score = len(hits)
            if score == 0:
                continue

            if hits:
                snippet = "\n".join(
                    f"Line {n}: {line}" for n, line in hits[:MAX_SNIPPET_LINES]
                )
            elif text is not None:
                snippet = text[:200]
            else:
                snippet = ""
            matches.append(SearchMatch(id=rel, title=path.name, snippet=snippet, score=score))

        matches.sort(key=lambda m: (-m.score, m.id))
        log.debug("search", extra={"query": query, "matches": len(matches)})
        return matches[:limit]

    def _resolve(self, document_id: str) -> Path:
        if not document_id or "\x00" in document_id:
            raise InvalidDocumentId("Document id must be a non-empty relative path.")
        candidate = (self.root / document_id).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise InvalidDocumentId(f"Document id escapes the repository: {document_id}")
        return candidate

    def fetch(self, document_id: str) -> Document:
        path = self._resolve(document_id)
        if not path.is_file():
            raise DocumentNotFound(f"Document not found: {document_id}")
        text = self._read_text(path)
        if text is None:
            raise DocumentNotFound(f"Document is not a readable text file: {document_id}")
        stat = path.stat()
        return Document(
            id=self._relative(path),
            title=path.name,
            content=text,
            metadata={
                "file_path": self._relative(path),
                "file_size": stat.st_size,
                "last_modified": datetime.fromtimestamp(
                    stat.st_mtime, tz=timezone.utc
                ).isoformat(),
                "file_extension": path.suffix,
            },
        )
