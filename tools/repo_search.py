"""<search query>: rank repository files against a query.

The session talks to any object with search(query, limit) -> [SearchMatch].
KeywordSearchEngine is the built-in implementation: it walks the repository,
skips excluded and binary files, and scores each text file by how many
query terms it contains.

Every path an engine returns is re-checked with the path validator; paths
that fail are dropped from the listing.
"""

import fnmatch
import logging
import os
import re
import time
from dataclasses import dataclass

from core.errors import ErrorKind
from core.tool_protocol import CommandToken, ExecutionResult, ToolContext, format_file_size


logger = logging.getLogger(__name__)

MAX_PREVIEW_LENGTH = 100

_TERM_RE = re.compile(r"\w+")


@dataclass
class SearchMatch:
    path: str                   # relative to the repository root
    score: float
    preview: str = ""
    lines: int | None = None
    size: int | None = None


class KeywordSearchEngine:
    """Term-overlap search over the text files of a repository."""

    def __init__(self, root: str, exclusions: list[str] = None, max_file_size: int = 1024 * 1024):
        self.root = os.path.realpath(root)
        self.exclusions = list(exclusions or [])
        self.max_file_size = max_file_size

    def _excluded(self, rel: str) -> bool:
        name = os.path.basename(rel)
        for pattern in self.exclusions:
            pattern = pattern.rstrip("/")
            if fnmatch.fnmatchcase(name, pattern) or fnmatch.fnmatchcase(rel, pattern):
                return True
            if rel == pattern or rel.startswith(pattern + "/"):
                return True
        return False

    def _iter_files(self):
        for dirpath, dirnames, filenames in os.walk(self.root):
            rel_dir = os.path.relpath(dirpath, self.root)
            rel_dir = "" if rel_dir == os.curdir else rel_dir.replace(os.sep, "/")
            dirnames[:] = sorted(
                d for d in dirnames
                if not self._excluded(f"{rel_dir}/{d}" if rel_dir else d)
            )
            for filename in sorted(filenames):
                rel = f"{rel_dir}/{filename}" if rel_dir else filename
                if not self._excluded(rel):
                    yield rel, os.path.join(dirpath, filename)

    def _read_text(self, path: str) -> str | None:
        try:
            if os.path.islink(path) or os.path.getsize(path) > self.max_file_size:
                return None
            with open(path, "rb") as f:
                raw = f.read()
        except OSError:
            return None
        if b"\x00" in raw[:8192]:
            return None
        return raw.decode("utf-8", errors="replace")

    def search(self, query: str, limit: int = 10) -> list[SearchMatch]:
        terms = sorted({t.lower() for t in _TERM_RE.findall(query)})
        if not terms:
            return []

        matches = []
        for rel, full in self._iter_files():
            text = self._read_text(full)
            if text is None:
                continue
            lowered = text.lower()
            hits = [t for t in terms if t in lowered]
            name_hits = [t for t in terms if t in rel.lower()]
            if not hits and not name_hits:
                continue
            score = 0.8 * len(hits) / len(terms) + 0.2 * len(name_hits) / len(terms)
            matches.append(SearchMatch(
                path=rel,
                score=round(min(score, 1.0), 4),
                preview=_preview(text, hits),
                lines=text.count("\n") + (0 if text.endswith("\n") or not text else 1),
                size=len(text.encode("utf-8")),
            ))

        matches.sort(key=lambda m: (-m.score, m.path))
        return matches[:limit]


def _preview(text: str, terms: list[str]) -> str:
    """First line mentioning a term, trimmed to MAX_PREVIEW_LENGTH."""
    for line in text.splitlines():
        lowered = line.lower()
        if any(t in lowered for t in terms):
            line = " ".join(line.split())
            if len(line) > MAX_PREVIEW_LENGTH:
                line = line[:MAX_PREVIEW_LENGTH - 3] + "..."
            return line
    return ""


def format_search_results(query: str, matches: list[SearchMatch], duration: float, max_results: int) -> str:
    """Render the search listing."""
    out = [f"=== SEARCH: {query} ===\n", f"=== SEARCH RESULTS ({duration:.2f}s) ===\n"]

    if not matches:
        out.append("No files found matching query.\n")
        out.append("Try broader search terms.\n")
        out.append("=== END SEARCH ===\n")
        return "".join(out)

    for i, m in enumerate(matches, start=1):
        out.append(f"{i}. {m.path} (score: {m.score:.2f})\n")
        meta = []
        if m.lines is not None:
            meta.append(f"Lines: {m.lines}")
        if m.size is not None:
            meta.append(f"Size: {format_file_size(m.size)}")
        if meta:
            out.append("   " + " | ".join(meta) + "\n")
        if m.preview:
            out.append(f"   Preview: \"{m.preview}\"\n")
        out.append("\n")

    if len(matches) >= max_results:
        out.append(f"[Showing top {max_results} results]\n")
    out.append("=== END SEARCH ===\n")
    return "".join(out)


def search_repository(token: CommandToken, ctx: ToolContext) -> ExecutionResult:
    """Run the configured search engine and list validated matches."""
    if ctx.search_engine is None:
        return ExecutionResult.fail(token, ErrorKind.COMMAND_DISABLED, "Search is not configured")

    limit = ctx.config.search_max_results
    start = time.monotonic()
    try:
        matches = ctx.search_engine.search(token.argument, limit=limit)
    except Exception as e:
        logger.exception("Search engine failed for %r", token.argument)
        return ExecutionResult.fail(token, ErrorKind.INTERNAL, f"Search failed: {type(e).__name__}: {e}")

    accepted = []
    for match in matches:
        check = ctx.paths.validate(match.path)
        if not check["ok"]:
            logger.warning("Dropping search result %r: %s", match.path, check["error"])
            continue
        if match.size is None:
            try:
                match.size = os.path.getsize(check["resolved_path"])
            except OSError:
                logger.warning("Dropping search result %r: cannot stat", match.path)
                continue
        accepted.append(match)
        if len(accepted) >= limit:
            break

    duration = time.monotonic() - start
    return ExecutionResult(
        token=token,
        success=True,
        payload=format_search_results(token.argument, accepted, duration, limit),
        match_count=len(accepted),
        duration=duration,
    )
