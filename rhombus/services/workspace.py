"""
Workspace Service — File system facade for the context pipeline.

Provides:
- Glob-based file search with a result cap (editor-style `**`, `*`, `?`, `{a,b}`)
- File existence checks and whole-file text reads
- Open-buffer-first document loading (unsaved edits win over disk)
- Workspace metadata (package.json, tsconfig.json, git branch)
- A deadline object that time-boxes a whole scanning task
"""
import os
import re
import json
import time
import logging
from pathlib import Path, PurePosixPath
from typing import Optional

from rhombus.models.context import WorkspaceInfo
from rhombus.models.document import TextDocument
from rhombus.services.document_registry import DocumentRegistry

logger = logging.getLogger(__name__)

# Directories never searched (dependency managers, VCS, build output)
SKIP_DIRS = {
    "node_modules", "__pycache__", ".git", ".venv", "venv",
    "dist", "build", ".next", ".cache", "coverage", ".pytest_cache",
    "bower_components", "site-packages",
}


# ─────────────────────────────────────────────────────────────────────────────
# Deadline
# ─────────────────────────────────────────────────────────────────────────────

class Deadline:
    """
    Time box for one scanning task.

    Every workspace scan of a request shares the same deadline, so the
    total latency is bounded rather than each call site on its own.
    `cancel()` expires it immediately.
    """

    def __init__(self, seconds: Optional[float] = None):
        self._expires_at = time.monotonic() + seconds if seconds is not None else None
        self._cancelled = False

    @property
    def expired(self) -> bool:
        if self._cancelled:
            return True
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    @property
    def remaining(self) -> Optional[float]:
        if self._cancelled:
            return 0.0
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        self._cancelled = True


# ─────────────────────────────────────────────────────────────────────────────
# Glob matching
# ─────────────────────────────────────────────────────────────────────────────

def expand_braces(pattern: str) -> list[str]:
    """`*.{ts,js}` -> [`*.ts`, `*.js`]; nested groups expand left to right"""
    match = re.search(r"\{([^{}]*)\}", pattern)
    if not match:
        return [pattern]
    head, tail = pattern[:match.start()], pattern[match.end():]
    expanded: list[str] = []
    for option in match.group(1).split(","):
        expanded.extend(expand_braces(head + option + tail))
    return expanded


def glob_escape(text: str) -> str:
    """Escape glob metacharacters in a literal path fragment (braces degrade to `?`)"""
    escaped = re.sub(r"([*?\[])", r"[\1]", text)
    return re.sub(r"[{}]", "?", escaped)


def _translate(pattern: str) -> str:
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif char == "*":
            parts.append("[^/]*")
            i += 1
        elif char == "?":
            parts.append("[^/]")
            i += 1
        elif char == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                parts.append(re.escape(char))
                i += 1
            else:
                parts.append("[" + pattern[i + 1:end].replace("\\", "\\\\") + "]")
                i = end + 1
        else:
            parts.append(re.escape(char))
            i += 1
    return "".join(parts)


def compile_glob(pattern: str) -> re.Pattern:
    """Compile a workspace glob into a regex matched against relative posix paths"""
    alternatives = [_translate(p) for p in expand_braces(pattern)]
    return re.compile("^(?:" + "|".join(alternatives) + ")$")


# ─────────────────────────────────────────────────────────────────────────────
# Workspace
# ─────────────────────────────────────────────────────────────────────────────

class Workspace:
    """
    File access for one workspace root.

    Usage:
        workspace = Workspace("/path/to/project", registry)
        files = await workspace.find_files("**/*.{ts,tsx}", limit=50)
        document = await workspace.open_document(files[0])
    """

    def __init__(self, root: str, registry: Optional[DocumentRegistry] = None):
        self.root = os.path.abspath(root)
        self.registry = registry

    async def find_files(
        self,
        include: str,
        exclude: Optional[str] = None,
        limit: Optional[int] = None,
        deadline: Optional[Deadline] = None,
    ) -> list[str]:
        """
        Find files under the root matching `include`.

        Walks in sorted order so results are stable; stops at `limit`
        hits or when the deadline expires.
        """
        include_re = compile_glob(include)
        exclude_re = compile_glob(exclude) if exclude else None
        results: list[str] = []

        for root, dirs, files in os.walk(self.root):
            if deadline and deadline.expired:
                logger.debug(f"Workspace: search for {include} stopped at deadline")
                break

            dirs[:] = sorted(d for d in dirs if d not in SKIP_DIRS)

            for filename in sorted(files):
                full_path = os.path.join(root, filename)
                relative = self.as_relative_path(full_path)
                if not include_re.match(relative):
                    continue
                if exclude_re and exclude_re.match(relative):
                    continue
                results.append(full_path)
                if limit is not None and len(results) >= limit:
                    return results

        return results

    def resolve_path(self, path: str) -> str:
        """Absolute, normalised form of a path; relative paths are taken from the root"""
        return os.path.normpath(os.path.join(self.root, path))

    async def exists(self, path: str) -> bool:
        return os.path.isfile(path)

    async def read_text(self, path: str) -> str:
        """Read a file from disk; raises OSError if it cannot be read"""
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return f.read()

    async def open_document(self, path: str) -> TextDocument:
        """Open buffer if the editor has one, otherwise the file on disk"""
        path = self.resolve_path(path)
        if self.registry:
            document = self.registry.get(path)
            if document is not None:
                return document
        text = await self.read_text(path)
        return TextDocument(path=path, text=text, version=0)

    def as_relative_path(self, path: str) -> str:
        """Workspace-relative posix path; paths outside the root come back unchanged"""
        try:
            relative = Path(path).resolve().relative_to(Path(self.root).resolve())
        except ValueError:
            return Path(path).as_posix()
        return PurePosixPath(*relative.parts).as_posix()

    # ─────────────────────────────────────────────────────────────────────────
    # Workspace metadata
    # ─────────────────────────────────────────────────────────────────────────

    def _read_json(self, filename: str) -> Optional[dict]:
        path = os.path.join(self.root, filename)
        if not os.path.isfile(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Workspace: could not parse {filename}: {e}")
            return None

    def git_branch(self) -> Optional[str]:
        head = os.path.join(self.root, ".git", "HEAD")
        try:
            with open(head, "r", encoding="utf-8") as f:
                ref = f.read().strip()
        except OSError:
            return None
        if ref.startswith("ref: refs/heads/"):
            return ref[len("ref: refs/heads/"):]
        return ref[:12] or None  # detached HEAD

    async def workspace_info(self, recent_files: Optional[list[str]] = None) -> WorkspaceInfo:
        return WorkspaceInfo(
            root_path=self.root,
            package_json=self._read_json("package.json"),
            ts_config=self._read_json("tsconfig.json"),
            git_branch=self.git_branch(),
            recent_files=list(recent_files or []),
        )
