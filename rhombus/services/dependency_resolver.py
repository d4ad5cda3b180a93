"""
Dependency Resolver — Direct import edges between workspace files.

Imports are read textually (ES-module `import ... from "x"` and CommonJS
`require("x")`); only relative specifiers are resolved, bare package
names are skipped. Edges are cached per file until `clear_cache()`, so
edits to an already-analysed file are not picked up before then.
"""
import os
import re
import logging
from typing import Optional, Protocol

from rhombus.services.workspace import Workspace

logger = logging.getLogger(__name__)

SOURCE_EXTENSIONS = [".ts", ".tsx", ".js", ".jsx", ".json"]
INDEX_EXTENSIONS = [".ts", ".tsx", ".js", ".jsx"]


# ─────────────────────────────────────────────────────────────────────────────
# Import parsing strategy
# ─────────────────────────────────────────────────────────────────────────────

class ImportParser(Protocol):
    """Turns file text into raw module specifiers"""

    def parse(self, content: str) -> list[str]: ...


class RegexImportParser:
    """Heuristic ES-module + CommonJS specifier scan"""

    IMPORT_RE = re.compile(r"""import\b[^'"`;]*?\bfrom\s+['"`]([^'"`]+)['"`]""")
    REQUIRE_RE = re.compile(r"""require\(['"`]([^'"`]+)['"`]\)""")

    def parse(self, content: str) -> list[str]:
        specifiers: list[str] = []
        for pattern in (self.IMPORT_RE, self.REQUIRE_RE):
            for match in pattern.finditer(content):
                if match.group(1) not in specifiers:
                    specifiers.append(match.group(1))
        return specifiers


# ─────────────────────────────────────────────────────────────────────────────
# Resolver
# ─────────────────────────────────────────────────────────────────────────────

class DependencyResolver:
    """
    Usage:
        resolver = DependencyResolver(workspace)
        deps = await resolver.dependencies_of("/proj/src/a.ts")
    """

    def __init__(self, workspace: Workspace, parser: Optional[ImportParser] = None):
        self.workspace = workspace
        self.parser = parser or RegexImportParser()
        self._graph: dict[str, list[str]] = {}

    async def dependencies_of(self, file_path: str) -> list[str]:
        """Resolved direct dependencies of a file; empty when it cannot be read"""
        if file_path in self._graph:
            return list(self._graph[file_path])

        try:
            document = await self.workspace.open_document(file_path)
        except Exception as e:
            logger.warning(f"DependencyResolver: cannot read {file_path}: {e}")
            return []

        dependencies: list[str] = []
        for specifier in self.parser.parse(document.text):
            resolved = await self.resolve(specifier, file_path)
            if resolved and resolved not in dependencies:
                dependencies.append(resolved)

        self._graph[file_path] = dependencies
        logger.debug(f"DependencyResolver: {file_path} -> {len(dependencies)} dependencies")
        return list(dependencies)

    async def resolve(self, specifier: str, from_file: str) -> Optional[str]:
        """Resolve a relative specifier to a file on disk, or None"""
        if not specifier.startswith("."):
            return None

        base = os.path.normpath(os.path.join(os.path.dirname(from_file), specifier))

        if await self.workspace.exists(base):
            return base

        for ext in SOURCE_EXTENSIONS:
            candidate = base + ext
            if await self.workspace.exists(candidate):
                return candidate

        for ext in INDEX_EXTENSIONS:
            candidate = os.path.join(base, f"index{ext}")
            if await self.workspace.exists(candidate):
                return candidate

        logger.debug(f"DependencyResolver: unresolved {specifier!r} from {from_file}")
        return None

    def clear_cache(self):
        self._graph.clear()

    def __len__(self) -> int:
        return len(self._graph)
