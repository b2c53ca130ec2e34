"""Ignore patterns for project synchronization.

This module provides:
- IgnorePatterns: gitignore-style matching of index paths
- DEFAULT_IGNORE_PATTERNS: Hidden files and LaTeX build artifacts
- DEFAULT_IGNORE_FILE: Content written by `leafsync ignore-init`

Patterns in `.leafignore` may reference $MAIN_TEX and $MAIN_PDF, which
resolve to the main document names from the project settings. A pattern
starting with "/" is anchored to the project root; any other pattern
matches at every depth.
"""

from __future__ import annotations

import fnmatch
import logging
from pathlib import Path

from leafsync.core.config import CONFIG_DIR, IGNORE_FILE

logger = logging.getLogger(__name__)

VAR_MAIN_TEX = "$MAIN_TEX"
VAR_MAIN_PDF = "$MAIN_PDF"

DEFAULT_IGNORE_PATTERNS = [
    # Hidden files
    ".*",
    ".*/**",
    # LaTeX build artifacts
    "*.aux",
    "*.bbl",
    "*.bcf",
    "*.blg",
    "*.fdb_latexmk",
    "*.fls",
    "*.log",
    "*.out",
    "*.run.xml",
    "*.synctex.gz",
    "*.synctex(busy)",
    "*.toc",
    "*.lof",
    "*.lot",
    "*.xdv",
    # Config directory itself
    f"{CONFIG_DIR}/**",
]

DEFAULT_IGNORE_FILE = f"""# leafsync ignore file
# Patterns work like .gitignore
# Use $MAIN_PDF to reference the main PDF file from settings

# Don't sync the compiled PDF
{VAR_MAIN_PDF}

# Hidden files and directories
.*
.*/**

# LaTeX build artifacts
*.aux
*.bbl
*.bcf
*.blg
*.fdb_latexmk
*.fls
*.log
*.out
*.run.xml
*.synctex.gz
*.synctex(busy)
*.toc
*.lof
*.lot
*.xdv

# leafsync config directory
{CONFIG_DIR}/**
"""


def parse_ignore_file(content: str) -> list[str]:
    """Patterns of an ignore file, without comments and blank lines."""
    patterns = []
    for line in content.splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line)
    return patterns


class IgnorePatterns:
    """Handles ignore pattern matching for index paths."""

    def __init__(
        self,
        patterns: list[str] | None = None,
        main_tex: str = "main.tex",
        main_pdf: str = "main.pdf",
    ) -> None:
        """Initialize with patterns.

        Args:
            patterns: Raw patterns; DEFAULT_IGNORE_PATTERNS when omitted.
            main_tex: Value of $MAIN_TEX.
            main_pdf: Value of $MAIN_PDF.
        """
        self._patterns = list(DEFAULT_IGNORE_PATTERNS if patterns is None else patterns)
        self._main_tex = main_tex
        self._main_pdf = main_pdf
        self._resolved = self._resolve()

    @property
    def patterns(self) -> list[str]:
        """Raw patterns, variables unresolved."""
        return list(self._patterns)

    @property
    def resolved_patterns(self) -> list[str]:
        return list(self._resolved)

    def _resolve(self) -> list[str]:
        return [
            p.replace(VAR_MAIN_TEX, self._main_tex).replace(VAR_MAIN_PDF, self._main_pdf)
            for p in self._patterns
        ]

    def add_pattern(self, pattern: str) -> None:
        """Add an ignore pattern."""
        self._patterns.append(pattern)
        self._resolved = self._resolve()

    def set_main_document(self, main_tex: str, main_pdf: str) -> None:
        """Update the values of $MAIN_TEX and $MAIN_PDF."""
        self._main_tex = main_tex
        self._main_pdf = main_pdf
        self._resolved = self._resolve()

    def load_from_file(self, path: Path) -> bool:
        """Replace patterns with those of an ignore file.

        Returns:
            True if the file existed; defaults are kept otherwise.
        """
        if not path.exists():
            self._patterns = list(DEFAULT_IGNORE_PATTERNS)
            self._resolved = self._resolve()
            return False
        self._patterns = parse_ignore_file(path.read_text(encoding="utf-8"))
        self._resolved = self._resolve()
        logger.debug("Loaded %d ignore patterns from %s", len(self._patterns), path)
        return True

    def load(self, folder: Path) -> bool:
        """Load the folder's .leafignore."""
        return self.load_from_file(Path(folder) / IGNORE_FILE)

    def should_ignore(self, path: str) -> bool:
        """Check if an index path should be ignored.

        Args:
            path: Index path such as "/chapters/intro.aux" (leading "/"
                optional).
        """
        rel = path.strip("/")
        if not rel:
            return False
        is_dir = path.endswith("/")
        parts = rel.split("/")
        # Sync state is never project content, whatever .leafignore says
        if parts[0] == CONFIG_DIR:
            return True
        # Every trailing sub-path, so unanchored patterns match at any depth
        suffixes = ["/".join(parts[i:]) for i in range(len(parts))]

        for pattern in self._resolved:
            dir_only = pattern.endswith("/")
            trimmed = pattern.strip("/") if pattern.startswith("/") else pattern.rstrip("/")
            candidates = [rel] if pattern.startswith("/") else suffixes
            for candidate in candidates:
                head, _, rest = candidate.partition("/")
                if fnmatch.fnmatchcase(candidate, trimmed) and (is_dir or not dir_only):
                    return True
                # A matching directory ignores everything beneath it
                if rest and "/" not in trimmed and fnmatch.fnmatchcase(head, trimmed):
                    return True
        return False


def write_default_ignore_file(folder: Path) -> Path:
    """Create .leafignore with the default content if it is missing."""
    path = Path(folder) / IGNORE_FILE
    if not path.exists():
        path.write_text(DEFAULT_IGNORE_FILE, encoding="utf-8")
    return path
