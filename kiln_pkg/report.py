"""
Build report: every warning and error raised during a build, with its source.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

WARNING = 'warning'
ERROR = 'error'
FATAL = 'fatal'


@dataclass
class ReportEntry:
    level: str
    message: str
    path: Optional[str] = None

    def __str__(self):
        location = f"{self.path}: " if self.path else ''
        return f"[{self.level}] {location}{self.message}"


@dataclass
class BuildReport:
    """Collects per-document problems so siblings keep building."""
    entries: List[ReportEntry] = field(default_factory=list)
    documents_written: int = 0
    documents_skipped: int = 0
    assets_copied: int = 0
    feed_items: int = 0

    def __post_init__(self):
        self.logger = logging.getLogger('Kiln')

    @property
    def ok(self):
        return not self.errors

    @property
    def warnings(self):
        return [entry for entry in self.entries if entry.level == WARNING]

    @property
    def errors(self):
        return [entry for entry in self.entries if entry.level in (ERROR, FATAL)]

    @property
    def fatal_errors(self):
        return [entry for entry in self.entries if entry.level == FATAL]

    def warning(self, message, path=None):
        self.entries.append(ReportEntry(WARNING, message, path))
        self.logger.warning(str(self.entries[-1]))

    def error(self, message, path=None):
        """A failure that makes the build unsuccessful but lets other work finish."""
        self.entries.append(ReportEntry(ERROR, message, path))
        self.logger.error(str(self.entries[-1]))

    def fatal(self, error):
        """Record a structural BuildError that halts the build."""
        self.entries.append(ReportEntry(FATAL, error.message, error.path))
        self.logger.error(str(self.entries[-1]))

    def document_error(self, error, strict=False):
        """Record a per-document BuildError; skipped with a warning unless strict."""
        self.documents_skipped += 1
        if strict:
            self.fatal(error)
        else:
            self.warning(f"skipped: {error.message}", error.path)

    def summary(self):
        return (
            f"{self.documents_written} documents written, "
            f"{self.documents_skipped} skipped, "
            f"{self.assets_copied} assets copied, "
            f"{self.feed_items} feed items, "
            f"{len(self.warnings)} warnings, {len(self.errors)} errors"
        )
