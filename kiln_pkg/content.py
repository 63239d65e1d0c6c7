"""
Content discovery for Kiln: source enumeration, front matter and collections.
"""

import os
import re
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, date, timezone
from typing import Any, Dict, Iterator, List, Optional

import yaml

from .errors import ConfigurationError, DocumentParseError

MARKDOWN = 'markdown'
TEMPLATE = 'template'
ASSET = 'asset'

MARKDOWN_EXTENSIONS = ('md', 'markdown')
FRONT_MATTER_DELIMITER = '---'


def slugify(text):
    """Lower-case, drop punctuation, and join words with dashes."""
    text = str(text).strip().lower()
    text = re.sub(r'[^\w\s-]', '', text, flags=re.UNICODE)
    text = re.sub(r'[\s_-]+', '-', text).strip('-')
    return text


def parse_date(value):
    """Parse a front matter date into a naive UTC datetime, or None."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        value = value.strip()
        try:
            return parse_date(datetime.fromisoformat(value.replace('Z', '+00:00')))
        except ValueError:
            pass
        for fmt in ['%Y-%m-%dT%H:%M:%S', '%Y-%m-%d', '%b %d, %Y']:
            try:
                return datetime.strptime(value, fmt)
            except ValueError:
                continue
    return None


def parse_front_matter(text, path=None):
    """
    Split ``text`` into (metadata, body).

    Front matter is a YAML mapping between two ``---`` lines at the very
    start of the file. Files without it have empty metadata.
    """
    text = text.lstrip('\ufeff')
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != FRONT_MATTER_DELIMITER:
        return {}, text

    for index in range(1, len(lines)):
        if lines[index].strip() == FRONT_MATTER_DELIMITER:
            break
    else:
        raise DocumentParseError("Front matter is not terminated by '---'", path)

    try:
        metadata = yaml.safe_load(''.join(lines[1:index]))
    except yaml.YAMLError as e:
        raise DocumentParseError(f"Invalid YAML front matter: {e}", path) from e
    if metadata is None:
        metadata = {}
    if not isinstance(metadata, dict):
        raise DocumentParseError("Front matter must be a mapping", path)
    return metadata, ''.join(lines[index + 1:])


@dataclass
class SourceFile:
    path: str
    relative_path: str
    kind: str


@dataclass
class Document:
    """A content file on its way from source text to a written page."""
    source_path: str
    abs_path: str
    kind: str
    raw_content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    date: Optional[datetime] = None
    content_html: Optional[str] = None
    rendered_html: Optional[str] = None
    output_path: Optional[str] = None
    url: Optional[str] = None

    @property
    def file_slug(self):
        stem = os.path.splitext(os.path.basename(self.source_path))[0]
        if stem == 'index':
            parent = os.path.basename(os.path.dirname(self.source_path))
            return parent or 'index'
        return stem

    @property
    def title(self):
        return self.metadata.get('title')

    @property
    def tags(self):
        tags = self.metadata.get('tags') or []
        if isinstance(tags, str):
            tags = [tags]
        return [str(tag) for tag in tags]

    def page_data(self):
        """The ``page`` variable exposed to templates."""
        return {
            'url': self.url,
            'input_path': self.source_path,
            'output_path': self.output_path,
            'file_slug': self.file_slug,
            'date': self.date,
        }


class Collection(Sequence):
    """A named, read-only, ordered view over documents."""

    def __init__(self, name, documents=()):
        self.name = name
        self._documents = tuple(documents)

    def __getitem__(self, index):
        return self._documents[index]

    def __len__(self):
        return len(self._documents)

    def __repr__(self):
        return f"Collection({self.name!r}, {len(self)} documents)"

    def sorted_by_date(self, reverse=False):
        """Order by date; equal dates keep ascending source path order."""
        by_path = sorted(self._documents, key=lambda doc: doc.source_path)
        ordered = sorted(by_path, key=lambda doc: doc.date or datetime.min, reverse=reverse)
        return Collection(self.name, ordered)


def build_collections(documents) -> Dict[str, Collection]:
    """Group documents into ``all`` plus one collection per tag, keeping order."""
    groups: Dict[str, List[Document]] = {'all': []}
    for document in documents:
        groups['all'].append(document)
        for tag in document.tags:
            groups.setdefault(tag, []).append(document)
    return {name: Collection(name, docs) for name, docs in groups.items()}


class ContentSourceReader:
    """Enumerate and load the documents under the configured input root."""

    def __init__(self, config):
        self.config = config
        self.logger = logging.getLogger('Kiln.ContentSourceReader')
        self._excluded = {
            os.path.normpath(os.path.join(config.input_dir, rule.source))
            for rule in config.passthrough_rules
        }
        self._excluded.add(os.path.normpath(config.output_dir))
        self._excluded.add(os.path.normpath(config.layouts_path))

    def classify(self, filename):
        ext = os.path.splitext(filename)[1].lower().lstrip('.')
        if ext in MARKDOWN_EXTENSIONS and 'md' in self.config.template_formats:
            return MARKDOWN
        if ext and ext in self.config.template_formats:
            return TEMPLATE
        return ASSET

    def scan(self) -> Iterator[SourceFile]:
        """
        Return a fresh lazy iterator over document source files.

        Raises ConfigurationError right away if the input root is missing.
        """
        if not os.path.isdir(self.config.input_dir):
            raise ConfigurationError("Input directory does not exist", self.config.input_dir)
        return self._walk()

    def _walk(self):
        root = self.config.input_dir
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(
                d for d in dirnames
                if not d.startswith(('_', '.'))
                and os.path.normpath(os.path.join(dirpath, d)) not in self._excluded
            )
            for filename in sorted(filenames):
                path = os.path.join(dirpath, filename)
                if filename.startswith(('_', '.')) or os.path.normpath(path) in self._excluded:
                    continue
                relative_path = os.path.relpath(path, root).replace(os.sep, '/')
                kind = self.classify(filename)
                if kind == ASSET:
                    self.logger.debug(f"Ignoring non-template file: {relative_path}")
                    continue
                yield SourceFile(path=path, relative_path=relative_path, kind=kind)

    def load(self, source_file) -> Document:
        """Read one source file and parse its front matter."""
        try:
            with open(source_file.path, 'r', encoding='utf-8') as f:
                text = f.read()
            mtime = os.path.getmtime(source_file.path)
        except UnicodeDecodeError as e:
            raise DocumentParseError(f"File is not valid UTF-8: {e}", source_file.relative_path) from e
        except (IOError, OSError) as e:
            raise DocumentParseError(f"Failed to read file: {e}", source_file.relative_path) from e

        metadata, body = parse_front_matter(text, source_file.relative_path)
        published = parse_date(metadata.get('date'))
        if published is None:
            if metadata.get('date') is not None:
                self.logger.warning(f"{source_file.relative_path}: unrecognised date {metadata['date']!r}, using file time")
            published = datetime.fromtimestamp(mtime, tz=timezone.utc).replace(tzinfo=None)

        return Document(
            source_path=source_file.relative_path,
            abs_path=source_file.path,
            kind=source_file.kind,
            raw_content=body,
            metadata=metadata,
            date=published,
        )

    def documents(self, report=None) -> Iterator[Document]:
        """
        Lazily load every document, skipping unparsable files.

        Parse failures are handed to ``report`` (which applies the strict
        policy) or logged as warnings when no report is given.
        """
        for source_file in self.scan():
            try:
                yield self.load(source_file)
            except DocumentParseError as e:
                if report is not None:
                    report.document_error(e, strict=self.config.strict)
                else:
                    self.logger.warning(f"Skipping {e}")
