"""
Permalink routing, collision checks and writing pages to the output root.
"""

import os
import re
import shutil
import posixpath

from .content import slugify
from .errors import ConfigurationError, DocumentParseError, OutputCollisionError

TOKEN_RE = re.compile(r':([A-Za-z_][A-Za-z0-9_]*)')
DOCUMENT = 'document'
FEED = 'feed'
ASSET = 'asset'


def permalink_template(document, config):
    """Pick the permalink template for ``document``; None means "do not write"."""
    value = document.metadata.get('permalink')
    if value is False:
        return None
    if value is not None:
        if not isinstance(value, str):
            raise DocumentParseError("'permalink' must be a string or false", document.source_path)
        return value
    for tag in document.tags:
        if tag in config.permalinks:
            return config.permalinks[tag]
    return config.permalink


def permalink_tokens(document):
    dirname = posixpath.dirname(document.source_path)
    stem = posixpath.splitext(posixpath.basename(document.source_path))[0]
    path = dirname if stem == 'index' else posixpath.join(dirname, stem)
    slug = str(document.metadata.get('slug') or slugify(document.file_slug))

    tokens = {
        key: str(value) for key, value in document.metadata.items()
        if isinstance(key, str) and isinstance(value, (str, int, float)) and not isinstance(value, bool)
    }
    tokens.update(
        slug=slug,
        title=slugify(document.title) if document.title else slug,
        path=path,
        dir=dirname,
        stem=stem,
    )
    if document.date is not None:
        tokens.update(
            year=f'{document.date.year:04d}',
            month=f'{document.date.month:02d}',
            day=f'{document.date.day:02d}',
        )
    return tokens


def compute_output_path(document, config):
    """
    Return ``(output_path, url)`` for ``document``.

    ``output_path`` is relative to the output root; both are None when the
    document has ``permalink: false``.
    """
    template = permalink_template(document, config)
    if template is None:
        return None, None
    tokens = permalink_tokens(document)

    def replace(match):
        key = match.group(1)
        if key not in tokens:
            raise DocumentParseError(f"Unknown permalink token ':{key}' in '{template}'", document.source_path)
        return tokens[key]

    url = re.sub(r'/{2,}', '/', '/' + TOKEN_RE.sub(replace, template))
    relative = url.lstrip('/')
    if not relative or relative.endswith('/'):
        relative += 'index.html'
    relative = posixpath.normpath(relative)
    if relative == '..' or relative.startswith('../') or relative.startswith('/'):
        raise DocumentParseError(f"Permalink '{template}' escapes the output directory", document.source_path)

    if posixpath.basename(relative) == 'index.html':
        url = '/' + posixpath.dirname(relative)
        url = url if url.endswith('/') else url + '/'
    else:
        url = '/' + relative
    return relative, url


def check_collisions(entries):
    """
    Fail when two sources claim one output path.

    ``entries`` holds ``(output_path, source, kind)`` tuples. Passthrough
    files may overlap each other, but never a document or the feed.
    """
    claimed = {}
    collisions = []
    for output_path, source, kind in entries:
        key = output_path
        if key not in claimed:
            claimed[key] = (source, kind)
            continue
        first_source, first_kind = claimed[key]
        if first_kind == ASSET and kind == ASSET:
            continue
        if first_kind == ASSET:
            claimed[key] = (source, kind)
        collisions.append(f"'{output_path}' is produced by both {first_source} and {source}")
    if collisions:
        raise OutputCollisionError("Output path collision: " + '; '.join(collisions))


def validate_output_dir(config):
    """Refuse output roots that cleaning would make destructive."""
    output_dir = os.path.normpath(config.output_dir)
    protected = {
        os.path.normpath(config.input_dir): "the input directory",
        os.path.normpath(os.getcwd()): "the working directory",
    }
    if output_dir == os.path.dirname(output_dir):
        raise ConfigurationError("Refusing to use the filesystem root as output directory", output_dir)
    for path, label in protected.items():
        if path == output_dir or path.startswith(output_dir + os.sep):
            raise ConfigurationError(f"Output directory must not contain {label}", output_dir)
    if os.path.exists(output_dir) and not os.path.isdir(output_dir):
        raise ConfigurationError("Output path exists and is not a directory", output_dir)


def prepare_output_dir(config):
    """Create the output root, removing the previous build when ``clean`` is set."""
    validate_output_dir(config)
    if config.clean and os.path.exists(config.output_dir):
        shutil.rmtree(config.output_dir)
    os.makedirs(config.output_dir, exist_ok=True)


def write_text(path, text):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w', encoding='utf-8', newline='') as f:
        f.write(text)


def write_document(document, config):
    """Write the final page for ``document``; returns the absolute path."""
    path = os.path.join(config.output_dir, *document.output_path.split('/'))
    write_text(path, document.rendered_html)
    return path
