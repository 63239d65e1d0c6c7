"""
Markdown to HTML conversion with an ordered chain of extensions.

The base conversion is done by mistune. Each extension then rewrites the
resulting HTML in turn through ``transform(html, context)``; extensions that
need parser support also list the mistune plugins they rely on.
"""

import html
import re
import logging
from dataclasses import dataclass
from typing import Optional

import mistune
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from .content import slugify
from .errors import ConfigurationError
from .settings import MarkdownOptions

BASE_PLUGINS = ('table', 'strikethrough', 'task_lists')

HEADING_RE = re.compile(r'<h([1-6])([^>]*)>(.*?)</h\1>', re.DOTALL | re.IGNORECASE)
ID_ATTR_RE = re.compile(r'\bid="([^"]*)"')
TAG_RE = re.compile(r'<[^>]+>')
TAG_SPLIT_RE = re.compile(r'(<[^>]+>)')
TAG_NAME_RE = re.compile(r'<(/?)([a-zA-Z][a-zA-Z0-9]*)')
PERMALINK_RE = re.compile(r'<a\b[^>]*\baria-hidden="true"[^>]*>.*?</a>', re.DOTALL)
CODE_BLOCK_RE = re.compile(r'<pre><code class="language-([\w+#.-]+)">(.*?)</code></pre>', re.DOTALL)
TOC_MARKER_RE = re.compile(r'<p>\s*(?:\$\{toc\}|\[\[toc\]\]|\[toc\])\s*</p>\n?', re.IGNORECASE)
LANG_RE = re.compile(r'[^\w+#.-]')
FOOTNOTES_OPEN = '<section class="footnotes">'


@dataclass(frozen=True)
class TransformContext:
    """Per-call information handed to every extension."""
    source_path: Optional[str] = None


class KilnRenderer(mistune.HTMLRenderer):
    """HTML renderer that tags fenced code with its declared language."""

    def block_code(self, code, info=None):
        lang = ''
        if info and info.strip():
            lang = LANG_RE.sub('', info.strip().split(None, 1)[0])
        escaped_code = mistune.escape(code)
        if lang:
            return f'<pre><code class="language-{lang}">{escaped_code}</code></pre>\n'
        return f'<pre><code>{escaped_code}</code></pre>\n'


def highlight_code(code, lang, classprefix=''):
    """
    Highlight ``code`` as ``lang`` with Pygments.

    Returns the ``<pre>`` block, or None when no lexer knows the language.
    """
    try:
        lexer = get_lexer_by_name(lang)
    except ClassNotFound:
        return None
    formatter = HtmlFormatter(nowrap=True, classprefix=classprefix)
    tokens = highlight(code, lexer, formatter)
    return f'<pre class="language-{lang}"><code class="language-{lang}">{tokens}</code></pre>'


class MarkdownExtension:
    """Base class for entries in the extension chain."""
    name = None
    plugins = ()

    def transform(self, html_text, context):
        return html_text


class LinkifyExtension(MarkdownExtension):
    """Turn bare URLs into links (handled by mistune's ``url`` plugin)."""
    name = 'linkify'
    plugins = ('url',)


class TypographerExtension(MarkdownExtension):
    """Smart quotes, dashes, ellipses and symbol replacements in text nodes."""
    name = 'typographer'

    SKIP_TAGS = ('pre', 'code', 'kbd', 'script', 'style')
    REPLACEMENTS = (
        (re.compile(r'\(c\)', re.IGNORECASE), '©'),
        (re.compile(r'\(r\)', re.IGNORECASE), '®'),
        (re.compile(r'\(tm\)', re.IGNORECASE), '™'),
        (re.compile(r'\+-'), '±'),
        (re.compile(r'\.\.\.'), '…'),
        (re.compile(r'(?<!-)---(?!-)'), '—'),
        (re.compile(r'(?<!-)--(?!-)'), '–'),
    )
    QUOTE_ENTITIES = (('&quot;', '"'), ('&#34;', '"'), ('&#39;', "'"), ('&#x27;', "'"))
    OPENING_CONTEXT = '([{–—-'

    def transform(self, html_text, context):
        out = []
        skip = 0
        previous = ''
        for index, part in enumerate(TAG_SPLIT_RE.split(html_text)):
            if index % 2:
                match = TAG_NAME_RE.match(part)
                if match and match.group(2).lower() in self.SKIP_TAGS:
                    if match.group(1):
                        skip = max(skip - 1, 0)
                    elif not part.endswith('/>'):
                        skip += 1
                out.append(part)
                continue
            if part and not skip:
                part = self._smart_quotes(self._replace(part), previous)
            if part:
                previous = part[-1]
            out.append(part)
        return ''.join(out)

    def _replace(self, text):
        for pattern, replacement in self.REPLACEMENTS:
            text = pattern.sub(replacement, text)
        return text

    def _smart_quotes(self, text, previous):
        for entity, char in self.QUOTE_ENTITIES:
            text = text.replace(entity, char)
        chars = []
        for char in text:
            if char in '"\'':
                before = chars[-1] if chars else previous
                opening = not before or before.isspace() or before in self.OPENING_CONTEXT
                if char == '"':
                    char = '“' if opening else '”'
                else:
                    char = '‘' if opening else '’'
            chars.append(char)
        return ''.join(chars)


class AnchorsExtension(MarkdownExtension):
    """
    Give every heading a stable ``id`` derived from its text.

    The first heading with a given slug keeps it; later duplicates get
    ``-1``, ``-2`` and so on. Ids already present in the HTML are reserved.
    """
    name = 'anchors'

    def __init__(self, permalink=False, permalink_class='header-anchor', permalink_symbol='¶',
                 permalink_before=False, level=1):
        if not isinstance(level, int) or not 1 <= level <= 6:
            raise ValueError("level must be between 1 and 6")
        self.permalink = permalink
        self.permalink_class = permalink_class
        self.permalink_symbol = permalink_symbol
        self.permalink_before = permalink_before
        self.level = level

    def transform(self, html_text, context):
        used = set()
        for match in HEADING_RE.finditer(html_text):
            existing = ID_ATTR_RE.search(match.group(2))
            if existing:
                used.add(existing.group(1))

        def add_anchor(match):
            level, attrs, inner = int(match.group(1)), match.group(2), match.group(3)
            if level < self.level or ID_ATTR_RE.search(attrs):
                return match.group(0)
            slug = unique_slug(slugify(html.unescape(TAG_RE.sub('', inner))) or 'section', used)
            if self.permalink:
                link = (f'<a class="{html.escape(self.permalink_class)}" href="#{slug}" aria-hidden="true">'
                        f'{html.escape(self.permalink_symbol)}</a>')
                inner = f'{link} {inner}' if self.permalink_before else f'{inner} {link}'
            return f'<h{level}{attrs} id="{slug}">{inner}</h{level}>'

        return HEADING_RE.sub(add_anchor, html_text)


def unique_slug(slug, used):
    candidate = slug
    counter = 1
    while candidate in used:
        candidate = f'{slug}-{counter}'
        counter += 1
    used.add(candidate)
    return candidate


class FootnotesExtension(MarkdownExtension):
    """Footnote references and a trailing footnote block with back-links."""
    name = 'footnotes'
    plugins = ('footnotes',)

    def transform(self, html_text, context):
        head, marker, tail = html_text.rpartition(FOOTNOTES_OPEN)
        if not marker:
            return html_text
        return f'{head}<hr class="footnotes-sep">\n{marker}{tail}'


class TocExtension(MarkdownExtension):
    """Replace a ``${toc}`` / ``[[toc]]`` paragraph with nested heading links."""
    name = 'toc'

    def __init__(self, list_type='ol', container_id='toc', container_class='table-of-contents',
                 min_level=1, max_level=6):
        if list_type not in ('ol', 'ul'):
            raise ValueError("list_type must be 'ol' or 'ul'")
        self.list_type = list_type
        self.container_id = container_id
        self.container_class = container_class
        self.min_level = min_level
        self.max_level = max_level

    def transform(self, html_text, context):
        if not TOC_MARKER_RE.search(html_text):
            return html_text
        headings = []
        for match in HEADING_RE.finditer(html_text):
            level = int(match.group(1))
            anchor = ID_ATTR_RE.search(match.group(2))
            if anchor and self.min_level <= level <= self.max_level:
                text = TAG_RE.sub('', PERMALINK_RE.sub('', match.group(3))).strip()
                headings.append((level, anchor.group(1), text))

        nav = (f'<nav id="{html.escape(self.container_id)}" class="{html.escape(self.container_class)}">'
               f'{self._render(self._tree(headings))}</nav>\n')
        return TOC_MARKER_RE.sub(lambda _: nav, html_text)

    @staticmethod
    def _tree(headings):
        root = {'level': 0, 'children': []}
        stack = [root]
        for level, anchor, text in headings:
            node = {'level': level, 'id': anchor, 'text': text, 'children': []}
            while stack[-1]['level'] >= level:
                stack.pop()
            stack[-1]['children'].append(node)
            stack.append(node)
        return root['children']

    def _render(self, nodes):
        if not nodes:
            return ''
        items = ''.join(
            f'<li><a href="#{node["id"]}">{node["text"]}</a>{self._render(node["children"])}</li>'
            for node in nodes
        )
        return f'<{self.list_type}>{items}</{self.list_type}>'


class SyntaxHighlightExtension(MarkdownExtension):
    """Re-tokenize fenced code blocks with Pygments; unknown languages stay plain."""
    name = 'syntax-highlight'

    def __init__(self, classprefix=''):
        self.classprefix = classprefix
        self.logger = logging.getLogger('Kiln.SyntaxHighlight')

    def transform(self, html_text, context):
        def replace(match):
            lang = match.group(1)
            highlighted = highlight_code(html.unescape(match.group(2)), lang, self.classprefix)
            if highlighted is None:
                self.logger.debug(f"No lexer for language '{lang}' in {context.source_path}")
                return match.group(0)
            return highlighted

        return CODE_BLOCK_RE.sub(replace, html_text)


EXTENSIONS = {
    cls.name: cls
    for cls in (
        LinkifyExtension,
        TypographerExtension,
        AnchorsExtension,
        FootnotesExtension,
        TocExtension,
        SyntaxHighlightExtension,
    )
}


def build_extensions(options, specs):
    """
    Instantiate the extension chain in configuration order.

    ``linkify`` and ``typographer`` from the Markdown options come first
    unless they are listed explicitly.
    """
    listed = {spec.name for spec in specs}
    chain = []
    if options.linkify and 'linkify' not in listed:
        chain.append(LinkifyExtension())
    if options.typographer and 'typographer' not in listed:
        chain.append(TypographerExtension())

    for spec in specs:
        cls = EXTENSIONS.get(spec.name)
        if cls is None:
            raise ConfigurationError(f"Unknown markdown extension: {spec.name}")
        try:
            chain.append(cls(**spec.options))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid options for markdown extension '{spec.name}': {e}") from e

    names = [extension.name for extension in chain]
    if 'toc' in names and ('anchors' not in names or names.index('anchors') > names.index('toc')):
        raise ConfigurationError("The 'toc' extension needs 'anchors' earlier in markdownExtensions")
    return chain


class MarkdownTransform:
    """Convert Markdown text to an HTML fragment; same input, same output."""

    def __init__(self, options=None, extensions=None):
        self.options = options or MarkdownOptions()
        if extensions is None:
            extensions = build_extensions(self.options, ())
        self.extensions = list(extensions)

        plugins = list(BASE_PLUGINS)
        for extension in self.extensions:
            for plugin in extension.plugins:
                if plugin not in plugins:
                    plugins.append(plugin)
        self.markdown_parser = mistune.create_markdown(
            renderer=KilnRenderer(escape=not self.options.html),
            plugins=plugins,
        )

    @classmethod
    def from_config(cls, config):
        return cls(config.markdown_options, build_extensions(config.markdown_options, config.markdown_extensions))

    def convert(self, text, context=None):
        context = context or TransformContext()
        html_text = self.markdown_parser(text)
        for extension in self.extensions:
            html_text = extension.transform(html_text, context)
        return html_text
