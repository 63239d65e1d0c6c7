"""
Layout resolution and page rendering with a sandboxed Jinja2 environment.
"""

import os
import html
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from jinja2 import FileSystemLoader, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from .content import MARKDOWN, parse_front_matter, slugify
from .errors import DocumentParseError, LayoutCycleError, LayoutNotFoundError, TemplateRenderError
from .feed import (absolute_url, date_to_rfc3339, date_to_rfc822, html_to_absolute_urls,
                   newest_collection_item_date)
from .markdown_transform import MarkdownTransform, TransformContext, highlight_code


@dataclass
class Layout:
    name: str
    path: str
    template: Any
    parent: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


class LayoutResolver:
    """Find layouts by name and walk their parent chain with a depth bound."""

    def __init__(self, env, config):
        self.env = env
        self.config = config
        self.root = os.path.normpath(config.layouts_path)
        self._cache = {}

    def find(self, name, source_path=None):
        """Return the file backing layout ``name``."""
        if not isinstance(name, str) or not name.strip():
            raise LayoutNotFoundError(f"Invalid layout name: {name!r}", source_path)
        target = self.config.layout_aliases.get(name, name)
        candidates = [target] + [f"{target}.{ext}" for ext in self.config.template_formats]
        for candidate in candidates:
            path = os.path.normpath(os.path.join(self.root, candidate))
            if not path.startswith(self.root + os.sep):
                continue
            if os.path.isfile(path):
                return path
        raise LayoutNotFoundError(
            f"Layout '{name}' not found in {self.config.layouts_dir}", source_path)

    def load(self, name, source_path=None):
        path = self.find(name, source_path)
        if path in self._cache:
            return self._cache[path]

        relative = os.path.relpath(path, self.config.input_dir).replace(os.sep, '/')
        try:
            with open(path, 'r', encoding='utf-8') as f:
                text = f.read()
        except (IOError, OSError, UnicodeDecodeError) as e:
            raise TemplateRenderError(f"Failed to read layout: {e}", relative) from e
        try:
            data, body = parse_front_matter(text, relative)
            template = self.env.from_string(body)
        except DocumentParseError as e:
            raise TemplateRenderError(e.message, relative) from e
        except TemplateError as e:
            raise TemplateRenderError(f"Template error: {e}", relative) from e

        layout = Layout(name=name, path=path, template=template, parent=data.pop('layout', None), data=data)
        self._cache[path] = layout
        return layout

    def resolve_chain(self, name, source_path=None):
        """
        Return the layouts for ``name``, innermost first.

        A layout seen twice, or a chain longer than ``max_layout_depth``,
        raises LayoutCycleError.
        """
        chain = []
        seen = []
        current = name
        while current:
            if len(chain) >= self.config.max_layout_depth:
                raise LayoutCycleError(
                    f"Layout chain exceeds {self.config.max_layout_depth} levels: "
                    f"{' -> '.join(seen + [current])}", source_path)
            layout = self.load(current, source_path)
            if layout.path in (item.path for item in chain):
                raise LayoutCycleError(f"Layout cycle: {' -> '.join(seen + [current])}", source_path)
            seen.append(current)
            chain.append(layout)
            current = layout.parent
        return chain


class TemplateRenderer:
    """Render a document body and wrap it in its layout chain."""

    def __init__(self, config, markdown=None):
        self.config = config
        self.logger = logging.getLogger('Kiln.TemplateRenderer')
        self.markdown = markdown or MarkdownTransform.from_config(config)
        self.env = self.create_environment()
        self.layouts = LayoutResolver(self.env, config)

    @property
    def site_url(self):
        if self.config.feed is not None:
            return self.config.feed.url
        return self.config.site.get('url', '')

    def create_environment(self):
        env = SandboxedEnvironment(
            loader=FileSystemLoader(self.config.layouts_path),
            autoescape=False,
            keep_trailing_newline=True,
        )
        env.filters.update({
            'slugify': slugify,
            'markdown': self.markdown_filter,
            'highlight': self.highlight_filter,
            'absolute_url': lambda url, base=None: absolute_url(url, base or self.site_url),
            'html_to_absolute_urls': lambda text, base=None: html_to_absolute_urls(text, base or self.site_url),
            'date_to_rfc822': date_to_rfc822,
            'date_to_rfc3339': date_to_rfc3339,
            'newest_collection_item_date': newest_collection_item_date,
        })
        return env

    def markdown_filter(self, text):
        """Convert markdown text to HTML."""
        return self.markdown.convert(text or '')

    def highlight_filter(self, code, lang):
        highlighted = highlight_code(code, lang)
        if highlighted is None:
            return f'<pre><code>{html.escape(code)}</code></pre>'
        return highlighted

    def context_for(self, document, chain, collections):
        data = {}
        for layout in reversed(chain):
            data.update(layout.data)
        data.update(document.metadata)
        data.update(
            site=self.config.site,
            collections=collections,
            page=document.page_data(),
        )
        return data

    def render(self, document, collections):
        """
        Render ``document``; returns (content_html, rendered_html).

        ``content_html`` is the body alone, ``rendered_html`` the body wrapped
        in every layout from innermost to outermost.
        """
        chain = []
        layout_name = document.metadata.get('layout')
        if layout_name:
            chain = self.layouts.resolve_chain(layout_name, document.source_path)
        context = self.context_for(document, chain, collections)

        try:
            if document.kind == MARKDOWN:
                content_html = self.markdown.convert(document.raw_content, TransformContext(document.source_path))
            else:
                content_html = self.env.from_string(document.raw_content).render(context)

            rendered_html = content_html
            for layout in chain:
                rendered_html = layout.template.render(dict(context, content=rendered_html))
        except TemplateError as e:
            raise TemplateRenderError(f"Template error: {e}", document.source_path) from e

        self.logger.debug(f"Rendered {document.source_path} with {len(chain)} layouts")
        return content_html, rendered_html
