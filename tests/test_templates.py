"""Tests for layout resolution and template rendering."""

import pytest
import os
from datetime import datetime

import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from kiln_pkg.content import MARKDOWN, TEMPLATE, Document, build_collections
from kiln_pkg.errors import (ConfigurationError, LayoutCycleError, LayoutNotFoundError,
                             TemplateRenderError)
from kiln_pkg.templates import TemplateRenderer


def make_document(source_path, raw_content, kind=MARKDOWN, **metadata):
    return Document(source_path=source_path, abs_path='/' + source_path, kind=kind,
                    raw_content=raw_content, metadata=metadata, date=datetime(2024, 1, 10),
                    output_path='x/index.html', url='/x/')


def write_layout(site_dir, name, text):
    path = site_dir / 'src' / '_includes' / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding='utf-8')


class TestLayoutResolver:
    """Test cases for LayoutResolver."""

    def test_resolve_chain_innermost_first(self, make_config):
        """Test walking a layout and its parents."""
        renderer = TemplateRenderer(make_config())

        chain = renderer.layouts.resolve_chain('post')

        assert [layout.name for layout in chain] == ['post', 'base']
        assert chain[0].parent == 'base'
        assert chain[0].data == {'section': 'blog'}
        assert chain[1].parent is None

    def test_exact_file_name(self, make_config):
        """Test naming a layout by its file name."""
        renderer = TemplateRenderer(make_config())

        assert renderer.layouts.find('base.njk').endswith('base.njk')

    def test_alias(self, make_config):
        """Test layoutAliases lookup."""
        renderer = TemplateRenderer(make_config(layoutAliases={'article': 'post.njk'}))

        assert [layout.name for layout in renderer.layouts.resolve_chain('article')] == ['article', 'base']

    def test_missing_layout(self, make_config):
        """Test that unknown layouts raise LayoutNotFoundError."""
        renderer = TemplateRenderer(make_config())

        with pytest.raises(LayoutNotFoundError, match="'missing' not found") as exc_info:
            renderer.layouts.resolve_chain('missing', 'page.md')
        assert exc_info.value.path == 'page.md'

    def test_missing_parent_layout(self, site_dir, make_config):
        """Test that an unresolvable parent fails the whole chain."""
        write_layout(site_dir, 'orphan.njk', "---\nlayout: nowhere\n---\n{{ content }}")
        renderer = TemplateRenderer(make_config())

        with pytest.raises(LayoutNotFoundError, match="nowhere"):
            renderer.layouts.resolve_chain('orphan')

    def test_layout_traversal_rejected(self, site_dir, make_config):
        """Test that layout names cannot leave the layouts directory."""
        renderer = TemplateRenderer(make_config())

        with pytest.raises(LayoutNotFoundError):
            renderer.layouts.find('../about.md')

    def test_cycle(self, site_dir, make_config):
        """Test that post -> base -> post is a LayoutCycleError."""
        write_layout(site_dir, 'base.njk', "---\nlayout: post\n---\n{{ content }}")
        renderer = TemplateRenderer(make_config())

        with pytest.raises(LayoutCycleError, match="post -> base -> post"):
            renderer.layouts.resolve_chain('post')

    def test_self_cycle(self, site_dir, make_config):
        """Test a layout naming itself."""
        write_layout(site_dir, 'loop.njk', "---\nlayout: loop\n---\n{{ content }}")
        renderer = TemplateRenderer(make_config())

        with pytest.raises(LayoutCycleError):
            renderer.layouts.resolve_chain('loop')

    def test_cycle_is_configuration_error(self):
        """Test that layout cycles are fatal configuration errors."""
        assert issubclass(LayoutCycleError, ConfigurationError)

    def test_max_depth(self, site_dir, make_config):
        """Test that chains longer than maxLayoutDepth are rejected."""
        for index in range(4):
            write_layout(site_dir, f'level{index}.njk', f"---\nlayout: level{index + 1}\n---\n{{{{ content }}}}")
        write_layout(site_dir, 'level4.njk', "{{ content }}")

        assert len(TemplateRenderer(make_config()).layouts.resolve_chain('level0')) == 5
        with pytest.raises(LayoutCycleError, match="exceeds 3 levels"):
            TemplateRenderer(make_config(maxLayoutDepth=3)).layouts.resolve_chain('level0')

    def test_layout_syntax_error(self, site_dir, make_config):
        """Test that a broken layout is a TemplateRenderError."""
        write_layout(site_dir, 'broken.njk', "{% if %}")
        renderer = TemplateRenderer(make_config())

        with pytest.raises(TemplateRenderError, match="_includes/broken.njk"):
            renderer.layouts.resolve_chain('broken')


class TestTemplateRenderer:
    """Test cases for TemplateRenderer.render."""

    def test_render_markdown_with_layouts(self, make_config):
        """Test Markdown content wrapped in post and base layouts."""
        renderer = TemplateRenderer(make_config())
        document = make_document('posts/a.md', "# Hello\n", layout='post', title='A Post')

        content_html, rendered_html = renderer.render(document, build_collections([document]))

        assert 'id="hello"' in content_html
        assert '<article' not in content_html
        assert '<article data-section="blog">' in rendered_html
        assert '<title>A Post | Test Site</title>' in rendered_html
        assert rendered_html.index('<body>') < rendered_html.index('<article') < rendered_html.index('id="hello"')

    def test_document_data_overrides_layout_data(self, make_config):
        """Test data precedence between layouts and documents."""
        renderer = TemplateRenderer(make_config())
        document = make_document('posts/a.md', "text\n", layout='post', section='news')

        _, rendered_html = renderer.render(document, build_collections([document]))

        assert '<article data-section="news">' in rendered_html

    def test_render_without_layout(self, make_config):
        """Test that content stands alone without a layout."""
        renderer = TemplateRenderer(make_config())
        document = make_document('plain.md', "plain\n")

        content_html, rendered_html = renderer.render(document, {})

        assert content_html == rendered_html == '<p>plain</p>\n'

    def test_render_template_document(self, make_config):
        """Test template documents see page, site and collections."""
        renderer = TemplateRenderer(make_config())
        post = make_document('posts/a.md', "", title='A Post', tags=['posts'])
        page = make_document(
            'list.njk',
            "{{ page.url }}|{{ page.input_path }}|{{ site.title }}|"
            "{% for p in collections.posts %}{{ p.title }}{% endfor %}",
            kind=TEMPLATE)

        content_html, _ = renderer.render(page, build_collections([post, page]))

        assert content_html == '/x/|list.njk|Test Site|A Post'

    def test_filters(self, make_config):
        """Test the custom template filters."""
        renderer = TemplateRenderer(make_config())
        page = make_document(
            'filters.njk',
            "{{ 'Hello World' | slugify }}|{{ '/a/' | absolute_url }}|"
            "{{ page.date | date_to_rfc822 }}|{{ page.date | date_to_rfc3339 }}|"
            "{{ '*hi*' | markdown }}",
            kind=TEMPLATE)

        content_html, _ = renderer.render(page, {})

        assert content_html == ('hello-world|https://example.com/a/|'
                                'Wed, 10 Jan 2024 00:00:00 GMT|2024-01-10T00:00:00Z|'
                                '<p><em>hi</em></p>\n')

    def test_highlight_filter(self, make_config):
        """Test the highlight filter with known and unknown languages."""
        renderer = TemplateRenderer(make_config())

        assert '<span class="nb">print</span>' in renderer.highlight_filter("print(1)", 'python')
        assert renderer.highlight_filter("<x>", 'nosuchlang') == '<pre><code>&lt;x&gt;</code></pre>'

    def test_include_partial(self, site_dir, make_config):
        """Test that layouts can include partials from the layouts directory."""
        write_layout(site_dir, 'partials/footer.njk', "<footer>{{ site.title }}</footer>")
        write_layout(site_dir, 'page.njk', "{{ content }}{% include 'partials/footer.njk' %}")
        renderer = TemplateRenderer(make_config())
        document = make_document('p.md', "body\n", layout='page')

        _, rendered_html = renderer.render(document, {})

        assert rendered_html == '<p>body</p>\n<footer>Test Site</footer>'

    def test_template_error(self, make_config):
        """Test that runtime template errors become TemplateRenderError."""
        renderer = TemplateRenderer(make_config())
        page = make_document('bad.njk', "{{ missing.attr.deeper }}", kind=TEMPLATE)

        with pytest.raises(TemplateRenderError) as exc_info:
            renderer.render(page, {})
        assert exc_info.value.path == 'bad.njk'

    def test_sandbox_blocks_unsafe_access(self, make_config):
        """Test that the sandbox refuses access to internals."""
        renderer = TemplateRenderer(make_config())
        page = make_document('evil.njk', "{{ page.__class__.__mro__ }}", kind=TEMPLATE)

        with pytest.raises(TemplateRenderError):
            renderer.render(page, {})

    def test_missing_layout_from_document(self, make_config):
        """Test that a document naming an unknown layout fails for that document."""
        renderer = TemplateRenderer(make_config())
        document = make_document('p.md', "body\n", layout='nope')

        with pytest.raises(LayoutNotFoundError):
            renderer.render(document, {})
