"""Test configuration and fixtures for Kiln tests."""

import pytest
import tempfile
import shutil
import copy
import os
from pathlib import Path

import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from kiln_pkg.settings import KilnSettings, build_site_config

# A 1x1 PNG, used to check byte-exact asset copies
PNG_DATA = (b'\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01\x08\x02\x00\x00\x00'
            b'\x90wS\xde\x00\x00\x00\x0cIDATx\x9cc\xf8\x0f\x00\x00\x01\x01\x00\x05\x18\xd8N\x00\x00\x00'
            b'\x00IEND\xaeB`\x82')


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def site_dir(temp_dir):
    """Create a small source tree under <temp_dir>/src and return the project root."""
    root = Path(temp_dir)
    src = root / 'src'
    (src / '_includes').mkdir(parents=True)
    (src / 'posts').mkdir()
    (src / 'css').mkdir()
    (src / 'media' / 'img').mkdir(parents=True)

    (src / '_includes' / 'base.njk').write_text("""<!DOCTYPE html>
<html>
<head><title>{{ title }} | {{ site.title }}</title></head>
<body>
{{ content }}
</body>
</html>
""", encoding='utf-8')

    (src / '_includes' / 'post.njk').write_text("""---
layout: base
section: blog
---
<article data-section="{{ section }}">
{{ content }}
</article>
""", encoding='utf-8')

    (src / 'index.njk').write_text("""---
title: Home
layout: base
---
<ul>
{%- for post in collections.posts.sorted_by_date(reverse=True) %}
<li><a href="{{ post.url }}">{{ post.title }}</a></li>
{%- endfor %}
</ul>
""", encoding='utf-8')

    (src / 'about.md').write_text("""---
title: About
layout: base
---
# About

Read the [first post](/2024/first-post/).
""", encoding='utf-8')

    (src / 'posts' / 'first-post.md').write_text("""---
title: First Post
date: 2024-01-10
tags: [posts]
layout: post
---
# Hello

First body with an image ![logo](/media/img/logo.png).
""", encoding='utf-8')

    (src / 'posts' / 'second-post.md').write_text("""---
title: Second Post
date: 2024-02-20
tags: posts
layout: post
---
# Hello

## Hello

Second body.
""", encoding='utf-8')

    (src / 'css' / 'style.css').write_text("body { color: #333; }\n", encoding='utf-8')
    (src / 'media' / 'img' / 'logo.png').write_bytes(PNG_DATA)
    (src / 'notes.txt').write_text("not a document\n", encoding='utf-8')
    return root


@pytest.fixture
def make_config(site_dir):
    """Return a factory building a SiteConfig for the sample site; keyword overrides use setting names."""
    def factory(**overrides):
        settings = copy.deepcopy(KilnSettings.DEFAULT_SETTINGS)
        settings.update({
            'permalinks': {'posts': '/:year/:slug/'},
            'site': {'title': 'Test Site'},
            'feedConfig': {
                'title': 'Test Site',
                'url': 'https://example.com',
                'collection': 'posts',
            },
        })
        settings.update(overrides)
        return build_site_config(settings, str(site_dir))
    return factory


@pytest.fixture
def output_dir(site_dir):
    return site_dir / '_site'
