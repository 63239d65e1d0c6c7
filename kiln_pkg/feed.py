"""
RSS 2.0 and Atom feeds built from a collection of rendered documents.
"""

import re
from datetime import datetime, timezone
from email.utils import format_datetime
from urllib.parse import urljoin
from xml.sax.saxutils import escape

from .content import Collection

ROOT_RELATIVE_URL_RE = re.compile(r'(\s(?:href|src)=")(/(?!/)[^"]*)"')
ATTR_ENTITIES = {'"': '&quot;'}


def absolute_url(url, base):
    """Resolve ``url`` against the site ``base`` URL."""
    return urljoin(base, url or '')


def html_to_absolute_urls(html_text, base):
    """Rewrite root-relative ``href``/``src`` attributes to absolute URLs."""
    return ROOT_RELATIVE_URL_RE.sub(lambda m: f'{m.group(1)}{absolute_url(m.group(2), base)}"', html_text)


def _as_utc(value):
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def date_to_rfc822(value):
    return format_datetime(_as_utc(value), usegmt=True)


def date_to_rfc3339(value):
    return _as_utc(value).strftime('%Y-%m-%dT%H:%M:%SZ')


def newest_collection_item_date(collection):
    dates = [doc.date for doc in collection if doc.date is not None]
    return max(dates) if dates else None


def select_feed_items(collection, limit):
    """
    Pick the feed entries: rendered, routable documents, newest first.

    Equal dates are ordered by source path so rebuilds are stable.
    """
    candidates = Collection(collection.name, [
        doc for doc in collection
        if doc.url is not None and doc.content_html is not None
    ])
    return list(candidates.sorted_by_date(reverse=True))[:limit]


def generate_feed(collection, feed_config):
    """
    Render the feed XML for ``collection``.

    Returns (xml, items). The channel date is the newest item date rather
    than the wall clock so identical input gives identical output.
    """
    items = select_feed_items(collection, feed_config.limit)
    if feed_config.format == 'atom':
        return _atom(items, feed_config), items
    return _rss(items, feed_config), items


def _item_link(doc, feed_config):
    return absolute_url(doc.url, feed_config.url)


def _item_content(doc, feed_config):
    return html_to_absolute_urls(doc.content_html, feed_config.url)


def _rss(items, feed_config):
    site_url = feed_config.url
    self_url = absolute_url(feed_config.output, site_url)
    description = feed_config.description or f"Latest posts from {feed_config.title}"

    rss_content = f'''<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:atom="http://www.w3.org/2005/Atom">
<channel>
<title>{escape(feed_config.title)}</title>
<link>{escape(site_url)}</link>
<atom:link href="{escape(self_url, ATTR_ENTITIES)}" rel="self" type="application/rss+xml"/>
<description>{escape(description)}</description>
'''
    newest = newest_collection_item_date(items)
    if newest is not None:
        rss_content += f'<lastBuildDate>{date_to_rfc822(newest)}</lastBuildDate>\n'

    for doc in items:
        link = escape(_item_link(doc, feed_config))
        title = escape(str(doc.title or doc.file_slug))
        rss_content += f'''<item>
<title>{title}</title>
<link>{link}</link>
<description>{escape(_item_content(doc, feed_config))}</description>
<pubDate>{date_to_rfc822(doc.date)}</pubDate>
<guid>{link}</guid>
</item>
'''

    rss_content += '''</channel>
</rss>
'''
    return rss_content


def _atom(items, feed_config):
    site_url = feed_config.url
    self_url = absolute_url(feed_config.output, site_url)
    newest = newest_collection_item_date(items) or datetime(1970, 1, 1)

    atom_content = f'''<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
<title>{escape(feed_config.title)}</title>
'''
    if feed_config.description:
        atom_content += f'<subtitle>{escape(feed_config.description)}</subtitle>\n'
    atom_content += f'''<link href="{escape(self_url, ATTR_ENTITIES)}" rel="self"/>
<link href="{escape(site_url, ATTR_ENTITIES)}"/>
<updated>{date_to_rfc3339(newest)}</updated>
<id>{escape(site_url)}</id>
'''
    if feed_config.author:
        atom_content += f'<author>\n<name>{escape(feed_config.author)}</name>\n</author>\n'

    for doc in items:
        link = _item_link(doc, feed_config)
        atom_content += f'''<entry>
<title>{escape(str(doc.title or doc.file_slug))}</title>
<link href="{escape(link, ATTR_ENTITIES)}"/>
<updated>{date_to_rfc3339(doc.date)}</updated>
<id>{escape(link)}</id>
<content type="html">{escape(_item_content(doc, feed_config))}</content>
</entry>
'''

    atom_content += '</feed>\n'
    return atom_content
