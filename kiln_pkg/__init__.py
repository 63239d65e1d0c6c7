"""
Kiln - A small, deterministic static site generator.

Kiln reads a tree of Markdown and template documents, renders them through
an ordered chain of Markdown extensions and Jinja2 layout chains, copies
passthrough assets verbatim and writes an RSS or Atom feed.
"""

__version__ = "1.0.0"
__author__ = "Kiln Contributors"

from .core import Kiln
from .errors import BuildError, ConfigurationError
from .settings import KilnSettings, SiteConfig

__all__ = ['Kiln', 'KilnSettings', 'SiteConfig', 'BuildError', 'ConfigurationError']
