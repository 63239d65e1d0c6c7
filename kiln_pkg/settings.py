#!/usr/bin/env python3
"""
Settings loader for Kiln static site generator.
Supports configuration from kiln.yml, kiln.yaml, or kiln.json files.
"""

import os
import re
import json
import copy
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Tuple

import yaml

from .errors import ConfigurationError


@dataclass(frozen=True)
class AssetRule:
    """A directory (or file) copied verbatim from the input to the output root."""
    source: str
    destination: str


@dataclass(frozen=True)
class MarkdownOptions:
    html: bool = True
    linkify: bool = True
    typographer: bool = True


@dataclass(frozen=True)
class ExtensionSpec:
    """A named Markdown extension and its keyword options."""
    name: str
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FeedConfig:
    title: str
    url: str
    limit: int = 20
    collection: str = 'all'
    output: str = 'feed.xml'
    format: str = 'rss'
    description: Optional[str] = None
    author: Optional[str] = None


@dataclass(frozen=True)
class SiteConfig:
    """
    Read-only build configuration shared by every pipeline stage.

    Paths are absolute. Instances are passed explicitly to each component
    and to worker processes.
    """
    input_dir: str
    output_dir: str
    layouts_dir: str = '_includes'
    layout_aliases: Dict[str, str] = field(default_factory=dict)
    passthrough_rules: Tuple[AssetRule, ...] = ()
    markdown_options: MarkdownOptions = field(default_factory=MarkdownOptions)
    markdown_extensions: Tuple[ExtensionSpec, ...] = ()
    template_formats: Tuple[str, ...] = ('md', 'njk', 'html', 'liquid')
    feed: Optional[FeedConfig] = None
    permalink: str = '/:path/'
    permalinks: Dict[str, str] = field(default_factory=dict)
    site: Dict[str, Any] = field(default_factory=dict)
    strict: bool = False
    clean: bool = True
    workers: Optional[int] = None
    parallel_threshold: int = 12
    max_layout_depth: int = 10

    @property
    def layouts_path(self) -> str:
        return os.path.join(self.input_dir, self.layouts_dir)


def camel_to_snake(name: str) -> str:
    """Convert ``permalinkClass`` style option names to ``permalink_class``."""
    name = name.replace('-', '_')
    return re.sub(r'(?<=[a-z0-9])([A-Z])', r'_\1', name).lower()


class KilnSettings:
    """Load and manage Kiln configuration settings."""

    # Default configuration
    DEFAULT_SETTINGS = {
        'inputDirectory': 'src',
        'outputDirectory': '_site',
        'layoutsDirectory': '_includes',
        'layoutAliases': {},
        'passthroughRules': ['media', 'css'],
        'markdownOptions': {
            'html': True,
            'linkify': True,
            'typographer': True,
        },
        'markdownExtensions': [
            {
                'name': 'anchors',
                'permalink': True,
                'permalinkClass': 'direct-link',
                'permalinkSymbol': '#',
            },
            'footnotes',
            {'name': 'toc', 'listType': 'ol', 'containerId': 'toc'},
            'syntax-highlight',
        ],
        'templateFormats': ['md', 'njk', 'html', 'liquid'],
        'feedConfig': None,
        'permalink': '/:path/',
        'permalinks': {},
        'site': {},
        'strict': False,
        'clean': True,
        'workers': None,
        'parallelThreshold': 12,
        'maxLayoutDepth': 10,
    }

    # Config file names to look for (in order of preference)
    CONFIG_FILES = ['kiln.yml', 'kiln.yaml', 'kiln.json']

    def __init__(self, config_dir: str = None, config_file: str = None):
        """
        Initialize settings loader.

        Args:
            config_dir: Directory to look for config files. Defaults to current directory.
            config_file: Explicit configuration file; skips the lookup when given.
        """
        if config_file:
            config_dir = os.path.dirname(os.path.abspath(config_file))
        self.config_dir = config_dir or os.getcwd()
        self.explicit_config_file = config_file
        self.settings = copy.deepcopy(self.DEFAULT_SETTINGS)
        self.config_file_path = None
        self.logger = logging.getLogger('Kiln')

    def load_settings(self) -> Dict[str, Any]:
        """
        Load settings from configuration file if it exists.

        Returns:
            Dictionary of configuration settings
        """
        if self.explicit_config_file:
            if not os.path.isfile(self.explicit_config_file):
                raise ConfigurationError("Configuration file not found", self.explicit_config_file)
            config_file = self.explicit_config_file
        else:
            config_file = self._find_config_file()

        if config_file:
            self.config_file_path = config_file
            loaded_settings = self._load_config_file(config_file)
            if not isinstance(loaded_settings, dict):
                raise ConfigurationError("Configuration must be a mapping", config_file)
            unknown = sorted(set(loaded_settings) - set(self.DEFAULT_SETTINGS))
            if unknown:
                self.logger.warning(f"Ignoring unknown configuration keys in {config_file}: {', '.join(unknown)}")
            # Merge with defaults, giving preference to loaded settings
            self.settings.update({k: v for k, v in loaded_settings.items() if k in self.DEFAULT_SETTINGS})
            self.logger.info(f"Loaded configuration from: {os.path.relpath(config_file)}")

        return copy.deepcopy(self.settings)

    def _find_config_file(self) -> Optional[str]:
        """
        Find the first available configuration file.

        Returns:
            Path to config file or None if not found
        """
        for filename in self.CONFIG_FILES:
            config_path = os.path.join(self.config_dir, filename)
            if os.path.exists(config_path):
                return config_path
        return None

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from a file.

        Args:
            config_path: Path to the configuration file

        Returns:
            Dictionary of configuration settings
        """
        file_ext = os.path.splitext(config_path)[1].lower()
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                if file_ext in ['.yml', '.yaml']:
                    return yaml.safe_load(f) or {}
                elif file_ext == '.json':
                    return json.load(f) or {}
                else:
                    raise ConfigurationError(f"Unsupported config file format: {file_ext}", config_path)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}", config_path) from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in configuration file: {e}", config_path) from e
        except (IOError, OSError) as e:
            raise ConfigurationError(f"Error reading configuration file: {e}", config_path) from e

    def create_sample_config(self, file_format: str = 'yml') -> str:
        """
        Create a sample configuration file.

        Args:
            file_format: Format for config file ('yml', 'yaml', or 'json')

        Returns:
            Path to created sample config file
        """
        filename = f'kiln.{file_format}'
        config_path = os.path.join(self.config_dir, filename)
        if os.path.exists(config_path):
            raise ConfigurationError("Configuration file already exists", config_path)

        sample_config = copy.deepcopy(self.DEFAULT_SETTINGS)
        sample_config['feedConfig'] = {
            'title': 'My Kiln Site',
            'url': 'https://example.com',
            'limit': 20,
            'collection': 'posts',
        }
        sample_config['permalinks'] = {'posts': '/:year/:slug/'}
        sample_config['site'] = {'title': 'My Kiln Site'}
        del sample_config['workers']

        try:
            with open(config_path, 'w', encoding='utf-8') as f:
                if file_format in ['yml', 'yaml']:
                    f.write("# Kiln Configuration File\n")
                    f.write("# Paths are relative to this file.\n\n")
                    yaml.safe_dump(sample_config, f, sort_keys=False, allow_unicode=True)
                elif file_format == 'json':
                    json.dump(sample_config, f, indent=2)
                else:
                    raise ConfigurationError(f"Unsupported config file format: {file_format}")
        except (IOError, OSError) as e:
            raise ConfigurationError(f"Error writing configuration file: {e}", config_path) from e

        return config_path

    def merge_with_args(self, args_dict: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge configuration settings with command-line arguments.
        Command-line arguments take precedence over config file settings.

        Args:
            args_dict: Dictionary of command-line arguments, keyed by setting name

        Returns:
            Merged configuration dictionary
        """
        merged = copy.deepcopy(self.settings)

        # Override with non-None command line arguments
        for key, value in args_dict.items():
            if value is not None:
                merged[key] = value

        return merged

    def build_config(self, settings: Dict[str, Any] = None) -> SiteConfig:
        """
        Validate a settings dictionary and turn it into a SiteConfig.

        Relative paths are resolved against the configuration directory.
        """
        settings = self.settings if settings is None else settings
        return build_site_config(settings, self.config_dir)


def _require(condition, message):
    if not condition:
        raise ConfigurationError(message)


def _resolve(base_dir, value, key):
    _require(isinstance(value, str) and value.strip(), f"'{key}' must be a non-empty path")
    value = os.path.expanduser(value)
    if not os.path.isabs(value):
        value = os.path.join(base_dir, value)
    return os.path.normpath(os.path.abspath(value))


def _relative(value, key):
    _require(isinstance(value, str) and value.strip(), f"'{key}' entries must be non-empty paths")
    value = os.path.normpath(value.strip().strip('/'))
    _require(value != '..' and not value.startswith('..' + os.sep) and not os.path.isabs(value),
             f"'{key}' entries must stay inside their root: {value}")
    return value


def _parse_passthrough(rules):
    _require(isinstance(rules, list), "'passthroughRules' must be a list")
    parsed = []
    for rule in rules:
        if isinstance(rule, str):
            source = _relative(rule, 'passthroughRules')
            parsed.append(AssetRule(source=source, destination=source))
        elif isinstance(rule, dict):
            _require('source' in rule, "'passthroughRules' mappings need a 'source'")
            source = _relative(rule['source'], 'passthroughRules')
            destination = _relative(rule.get('destination', rule['source']), 'passthroughRules')
            parsed.append(AssetRule(source=source, destination=destination))
        else:
            raise ConfigurationError(f"Invalid passthrough rule: {rule!r}")
    return tuple(parsed)


def _parse_markdown_options(options):
    _require(isinstance(options, dict), "'markdownOptions' must be a mapping")
    values = {}
    for key in ('html', 'linkify', 'typographer'):
        if key in options:
            _require(isinstance(options[key], bool), f"'markdownOptions.{key}' must be true or false")
            values[key] = options[key]
    return MarkdownOptions(**values)


def _parse_extensions(entries):
    _require(isinstance(entries, list), "'markdownExtensions' must be a list")
    specs = []
    for entry in entries:
        if isinstance(entry, str):
            specs.append(ExtensionSpec(name=entry))
            continue
        _require(isinstance(entry, dict) and isinstance(entry.get('name'), str),
                 f"Invalid markdown extension entry: {entry!r}")
        if entry.get('enabled', True) is False:
            continue
        options = {camel_to_snake(k): v for k, v in entry.items() if k not in ('name', 'enabled')}
        specs.append(ExtensionSpec(name=entry['name'], options=options))
    return tuple(specs)


def _parse_feed(feed):
    if feed is None:
        return None
    _require(isinstance(feed, dict), "'feedConfig' must be a mapping")
    _require(isinstance(feed.get('title'), str) and isinstance(feed.get('url'), str),
             "'feedConfig' needs a 'title' and a 'url'")
    values = {camel_to_snake(k): v for k, v in feed.items()}
    limit = values.get('limit', 20)
    _require(isinstance(limit, int) and not isinstance(limit, bool) and limit >= 0,
             "'feedConfig.limit' must be a non-negative integer")
    _require(values.get('format', 'rss') in ('rss', 'atom'), "'feedConfig.format' must be 'rss' or 'atom'")
    if 'output' in values:
        values['output'] = _relative(values['output'], 'feedConfig.output').replace(os.sep, '/')
    known = set(FeedConfig.__dataclass_fields__)
    unknown = sorted(set(values) - known)
    _require(not unknown, f"Unknown feedConfig keys: {', '.join(unknown)}")
    return FeedConfig(**values)


def _positive_int(value, key, allow_none=False):
    if value is None and allow_none:
        return None
    _require(isinstance(value, int) and not isinstance(value, bool) and value >= 1,
             f"'{key}' must be a positive integer")
    return value


def build_site_config(settings: Dict[str, Any], base_dir: str) -> SiteConfig:
    """Validate raw settings and build the immutable SiteConfig."""
    input_dir = _resolve(base_dir, settings['inputDirectory'], 'inputDirectory')
    output_dir = _resolve(base_dir, settings['outputDirectory'], 'outputDirectory')
    _require(input_dir != output_dir, "'inputDirectory' and 'outputDirectory' must differ")

    formats = settings['templateFormats']
    _require(isinstance(formats, list) and formats, "'templateFormats' must be a non-empty list")
    formats = tuple(str(fmt).lower().lstrip('.') for fmt in formats)

    aliases = settings.get('layoutAliases') or {}
    _require(isinstance(aliases, dict), "'layoutAliases' must be a mapping")
    permalinks = settings.get('permalinks') or {}
    _require(isinstance(permalinks, dict) and all(isinstance(v, str) for v in permalinks.values()),
             "'permalinks' must map tags to permalink templates")
    _require(isinstance(settings['permalink'], str), "'permalink' must be a string")
    site = settings.get('site') or {}
    _require(isinstance(site, dict), "'site' must be a mapping")
    for key in ('strict', 'clean'):
        _require(isinstance(settings[key], bool), f"'{key}' must be true or false")

    return SiteConfig(
        input_dir=input_dir,
        output_dir=output_dir,
        layouts_dir=_relative(settings['layoutsDirectory'], 'layoutsDirectory'),
        layout_aliases=dict(aliases),
        passthrough_rules=_parse_passthrough(settings['passthroughRules']),
        markdown_options=_parse_markdown_options(settings['markdownOptions']),
        markdown_extensions=_parse_extensions(settings['markdownExtensions']),
        template_formats=formats,
        feed=_parse_feed(settings.get('feedConfig')),
        permalink=settings['permalink'],
        permalinks=dict(permalinks),
        site=dict(site),
        strict=settings['strict'],
        clean=settings['clean'],
        workers=_positive_int(settings.get('workers'), 'workers', allow_none=True),
        parallel_threshold=_positive_int(settings['parallelThreshold'], 'parallelThreshold'),
        max_layout_depth=_positive_int(settings['maxLayoutDepth'], 'maxLayoutDepth'),
    )
