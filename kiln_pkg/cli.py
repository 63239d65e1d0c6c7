#!/usr/bin/env python3
"""
Command-line interface for Kiln - static site generator.
"""

import os
import sys
import argparse
from importlib import resources
from typing import Optional

from . import __version__
from .core import Kiln
from .errors import ConfigurationError
from .settings import KilnSettings


def _copy_starter_tree(source, dest_dir, relative='') -> None:
    for entry in sorted(source.iterdir(), key=lambda item: item.name):
        if entry.name.startswith('__'):
            continue
        rel_path = f"{relative}/{entry.name}" if relative else entry.name
        dest_path = os.path.join(dest_dir, entry.name)
        if entry.is_dir():
            os.makedirs(dest_path, exist_ok=True)
            _copy_starter_tree(entry, dest_path, rel_path)
        elif os.path.exists(dest_path):
            print(f"File already exists: src/{rel_path}")
        else:
            with open(dest_path, 'wb') as f:
                f.write(entry.read_bytes())
            print(f"Created file: src/{rel_path}")


def create_starter_structure(base_dir: Optional[str] = None) -> None:
    """Create a starter source tree with layouts, an index page, a post and a stylesheet."""
    base_dir = base_dir or os.getcwd()
    src_dir = os.path.join(base_dir, 'src')

    for directory in ['src', 'src/media']:
        dir_path = os.path.join(base_dir, directory)
        if os.path.exists(dir_path):
            print(f"Directory already exists: {directory}")
        else:
            os.makedirs(dir_path, exist_ok=True)
            print(f"Created directory: {directory}")

    _copy_starter_tree(resources.files('kiln_pkg') / 'starter', src_dir)

    print("\nStarter structure created successfully!")
    print("\nNext steps:")
    print("1. Edit the configuration file (kiln.yml)")
    print("2. Customize layouts in 'src/_includes/'")
    print("3. Add Markdown posts to 'src/posts/'")
    print("4. Run 'kiln' to build your site")


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='kiln', description='Kiln - Static Site Generator')
    parser.add_argument('--config', type=str,
                        help='Configuration file (defaults to kiln.yml, kiln.yaml or kiln.json)')
    parser.add_argument('--input', type=str,
                        help='Input directory containing source documents')
    parser.add_argument('--output', type=str,
                        help='Output directory for generated site')
    parser.add_argument('--strict', action='store_true', default=None,
                        help='Treat per-document errors as fatal')
    parser.add_argument('--dry-run', action='store_true',
                        help='Render and validate everything but write nothing')
    parser.add_argument('--workers', type=int,
                        help='Number of worker processes for rendering')
    parser.add_argument('--quiet', action='store_true',
                        help='Only show warnings and errors')
    parser.add_argument('--log-dir', type=str,
                        help='Directory for detailed build logs')
    parser.add_argument('--init', type=str, choices=['yml', 'yaml', 'json'],
                        help='Create a sample configuration file and starter site')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def main(argv=None) -> None:
    """Main CLI entry point."""
    args = create_parser().parse_args(argv)

    try:
        # Handle init command
        if args.init:
            settings_loader = KilnSettings()
            config_path = settings_loader.create_sample_config(args.init)
            print(f"Created sample configuration file: {config_path}")

            print("\nCreating starter project structure...")
            create_starter_structure(settings_loader.config_dir)

            print("\nYour new Kiln site is ready!")
            return

        # Load settings from configuration file
        settings_loader = KilnSettings(config_file=args.config)
        settings_loader.load_settings()

        # Command line arguments take precedence; paths are relative to the working directory
        overrides = {
            'inputDirectory': os.path.abspath(args.input) if args.input else None,
            'outputDirectory': os.path.abspath(args.output) if args.output else None,
            'strict': args.strict,
            'workers': args.workers,
        }
        final_settings = settings_loader.merge_with_args(overrides)
        config = settings_loader.build_config(final_settings)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    generator = Kiln(config, log_dir=args.log_dir, dry_run=args.dry_run, quiet=args.quiet)
    report = generator.build()

    if not report.ok:
        sys.exit(1)


if __name__ == '__main__':
    main()
