"""Tests for the passthrough asset copier."""

import pytest
import os

import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from kiln_pkg.passthrough import copy_file, copy_rule, plan_copies, rule_files
from kiln_pkg.settings import AssetRule

from conftest import PNG_DATA


class TestPassthrough:
    """Test cases for copying asset rules."""

    def test_rule_files_mirror_tree(self, make_config):
        """Test the files and output paths covered by a directory rule."""
        config = make_config()

        files = rule_files(AssetRule('media', 'media'), config)

        assert [relative for _, relative in files] == ['media/img/logo.png']
        assert files[0][0] == os.path.join(config.input_dir, 'media', 'img', 'logo.png')

    def test_copy_preserves_bytes(self, output_dir, make_config):
        """Test that copied files are byte-identical to their sources."""
        config = make_config()

        copied = copy_rule(AssetRule('media', 'media'), config)

        assert copied == 1
        assert (output_dir / 'media' / 'img' / 'logo.png').read_bytes() == PNG_DATA

    def test_copy_to_other_destination(self, output_dir, make_config):
        """Test a rule with a different destination."""
        copy_rule(AssetRule('css', 'assets/styles'), make_config())

        assert (output_dir / 'assets' / 'styles' / 'style.css').read_text() == "body { color: #333; }\n"

    def test_copy_single_file(self, site_dir, output_dir, make_config):
        """Test a rule whose source is one file."""
        (site_dir / 'src' / 'robots.txt').write_bytes(b'User-agent: *\r\nDisallow:\r\n')

        copied = copy_rule(AssetRule('robots.txt', 'robots.txt'), make_config())

        assert copied == 1
        assert (output_dir / 'robots.txt').read_bytes() == b'User-agent: *\r\nDisallow:\r\n'

    def test_copy_nested_and_empty_files(self, site_dir, output_dir, make_config):
        """Test deep trees and empty files."""
        deep = site_dir / 'src' / 'static' / 'a' / 'b'
        deep.mkdir(parents=True)
        (deep / 'empty.bin').write_bytes(b'')
        (site_dir / 'src' / 'static' / 'top.bin').write_bytes(bytes(range(256)))

        copied = copy_rule(AssetRule('static', 'static'), make_config())

        assert copied == 2
        assert (output_dir / 'static' / 'a' / 'b' / 'empty.bin').read_bytes() == b''
        assert (output_dir / 'static' / 'top.bin').read_bytes() == bytes(range(256))

    def test_missing_source(self, output_dir, make_config):
        """Test that a missing source copies nothing."""
        config = make_config()

        assert rule_files(AssetRule('fonts', 'fonts'), config) == []
        assert copy_rule(AssetRule('fonts', 'fonts'), config) == 0
        assert not output_dir.exists()

    def test_copy_error_propagates(self, site_dir, make_config):
        """Test that OSError surfaces to the caller."""
        (site_dir / '_site').write_text('a file where a directory is needed')

        with pytest.raises(OSError):
            copy_rule(AssetRule('css', 'css'), make_config())

    def test_root_destination_paths_are_normalised(self, make_config):
        """Test that a rule copied to the output root yields plain relative paths."""
        files = rule_files(AssetRule('css', '.'), make_config())

        assert [relative for _, relative in files] == ['style.css']

    def test_plan_gives_each_target_one_owner(self, site_dir, make_config):
        """Test that overlapping rules resolve to the last rule in order."""
        (site_dir / 'src' / 'theme').mkdir()
        (site_dir / 'src' / 'theme' / 'style.css').write_text("body { color: red; }\n")
        (site_dir / 'src' / 'theme' / 'print.css').write_text("@media print {}\n")
        config = make_config()
        first, second = AssetRule('css', 'css'), AssetRule('theme', 'css')

        plan = plan_copies([first, second], config)

        assert sorted(plan) == ['css/print.css', 'css/style.css']
        assert plan['css/style.css'] == (os.path.join(config.input_dir, 'theme', 'style.css'), second)
        assert plan_copies([second, first], config)['css/style.css'][1] == first

    def test_copy_file(self, output_dir, make_config):
        """Test copying one planned file."""
        config = make_config()

        target = copy_file(os.path.join(config.input_dir, 'media', 'img', 'logo.png'), 'a/b/logo.png', config)

        assert target == os.path.join(config.output_dir, 'a', 'b', 'logo.png')
        assert (output_dir / 'a' / 'b' / 'logo.png').read_bytes() == PNG_DATA
