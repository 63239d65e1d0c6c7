"""
Verbatim copy of passthrough asset directories.
"""

import os
import shutil
import posixpath


def rule_source(rule, config):
    return os.path.join(config.input_dir, rule.source)


def rule_files(rule, config):
    """
    List ``(source_file, output_relative_path)`` pairs covered by ``rule``.

    A missing source yields nothing.
    """
    source = rule_source(rule, config)
    destination = rule.destination.replace(os.sep, '/')
    if os.path.isfile(source):
        return [(source, posixpath.normpath(destination))]

    files = []
    for dirpath, dirnames, filenames in os.walk(source):
        dirnames.sort()
        relative_dir = os.path.relpath(dirpath, source).replace(os.sep, '/')
        for filename in sorted(filenames):
            relative = posixpath.normpath(posixpath.join(destination, relative_dir, filename))
            files.append((os.path.join(dirpath, filename), relative))
    return files


def plan_copies(rules, config):
    """
    Map every output path to the single rule file that owns it.

    When rules overlap, the later rule in configuration order wins, so each
    target is copied exactly once. Returns ``{relative: (source_file, rule)}``.
    """
    owners = {}
    for rule in rules:
        for source_file, relative in rule_files(rule, config):
            owners[relative] = (source_file, rule)
    return owners


def copy_file(source_file, relative, config):
    """Copy one file to ``relative`` under the output root; OSError propagates."""
    target = os.path.join(config.output_dir, *relative.split('/'))
    os.makedirs(os.path.dirname(target), exist_ok=True)
    shutil.copy2(source_file, target)
    return target


def copy_rule(rule, config):
    """
    Copy every file of ``rule`` to its mirrored path under the output root.

    Returns the number of files copied. OSError propagates to the caller.
    """
    copied = 0
    for source_file, relative in rule_files(rule, config):
        copy_file(source_file, relative, config)
        copied += 1
    return copied
