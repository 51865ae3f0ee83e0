"""
Checks for template manifests.

This package contains pure, unit-testable functions that inspect a parsed
template: hard errors that make a manifest invalid, and lint warnings.
"""

from .manifest_checks import (
    find_broad_permissions,
    find_undeclared_references,
    find_undocumented_inputs,
    find_unpinned_actions,
    find_unused_declarations,
    lint_template,
)

__all__ = [
    'find_broad_permissions',
    'find_undeclared_references',
    'find_undocumented_inputs',
    'find_unpinned_actions',
    'find_unused_declarations',
    'lint_template',
]
