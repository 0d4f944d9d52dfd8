"""Reporters module for benchwatch.

This module provides output formatters for regression reports:
- JSON: Machine-readable format
- Markdown: Performance alert for commit or pull request comments
"""

from __future__ import annotations

from benchwatch.reporters.json import JSONReporter
from benchwatch.reporters.markdown import MarkdownReporter

__all__ = [
    "JSONReporter",
    "MarkdownReporter",
]
