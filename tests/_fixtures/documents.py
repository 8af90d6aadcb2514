"""Helpers for writing Markdown documents in tests."""

from __future__ import annotations

import textwrap

from docverify.models import Document


def markdown(path: str, text: str) -> Document:
    """Build a document from an indented triple-quoted string."""
    return Document(path=path, text=textwrap.dedent(text).lstrip("\n"))


__all__ = ["markdown"]
