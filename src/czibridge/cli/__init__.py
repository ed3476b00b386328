"""Command-line interface for czibridge.

Provides commands for inspecting CZI documents and extracting their
sub-blocks, metadata and attachments.
"""

from __future__ import annotations

from czibridge.cli.main import app

__all__ = ["app"]
