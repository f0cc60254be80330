"""
CLI module for the Site Explorer.

Provides command-line interface using Typer:
- explore: Run an exploration session
- sessions: List stored sessions or inspect one
- config: Configuration management
"""

from site_explorer.cli.main import app

__all__ = ["app"]
