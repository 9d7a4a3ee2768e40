"""Command-line interface for SEO Sentinel."""

from .main import ExitCode, app

__all__ = ['ExitCode', 'app']
