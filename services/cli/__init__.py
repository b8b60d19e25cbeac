"""
Candle engine CLI

This module provides the command-line interface for inspecting tracker
backups as candle charts: printing windows, exporting series and watching
bucket rollovers.
"""

from .cli import app

__all__ = ["app"]
