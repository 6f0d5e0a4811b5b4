"""Command-line interface for filecache."""
