"""CLI entrypoint."""

from .launcher import main, parse_arguments, setup_logging

__all__ = ["main", "parse_arguments", "setup_logging"]
