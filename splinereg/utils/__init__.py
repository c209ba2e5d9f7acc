"""Shared utilities."""

from splinereg.utils.logging import setup_logger, reset_logger

__all__ = ['setup_logger', 'reset_logger']
