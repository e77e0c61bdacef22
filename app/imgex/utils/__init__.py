"""Utility modules for imgex.

This module exports commonly used utility functions.
"""

from imgex.utils.formatting import (
    console,
    create_entry_table,
    err_console,
    format_entry_row,
    format_size,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from imgex.utils.log import configure_logging

__all__ = [
    "configure_logging",
    "console",
    "create_entry_table",
    "err_console",
    "format_entry_row",
    "format_size",
    "print_error",
    "print_info",
    "print_success",
    "print_warning",
]
