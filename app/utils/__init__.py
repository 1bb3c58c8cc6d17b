"""
Utilities Module
================

Helper functions and utility classes.
"""

from app.utils.helpers import as_utc, from_epoch_seconds, split_full_name, utc_now

__all__ = ["as_utc", "from_epoch_seconds", "split_full_name", "utc_now"]
