"""
Utilities Module
================

Helper functions and utility classes.
"""

from ancretoi.utils.helpers import parse_tags, reading_time_min, slugify, utc_now

__all__ = ["parse_tags", "reading_time_min", "slugify", "utc_now"]
