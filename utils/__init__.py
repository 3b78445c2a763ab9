"""
Utility modules for the gifts monitor.
"""

from .number_parser import parse_count_text, parse_found_text, format_count

__all__ = ['parse_count_text', 'parse_found_text', 'format_count']
