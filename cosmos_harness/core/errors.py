"""
Errors
Root of the harness exception hierarchy.
"""


class HarnessError(Exception):
    """Base class for all harness errors."""
