"""Trigger and workflow rules.

The compiler lives in ``bellwether.rules.compiler``; it is not re-exported
here because condition parsing depends on this package's exceptions.
"""

from bellwether.rules.exceptions import ConfigurationError

__all__ = ["ConfigurationError"]
