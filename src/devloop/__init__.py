"""devloop: watch-driven code generation and dev server supervision."""

__version__ = "0.1.0"

# Public API
from devloop.session import DevSession

__all__ = [
    "__version__",
    # Primary components
    "DevSession",
]
