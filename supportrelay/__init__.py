"""Customer support relay between a web chat widget and Telegram agents."""

from .__version__ import __version__

__all__ = ["__version__"]
