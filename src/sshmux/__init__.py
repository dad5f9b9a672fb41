"""sshmux - durable SSH sessions multiplexed into shell windows

Philosophy:
- One authenticated connection, healed silently when the link drops
- Several shell windows on top of it via tmux, or one channel per tab when
  tmux is unavailable
- Output goes to an external terminal renderer untouched
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
