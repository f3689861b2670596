"""toolpipe: route captured messages through external command-line tools."""

__version__ = "0.1.0"
