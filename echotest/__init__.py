"""
echotest - natural-language browser tests driven by a tool-calling model,
with per-test action caching.
"""

__version__ = "0.1.0"
