"""
Browser automation module exports.
"""

from echotest.browser.driver import PlaywrightDriver
from echotest.browser.shell import ShellRunner

__all__ = [
    "PlaywrightDriver",
    "ShellRunner",
]
