"""Widget library for the Textual UI."""

from __future__ import annotations

from .command_pad import CommandPad
from .key_browser import KeyBrowser
from .navigation_sidebar import NavigationSidebar
from .status_bar import StatusBar

__all__ = ["CommandPad", "KeyBrowser", "NavigationSidebar", "StatusBar"]
