"""Sidebar state of the presentation shell.

Purely visual: nothing here reads or writes the registry or the engine.
"""

from typing import Optional


class SidebarState:
    """Collapsed/expanded sidebar derived from viewport width and explicit toggles."""

    def __init__(self, breakpoint: int = 768):
        self.breakpoint = breakpoint
        self.collapsed = False
        self.viewport_width: Optional[int] = None

    @property
    def narrow(self) -> bool:
        return self.viewport_width is not None and self.viewport_width < self.breakpoint

    def resize(self, width: int) -> None:
        """Collapse when the viewport turns narrow, expand when it turns wide."""
        was_narrow = self.narrow
        self.viewport_width = width
        if self.narrow != was_narrow:
            self.collapsed = self.narrow

    def toggle(self) -> None:
        self.collapsed = not self.collapsed

    def after_select(self) -> None:
        """Get out of the way on narrow screens once a conversation is picked."""
        if self.narrow:
            self.collapsed = True
