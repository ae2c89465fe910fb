"""User interaction capabilities injected into the checkout orchestrator"""

import asyncio
import sys
import webbrowser
from abc import ABC, abstractmethod

from .utils.logger import get_logger

logger = get_logger(__name__)


class CheckoutUI(ABC):
    """Prompts, notices and browser windows the checkout flow may need"""

    @abstractmethod
    async def confirm(self, prompt: str) -> bool:
        """Ask a yes/no question; True means the user accepted"""

    @abstractmethod
    async def notify(self, message: str) -> None:
        """Show a message that needs no answer"""

    @abstractmethod
    async def open_window(self, url: str) -> bool:
        """Open a URL in a new browser context; False when it was blocked"""


class TerminalCheckoutUI(CheckoutUI):
    """CheckoutUI backed by stdin/stdout and the system browser"""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout

    async def confirm(self, prompt: str) -> bool:
        answer = await asyncio.to_thread(input, f"\n{prompt}\n[y/N] > ")
        return answer.strip().lower() in ('y', 'yes', 'ok')

    async def notify(self, message: str) -> None:
        print(f"\n{message}", file=self.stream)

    async def open_window(self, url: str) -> bool:
        try:
            opened = await asyncio.to_thread(webbrowser.open_new, url)
        except webbrowser.Error as e:
            logger.warning(f"[TerminalUI] Browser unavailable: {e}")
            opened = False
        if not opened:
            # The printed link is the window: the user can still pay through it
            print(f"\nCould not open a browser window. Open this link manually:\n{url}", file=self.stream)
        return True
