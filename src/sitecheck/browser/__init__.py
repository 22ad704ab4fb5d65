"""Browser automation subsystem.

This package provides:
- The browser automation capability interface and its Playwright implementation
- Isolated context management with authentication
- Bounded page discovery
- Element interaction testing
- Form testing and console/network error monitoring
- Visual regression testing with baseline review
"""

from .base import BaseBrowserAutomation
from .playwright_integration import PlaywrightManager
from .browser_manager import BrowserContextManager
from .page_discovery import PageDiscoverer
from .element_tester import ElementTester
from .form_tester import FormTester
from .page_monitor import PageMonitor
from .baseline_manager import BaselineManager
from .visual_tester import VisualTester, ImageComparison, compare_images

__all__ = [
    "BaseBrowserAutomation",
    "PlaywrightManager",
    "BrowserContextManager",
    "PageDiscoverer",
    "ElementTester",
    "FormTester",
    "PageMonitor",
    "BaselineManager",
    "VisualTester",
    "ImageComparison",
    "compare_images",
]
