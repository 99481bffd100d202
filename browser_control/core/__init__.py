"""Core module containing the browser controller, session manager and state extraction."""

from browser_control.core.controller import BrowserController
from browser_control.core.service import BrowserControlService
from browser_control.core.session_manager import SessionManager

__all__ = ["BrowserController", "BrowserControlService", "SessionManager"]
