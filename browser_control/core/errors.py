from __future__ import annotations


class BrowserControlError(RuntimeError):
    """Base class for every failure raised by the browser-control core."""


class NotLaunchedError(BrowserControlError):
    def __init__(self) -> None:
        super().__init__("Browser not launched. Call launch() first.")


class AlreadyLaunchedError(BrowserControlError):
    def __init__(self) -> None:
        super().__init__("Browser already launched")


class AmbiguousSelectorError(BrowserControlError):
    def __init__(self, selector: str, count: int) -> None:
        self.selector = selector
        self.count = count
        super().__init__(
            f"Click failed: selector matched {count} elements (strict mode). "
            "Refine your selector (use get_state to find a unique selector) "
            "or use a text/nth based selector such as 'text=Save >> nth=0'."
        )


class RemoteProviderError(BrowserControlError):
    def __init__(self, message: str, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)


class CloudConnectionError(BrowserControlError):
    """CDP attach to a remote browser failed. The message never carries credentials."""


class CookieInjectionError(BrowserControlError):
    pass


class ActionValidationError(BrowserControlError, ValueError):
    pass


class SessionNotFoundError(BrowserControlError):
    def __init__(self, session_id: str, message: str = "No active session") -> None:
        self.session_id = session_id
        super().__init__(message)
