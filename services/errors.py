class FeedError(Exception):
    """Base class for errors raised by the like subsystem"""


class NotAuthenticated(FeedError):
    """Raised when an operation needs a signed-in principal and there is none"""

    def __init__(self, action: str = "perform this action"):
        super().__init__(f"Must be logged in to {action}")
        self.action = action


class BackendUnavailable(FeedError):
    """Raised when a read or write against the backend cannot complete"""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Backend request for '{path}' failed: {reason}")
        self.path = path
        self.reason = reason


class FeedClosed(FeedError):
    """Raised when a feed is used, or awaited, after it has been closed"""

    def __init__(self):
        super().__init__("Feed has been closed")
