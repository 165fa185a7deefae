"""Error taxonomy for the chat engine.

SessionInitError blocks sending until a retry succeeds. SendError is
non-blocking: the optimistic message is rolled back and the user may
retry. HistoryLoadError leaves already loaded pages untouched.
"""


class ChatEngineError(Exception):
    """Base class for failures surfaced to the user."""
    pass


class NotAuthenticatedError(ChatEngineError):
    """No usable credential; the request was never attempted."""
    pass


class AccessDeniedError(ChatEngineError):
    """The credential's role may not use this feature."""
    pass


class SessionInitError(ChatEngineError):
    """Creating or resuming the live session failed."""
    pass


class SendError(ChatEngineError):
    """A message round trip failed and was rolled back."""
    pass


class HistoryLoadError(ChatEngineError):
    """A history page could not be fetched."""
    pass
