"""
Relay Errors

Exception taxonomy shared by the relay core.

Propagation rules:
- FrameDecodeError: local to one frame, logged and dropped by the decoder
- UpstreamConnectionError: session setup fails, client keeps its channel
- UpstreamIOError: ends the reading/writing task, supervisor tears down
- InvalidSignature: token rejected, caller falls back to host auth
- ForbiddenOperation: valid token, operation not allow-listed
- NotAuthenticated: neither a host user nor an agent token was accepted
"""


class RelayError(Exception):
    """Base class for all relay errors."""


class UpstreamConnectionError(RelayError):
    """Raised when the upstream agent service cannot be reached."""
    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Cannot connect to upstream {url}: {reason}")


class UpstreamIOError(RelayError):
    """Raised on a mid-stream read or write failure."""


class FrameDecodeError(RelayError):
    """Raised when a single upstream line is not a JSON object."""
    def __init__(self, segment: str, reason: str):
        self.segment = segment
        self.reason = reason
        super().__init__(f"Parse error: {reason}")


class InvalidSignature(RelayError):
    """
    Raised when a signed session token fails verification.

    The message is identical for malformed, tampered and expired tokens.
    """
    def __init__(self) -> None:
        super().__init__("Invalid or expired session token")


class ForbiddenOperation(RelayError):
    """Raised when an agent calls an operation missing from the allow-list."""
    def __init__(self, endpoint_group: str, operation: str):
        self.endpoint_group = endpoint_group
        self.operation = operation
        super().__init__(
            f"Action '{operation}' isn't white-listed for LlamaBot. "
            f"To fix this, add llama_bot_allow(\"{endpoint_group}\", \"{operation}\") "
            f"during application start-up."
        )


class NotAuthenticated(RelayError):
    """Raised when a request carries neither a host user nor a usable agent token."""
    def __init__(self, reason: str = "Unauthorized"):
        self.reason = reason
        super().__init__(reason)
