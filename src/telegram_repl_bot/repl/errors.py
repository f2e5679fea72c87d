"""Exceptions raised by the REPL transport client."""


class ReplError(Exception):
    """Error from the REPL transport."""

    pass


class BackendUnavailableError(ReplError):
    """No backend could be reached within the connect and boot windows."""

    pass


class ReplIOError(ReplError):
    """Request could not be written or the response could not be read."""

    pass


class NothingReceivedError(ReplIOError):
    """The read budget was exhausted without receiving any bytes."""

    def __init__(self, message: str = "nothing received from REPL") -> None:
        super().__init__(message)


class DecodeError(ReplError):
    """Received bytes could not be decoded."""

    pass


class ConnectionClosedError(ReplError):
    """The connection was already shut down."""

    pass
