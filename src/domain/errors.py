from __future__ import annotations


class ConfigurationError(ValueError):
    """Missing or invalid configuration (endpoint list, stream URL, subscriptions). Fatal at startup."""


class ProtocolParseError(Exception):
    """A frame on the stream could not be parsed; the frame is dropped and the session continues."""

    def __init__(self, message: str, *, raw: bytes = b"") -> None:
        super().__init__(message)
        self.raw = raw


class PayloadDecodeError(Exception):
    """A data frame payload could not be decoded into an object."""


class TransportError(Exception):
    """
    Network-level failure talking to a remote endpoint.

    `retriable` separates transient failures (refused/reset/timeout/DNS/unavailable)
    from deterministic ones (e.g. a malformed outgoing request).
    """

    def __init__(self, message: str, *, retriable: bool = True, status_code: int | None = None) -> None:
        super().__init__(message)
        self.retriable = bool(retriable)
        self.status_code = status_code


class RpcError(Exception):
    """JSON-RPC error object returned by an endpoint (deterministic, not retried)."""

    def __init__(self, message: str, *, code: int | None = None, data=None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


class ExhaustedFailoverError(Exception):
    """Every endpoint and every attempt has been used without success."""

    def __init__(self, *, attempts: int, endpoints: int, last_error: BaseException | None) -> None:
        detail = f"{type(last_error).__name__}: {last_error}" if last_error is not None else "no error recorded"
        super().__init__(
            f"Exhausted failover after {attempts} attempt(s) across {endpoints} endpoint(s); last error: {detail}"
        )
        self.attempts = attempts
        self.endpoints = endpoints
        self.last_error = last_error
