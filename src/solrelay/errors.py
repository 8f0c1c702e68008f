"""Error taxonomy for endpoint failover and bundle submission.

Configuration errors are fatal and never retried. Network and protocol
errors form the transient bucket absorbed by retry loops. ExhaustedError is
the terminal outcome surfaced once a retry budget is spent.
"""

from typing import Optional


class RelayError(Exception):
    """Base class for all solrelay errors."""

    pass


class ConfigurationError(RelayError):
    """Raised for setup problems that no amount of retrying will fix."""

    pass


class NoActiveEndpointsError(ConfigurationError):
    """Raised when an endpoint manager is built without any active endpoint."""

    def __init__(self, message: str = "At least one active RPC endpoint is required"):
        super().__init__(message)


class MissingSignerError(ConfigurationError):
    """Raised when a required signer slot has no matching local keypair."""

    def __init__(self, pubkey: str, transaction_index: Optional[int] = None):
        self.pubkey = pubkey
        self.transaction_index = transaction_index
        where = f" (transaction {transaction_index})" if transaction_index is not None else ""
        super().__init__(f"No local keypair for required signer {pubkey}{where}")


class NetworkError(RelayError):
    """Raised when a request fails in transport or returns a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ProtocolError(RelayError):
    """Raised when a response is malformed or flagged as an error."""

    def __init__(self, message: str, details: Optional[str] = None):
        self.details = details
        text = f"{message}: {details}" if details else message
        super().__init__(text)


class ExhaustedError(RelayError):
    """Raised when a retry budget is consumed without a success."""

    def __init__(self, message: str, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message)


TRANSIENT_ERRORS = (NetworkError, ProtocolError)
