"""Error types raised by the relay worker"""

from typing import Optional


class RelayError(Exception):
    """Base class for all relay errors"""

    def __init__(self, message: str = "", project: Optional[str] = None):
        super().__init__(message)
        self.project = project

    def __str__(self) -> str:
        message = super().__str__()
        if self.project:
            return f"[{self.project}] {message}"
        return message


class ConfigError(RelayError):
    """Invalid or missing configuration, prevents startup"""


class RegistryUnavailable(RelayError):
    """The project registry could not be read"""


class ClientInitError(RelayError):
    """A project indexer client could not be opened"""


class FetchError(RelayError):
    """Transport level failure while reading from an indexer"""


class MessageTooLargeError(FetchError):
    """Response for the requested page exceeded the transport limit"""


class DecodeError(FetchError):
    """Response could not be decoded (protocol mismatch with the indexer)"""


class InvalidContentTypeError(FetchError):
    """Indexer answered with something that is not an indexer response"""


class CursorStalledError(FetchError):
    """A page came back without advancing the cursor"""


class ProcessingError(RelayError):
    """A single token could not be processed"""

    def __init__(
        self,
        message: str = "",
        project: Optional[str] = None,
        token_key: Optional[str] = None,
    ):
        super().__init__(message, project)
        self.token_key = token_key


class IntegrityError(ProcessingError):
    """Integrity message could not be built, signed or sent"""


class SigningError(ProcessingError):
    """The account refused to sign a typed data payload"""


class PublishError(RelayError):
    """A batch of signed messages was rejected"""


class SubscriptionError(RelayError):
    """A live update feed could not be set up or failed"""
