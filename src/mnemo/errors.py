"""Error taxonomy shared by the store, the retry layer and the runtime."""


class MnemoError(Exception):
    """Base class for all mnemo errors."""


class ValidationError(MnemoError):
    """Malformed tool parameters. Isolated to the offending tool call."""


class TransientError(MnemoError):
    """A failure worth retrying (network, timeout, 5xx, 429)."""


class FatalError(MnemoError):
    """A failure that must reach the turn caller immediately."""


class SessionBusyError(FatalError):
    """A turn was started while another turn on the session is in flight."""


class SessionClosedError(FatalError):
    """The session runtime has been closed."""


class StorageError(MnemoError):
    """The persistent store failed to read or write."""


class NotFoundError(StorageError):
    """A referenced entity does not exist."""


class AlreadyExistsError(StorageError):
    """An entity exists with conflicting ownership."""
