"""Error taxonomy shared by the tracker core and its surfaces."""


class PaperTrackerError(Exception):
    """Base class for all tracker errors."""


class NoMatchError(PaperTrackerError):
    """No registered source pattern matched a URL (an untracked page)."""


class ValidationError(PaperTrackerError):
    """Malformed input: bad pattern, missing field, duplicate id, bad request."""


class NotFoundError(PaperTrackerError):
    """A record that an operation requires does not exist in the store."""


class RemoteUnavailableError(PaperTrackerError):
    """The record store could not be reached or rejected the call."""


class StateError(PaperTrackerError):
    """The operation is not valid for the current session state."""


class RecordExistsError(PaperTrackerError):
    """A store ``create`` hit a key that is already present."""
