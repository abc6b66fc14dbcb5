class RelayError(Exception):
    """Base class for errors raised by the relay core."""


class FrameValidationError(RelayError):
    """Inbound frame is malformed or names an invalid room. The frame is dropped."""


class TransportError(RelayError):
    """Socket read or write failed. Terminal for the connection."""


class PersistenceError(RelayError):
    """The durable room store could not be reached or returned an error."""
