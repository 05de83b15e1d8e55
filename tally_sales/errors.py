"""Exception taxonomy for the sales extraction pipeline."""


class TallyError(Exception):
    """Base class for every error raised by tally_sales."""


class ValidationError(TallyError):
    """A required query parameter is missing or malformed.

    Raised before any network activity, e.g. when no company is selected.
    """


class TransportError(TallyError):
    """Tally could not be reached, timed out, or rejected the request."""


class ParseError(TallyError):
    """The sanitized response body is not well-formed XML."""


class VoucherNotFound(TallyError):
    """No voucher with the requested GUID came back from Tally."""
