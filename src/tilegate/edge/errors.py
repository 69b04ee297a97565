"""Terminal determinations of a negotiation, other than a found object."""

from __future__ import annotations


class NegotiationError(Exception):
    """Base class; ``status_code`` is the HTTP status the outcome maps to."""

    status_code = 500

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.__class__.__name__)
        self.detail = detail


class MethodNotAllowed(NegotiationError):
    status_code = 405


class SoftAbsent(NegotiationError):
    """A tile that has not been rendered (yet); answered with 204."""

    status_code = 204


class HardAbsent(NegotiationError):
    """A resource expected to exist is missing, or live data is not configured."""

    status_code = 404


class UpstreamUnavailable(NegotiationError):
    """The live origin could not be reached."""

    status_code = 502


class StoreUnavailable(NegotiationError):
    """The object store failed for reasons other than an authoritative miss."""

    status_code = 503
