"""Error taxonomy shared by the reconciliation engine and its collaborators."""


class GeoRecallError(Exception):
    """Base class for geo-recall failures."""


class InvalidInput(GeoRecallError):
    """Malformed coordinates or an unparsable payload. Never leaves an adapter."""


class ServiceUnavailable(GeoRecallError):
    """An external service timed out, refused the connection or answered non-2xx."""


class IncompleteRound(GeoRecallError):
    """A round ended without a resolvable actual country, even after fallbacks."""


class ConfigurationMismatch(GeoRecallError):
    """The flashcard note model does not match what the card compiler produces."""

    def __init__(self, message: str, remediation: str = "") -> None:
        super().__init__(message)
        self.remediation = remediation


class CardSubmissionError(GeoRecallError):
    """The flashcard software rejected a note."""
