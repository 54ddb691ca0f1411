"""Error taxonomy for the prediction engine.

Every error carries an HTTP status so the API layer can map it without a
lookup table. Collaborator failures (badges, push) never surface as errors:
they are logged and dropped where they happen.
"""

from __future__ import annotations


class SlotrankError(Exception):
    """Base class for all errors surfaced to callers."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(SlotrankError):
    """Malformed input: unknown duration, bad direction, bad symbol or month."""

    status_code = 400


class PredictionRejected(SlotrankError):
    """A bet could not be placed. Never retried automatically."""

    status_code = 400


class VerificationRequired(PredictionRejected):
    status_code = 403


class AssetUnavailable(PredictionRejected):
    status_code = 404


class InvalidSlot(PredictionRejected):
    status_code = 400


class NoActiveSlot(PredictionRejected):
    status_code = 409


class DuplicatePrediction(PredictionRejected):
    status_code = 409


class PriceUnavailable(PredictionRejected):
    """No live or cached price. On evaluation this defers, it never scores."""

    status_code = 503


class CollaboratorFailure(SlotrankError):
    """A badge or push collaborator failed. Callers log it and move on."""
