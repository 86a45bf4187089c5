from __future__ import annotations


class PlacementError(ValueError):
    """Base class for domain errors; carries the HTTP status the API reports."""

    status_code = 400


class ValidationFailed(PlacementError):
    status_code = 400


class PermissionDenied(PlacementError):
    status_code = 403


class NotFound(PlacementError):
    status_code = 404


class StateConflict(PlacementError):
    status_code = 400
