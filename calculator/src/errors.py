"""
Exception hierarchy for the impact calculator.

Per-metric query failures are NOT represented here; they are caught and
logged at the metric level. These exceptions cover engine misuse and the
Facility Registry seam.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""


class CalculatorError(Exception):
    """Base exception for the impact calculator."""


class EngineStateError(CalculatorError):
    """Raised when an engine is started or loaded with unusable state."""


class RegistryError(CalculatorError):
    """Raised when the Facility Registry cannot return a facility.

    Args:
        message: Human readable description.
        status_code: HTTP status returned by the registry, if any.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FacilityNotFoundError(RegistryError):
    """Raised when the registry has no facility with the requested ID."""

    def __init__(self, facility_id: str) -> None:
        super().__init__(f"Facility {facility_id!r} not found", status_code=404)
        self.facility_id = facility_id
