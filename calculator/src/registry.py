"""
Facility Registry client: fetches a facility's config snapshot.

Sends ``GET {base_url}/v1/facilities/{facility_id}`` and validates the
JSON body into a :class:`~calculator.src.models.FacilityConfig`. Unlike
the engine's per-metric queries, registry failures are raised: a facility
cannot be dispatched without its config.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

import logging
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from calculator.src.errors import FacilityNotFoundError, RegistryError
from calculator.src.models import FacilityConfig

logger = logging.getLogger(__name__)

# Default request timeout in seconds.
_DEFAULT_TIMEOUT: float = 10.0


class RegistryClient:
    """HTTP client for the Facility Registry.

    Args:
        base_url: Registry base URL (must be HTTPS).
        api_key: Optional bearer token.
        timeout: HTTP request timeout in seconds.

    Raises:
        ValueError: If *base_url* does not use the ``https://`` scheme.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        if not base_url.startswith("https://"):
            raise ValueError(f"registry base_url must use HTTPS (got: '{base_url}')")

        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=f"{self._base_url}/v1",
            headers=headers,
            timeout=timeout,
            verify=True,
        )

    def get_facility(self, facility_id: str) -> FacilityConfig:
        """Fetch the config snapshot of *facility_id*.

        Raises:
            FacilityNotFoundError: The registry answered 404.
            RegistryError: Any other HTTP, transport or payload error.
        """
        path = f"/facilities/{quote(facility_id, safe='')}"
        try:
            response = self._client.get(path)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 404:
                raise FacilityNotFoundError(facility_id) from exc
            logger.warning("Registry HTTP error %s for %s", status, facility_id)
            raise RegistryError(
                f"registry returned HTTP {status} for {facility_id!r}",
                status_code=status,
            ) from exc
        except httpx.TransportError as exc:
            logger.warning("Registry transport error for %s: %s", facility_id, exc)
            raise RegistryError(f"registry unreachable: {exc}") from exc

        try:
            return FacilityConfig.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise RegistryError(
                f"registry returned an invalid facility for {facility_id!r}: {exc}"
            ) from exc

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()
