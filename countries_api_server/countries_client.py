"""
REST Countries client.

Fetches country data by name from the public REST Countries API and reduces
each country to the fields this service exposes: names, currencies,
capital, languages and flags.

API: https://restcountries.com/v3.1
"""

from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from countries_api_server.logging_config import get_logger, log_upstream_error

logger = get_logger(__name__)


class CountryServiceError(Exception):
    """The upstream country service failed or returned unusable data."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CountryNotFoundError(CountryServiceError):
    """No country matched the requested name."""
    pass


def transform_country_data(country: Dict[str, Any]) -> Dict[str, Any]:
    """
    Reduce an upstream country document to the exposed shape.

    Missing optional sections default to empty values.

    Example:
        >>> transform_country_data({"name": {"common": "France", "official": "French Republic"}})["capital"]
        []
    """
    name = country.get("name") or {}
    flags = country.get("flags") or {}
    return {
        "name": {
            "common": name.get("common", ""),
            "official": name.get("official", ""),
        },
        "currencies": country.get("currencies") or {},
        "capital": country.get("capital") or [],
        "languages": country.get("languages") or {},
        "flags": {
            "png": flags.get("png") or "",
            "svg": flags.get("svg") or "",
            "alt": flags.get("alt") or "",
        },
    }


class CountriesClient:
    """Async client for the REST Countries API."""

    def __init__(
        self,
        base_url: str = "https://restcountries.com/v3.1",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: API base URL without trailing slash
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def get_by_name(self, name: str) -> List[Dict[str, Any]]:
        """
        Look up countries whose name matches ``name``.

        Args:
            name: Full or partial country name

        Returns:
            List of transformed country dictionaries

        Raises:
            CountryNotFoundError: If the upstream API answers 404
            CountryServiceError: On any other upstream failure
        """
        url = f"{self.base_url}/name/{quote(name, safe='')}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(url)
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code == 404:
                raise CountryNotFoundError("Country not found", status_code=404) from e
            log_upstream_error("restcountries", url, str(e), status_code=status_code)
            raise CountryServiceError(f"Upstream returned {status_code}", status_code=status_code) from e

        except httpx.HTTPError as e:
            log_upstream_error("restcountries", url, str(e))
            raise CountryServiceError(f"Upstream request failed: {e}") from e

        except ValueError as e:
            log_upstream_error("restcountries", url, f"invalid JSON: {e}")
            raise CountryServiceError("Upstream returned invalid JSON") from e

        if not isinstance(data, list):
            log_upstream_error("restcountries", url, "unexpected payload type")
            raise CountryServiceError("Upstream returned an unexpected payload")

        countries = [transform_country_data(country) for country in data if isinstance(country, dict)]
        logger.info("countries_fetched", name=name, count=len(countries))
        return countries
