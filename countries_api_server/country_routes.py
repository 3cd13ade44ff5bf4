"""
Country data endpoints, guarded by API key.
"""
from fastapi import APIRouter, Depends, HTTPException, status

from countries_api_server.auth import require_api_key
from countries_api_server.config import settings
from countries_api_server.countries_client import (
    CountriesClient,
    CountryNotFoundError,
    CountryServiceError,
)
from countries_api_server.gateway import ApiKeyRecord
from countries_api_server.models import CountryResponse

router = APIRouter(prefix="/api/countries", tags=["countries"])

_client = CountriesClient(
    base_url=settings.rest_countries_url,
    timeout=settings.rest_countries_timeout,
)


def get_countries_client() -> CountriesClient:
    return _client


@router.get("/name/{name}", response_model=CountryResponse)
async def get_country_by_name(
    name: str,
    api_key: ApiKeyRecord = Depends(require_api_key),
    client: CountriesClient = Depends(get_countries_client),
):
    """Look up countries by full or partial name."""
    try:
        countries = await client.get_by_name(name)
    except CountryNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Country not found")
    except CountryServiceError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error fetching country data",
        )

    return CountryResponse(count=len(countries), data=countries)
