from ..domain.errors import CountryNotFoundError, ServiceProviderNotFoundError, UnsupportedCountryError
from ..domain.repositories import CountryRepository, ServiceProviderRepository
from ..models import ServiceProvider


async def ensure_scope_supported(
    provider_repo: ServiceProviderRepository,
    country_repo: CountryRepository,
    *,
    service_provider_id: int,
    country_id: int | None,
) -> ServiceProvider:
    """Check the provider exists and, when a country is given, that it is active and served by the provider."""
    provider = await provider_repo.find_by_id(service_provider_id)
    if provider is None:
        raise ServiceProviderNotFoundError("service provider not found")
    if country_id is None:
        return provider

    country = await country_repo.find_by_id(country_id)
    if country is None:
        raise CountryNotFoundError("country not found")
    if not country.is_active:
        raise UnsupportedCountryError("country is not active")

    supported = await provider_repo.get_supported_countries(service_provider_id)
    if not any(c.id == country_id for c in supported):
        raise UnsupportedCountryError("service provider does not support the specified country")
    return provider
