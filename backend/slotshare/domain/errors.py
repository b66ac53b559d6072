class DomainError(Exception):
    """Base class for business rule violations."""


class ServiceProviderNotFoundError(DomainError):
    pass


class CountryNotFoundError(DomainError):
    pass


class SubscriptionNotFoundError(DomainError):
    pass


class SlotRequestNotFoundError(DomainError):
    pass


class UnsupportedCountryError(DomainError):
    """Country exists but is inactive or not served by the provider."""


class DuplicateRequestError(DomainError):
    pass


class SubscriptionUnavailableError(DomainError):
    """Subscription can no longer accept a slot (inactive, expired, full or drifted)."""


class CapacityExhaustedError(DomainError):
    """Conditional decrement matched no row: available_slots was already 0."""


class DuplicateSlotError(DomainError):
    """Unique (user_id, subscription_id) constraint rejected the slot insert."""


class InvalidStatusTransitionError(DomainError):
    pass
