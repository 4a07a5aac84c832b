"""Exception hierarchy for CraftMeter."""


class CraftMeterError(Exception):
    """Base exception for all CraftMeter errors."""


class ConfigError(CraftMeterError):
    """Raised when configuration is invalid."""


class ValidationError(CraftMeterError):
    """Raised when caller-supplied values are malformed."""


class BillingError(CraftMeterError):
    """Base for billing event and plan errors."""


class NotFoundError(BillingError):
    """Raised when a referenced user, subscription or payment does not exist."""


class UnknownMappingError(BillingError):
    """Raised when a product id, billing reason or event cannot be mapped."""


class PlanNotAllowedError(BillingError):
    """Raised when the user's plan does not permit an operation."""
