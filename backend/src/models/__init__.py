# Package initialization
# Import all models so they are registered on Base.metadata
from .patient import Patient
from .resource import Resource
from .appointment import Appointment
from .provider_availability import ProviderAvailabilityTemplate, ProviderWeekAvailability

__all__ = [
    "Patient",
    "Resource",
    "Appointment",
    "ProviderAvailabilityTemplate",
    "ProviderWeekAvailability",
]
