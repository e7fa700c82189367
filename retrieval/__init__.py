"""Retrieval layer for clinical practice data."""

from .errors import CollaboratorError, CollaboratorTimeout
from .clinical_provider import ClinicalDataProvider
from .memory_provider import InMemoryClinicalProvider
from .api_provider import ClinicalAPIProvider, RetryPolicy
from .patient_resolver import PatientResolver

__all__ = [
    "CollaboratorError",
    "CollaboratorTimeout",
    "ClinicalDataProvider",
    "InMemoryClinicalProvider",
    "ClinicalAPIProvider",
    "RetryPolicy",
    "PatientResolver",
]
