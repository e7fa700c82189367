"""Resolve extracted patient references to canonical patient records."""

import logging
from typing import List

from rapidfuzz import fuzz, utils

from schemas.context import PatientReference, ReferenceKind
from schemas.records import PatientRecord
from schemas.responses import PatientResolution, ResolutionStatus
from .clinical_provider import ClinicalDataProvider
from .memory_provider import FUZZY_NAME_CUTOFF

logger = logging.getLogger(__name__)


class PatientResolver:
    """
    Turns a patient reference into zero, one or many canonical records.

    Ambiguity is reported with every candidate; the resolver never picks
    one of several matches. Collaborator errors propagate to the caller.
    """

    def __init__(self, provider: ClinicalDataProvider):
        self.provider = provider

    def resolve(self, reference: PatientReference) -> PatientResolution:
        """
        Resolve a reference.

        Args:
            reference: Identifier, name or combined reference

        Returns:
            PatientResolution with status RESOLVED, NOT_FOUND or AMBIGUOUS
        """
        if reference.kind == ReferenceKind.IDENTIFIER:
            candidates = self.provider.find_patients_by_identifier(reference.identifier)
        elif reference.kind == ReferenceKind.NAME:
            candidates = self.provider.find_patients_by_name(reference.name)
        else:
            candidates = [
                patient for patient in self.provider.find_patients_by_identifier(reference.identifier)
                if self._name_matches(reference.name, patient)
            ]

        candidates = self._dedupe(candidates)
        logger.info(f"Resolved {reference.describe()} to {len(candidates)} candidate(s)")

        if not candidates:
            return PatientResolution(status=ResolutionStatus.NOT_FOUND)
        if len(candidates) == 1:
            return PatientResolution(status=ResolutionStatus.RESOLVED, patient=candidates[0])
        return PatientResolution(status=ResolutionStatus.AMBIGUOUS, candidates=candidates)

    def _name_matches(self, name: str, patient: PatientRecord) -> bool:
        """Check the name half of a combined reference against a record."""
        tokens = name.lower().split()
        patient_tokens = patient.name.lower().split()
        if all(token in patient_tokens for token in tokens):
            return True
        score = fuzz.WRatio(name, patient.name, processor=utils.default_process)
        return score >= FUZZY_NAME_CUTOFF

    def _dedupe(self, patients: List[PatientRecord]) -> List[PatientRecord]:
        seen = set()
        unique = []
        for patient in patients:
            if patient.id not in seen:
                seen.add(patient.id)
                unique.append(patient)
        return unique
