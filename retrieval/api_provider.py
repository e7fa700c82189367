"""Clinical data API provider for a remote practice-management service."""

import logging
import time
from datetime import date
from typing import Any, Callable, Dict, List, Optional

import requests
from pydantic import BaseModel

from schemas.records import (
    PatientRecord,
    GoalRecord,
    SubgoalRecord,
    BudgetSettingsRecord,
    BudgetItemRecord,
    SessionRecord,
    StrategyUsageRecord,
    RecordFilter,
)
from .clinical_provider import ClinicalDataProvider
from .errors import CollaboratorError, CollaboratorTimeout

logger = logging.getLogger(__name__)


class RetryPolicy(BaseModel):
    """Bounded retry for a single collaborator call."""
    max_attempts: int = 3
    backoff: float = 0.5  # seconds before the second attempt, doubled after

    def delay(self, attempt: int) -> float:
        """Sleep before retry number ``attempt`` (1-based)."""
        return self.backoff * (2 ** (attempt - 1))


class ClinicalAPIProvider(ClinicalDataProvider):
    """
    Clinical data provider backed by a REST API.

    Every call carries a timeout and is retried under ``RetryPolicy`` on
    timeouts, connection errors and 5xx responses. Once attempts are
    exhausted the failure is raised as ``CollaboratorTimeout`` or
    ``CollaboratorError``; 4xx responses are raised without retrying,
    except 404 which reads as "no records".
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        auth_token: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize Clinical API provider.

        Args:
            base_url: Base URL for the clinical API (e.g., https://practice.example.org/api)
            timeout: Request timeout in seconds (default: 10)
            auth_token: Optional bearer token
            retry_policy: Retry policy applied to each call
            sleep: Sleep function used between attempts
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.auth_token = auth_token
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._last_error: Optional[str] = None

    def _get_headers(self) -> dict:
        """Build request headers."""
        headers = {
            "Accept": "application/json",
            "User-Agent": "Clinician-Assistant/1.0"
        }
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    def _handle_error(self, error: Exception, context: str, attempt: int) -> None:
        """
        Record an attempt failure for logging.

        Args:
            error: Exception that occurred
            context: Context string for logging
            attempt: 1-based attempt number
        """
        self._last_error = str(error)
        logger.warning(
            f"Clinical API error during {context} "
            f"(attempt {attempt}/{self.retry_policy.max_attempts}): {error}"
        )

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        payload: Optional[dict] = None
    ) -> Any:
        """
        Perform one API call under the retry policy.

        Args:
            method: HTTP method
            path: Path relative to the base URL
            params: Query string parameters
            payload: JSON body

        Returns:
            Decoded JSON body (an empty list for 404)
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        last_error: Optional[CollaboratorError] = None

        for attempt in range(1, self.retry_policy.max_attempts + 1):
            if attempt > 1:
                self._sleep(self.retry_policy.delay(attempt - 1))

            try:
                response = requests.request(
                    method,
                    url,
                    params=params,
                    json=payload,
                    headers=self._get_headers(),
                    timeout=self.timeout
                )
            except requests.exceptions.Timeout:
                last_error = CollaboratorTimeout(f"Request to {path} timed out after {self.timeout}s")
                self._handle_error(last_error, path, attempt)
                continue
            except requests.exceptions.RequestException as e:
                last_error = CollaboratorError(f"Request to {path} failed: {e}")
                self._handle_error(last_error, path, attempt)
                continue

            if response.status_code == 404:
                return []

            if response.status_code >= 500:
                last_error = CollaboratorError(
                    f"API returned status {response.status_code}: {response.text}",
                    status_code=response.status_code
                )
                self._handle_error(last_error, path, attempt)
                continue

            if response.status_code != 200:
                raise CollaboratorError(
                    f"API returned status {response.status_code}: {response.text}",
                    status_code=response.status_code
                )

            try:
                return response.json()
            except ValueError as e:
                raise CollaboratorError(f"Invalid JSON from {path}: {e}")

        raise last_error

    def _get_list(self, path: str, params: Optional[dict] = None) -> List[dict]:
        """GET a collection; accepts a bare array or a wrapped one."""
        data = self._request("GET", path, params=params)
        if isinstance(data, dict):
            data = data.get("results") or data.get("data") or []
        if not isinstance(data, list):
            raise CollaboratorError(f"Unexpected API response format from {path}: {type(data)}")
        return data

    def _parse(self, model, items: List[dict]) -> list:
        """Validate rows into records, skipping malformed ones."""
        records = []
        for item in items:
            try:
                records.append(model(**item))
            except Exception as e:
                logger.warning(f"Failed to parse {model.__name__}: {e}")
        return records

    def find_patients_by_identifier(self, identifier: str) -> List[PatientRecord]:
        return self._parse(PatientRecord, self._get_list("patients", {"identifier": identifier}))

    def find_patients_by_name(self, name: str) -> List[PatientRecord]:
        return self._parse(PatientRecord, self._get_list("patients", {"name": name}))

    def list_patients(self) -> List[PatientRecord]:
        return self._parse(PatientRecord, self._get_list("patients"))

    def list_goals(self, patient_id: int) -> List[GoalRecord]:
        return self._parse(GoalRecord, self._get_list(f"patients/{patient_id}/goals"))

    def list_subgoals(self, goal_ids: List[int]) -> List[SubgoalRecord]:
        subgoals = []
        for goal_id in goal_ids:
            subgoals.extend(self._parse(SubgoalRecord, self._get_list(f"goals/{goal_id}/subgoals")))
        return subgoals

    def list_budget_settings(self, patient_id: Optional[int] = None) -> List[BudgetSettingsRecord]:
        path = f"patients/{patient_id}/budget-settings" if patient_id is not None else "budget-settings"
        return self._parse(BudgetSettingsRecord, self._get_list(path))

    def list_budget_items(self, budget_settings_id: int) -> List[BudgetItemRecord]:
        return self._parse(BudgetItemRecord, self._get_list(f"budget-settings/{budget_settings_id}/items"))

    def list_sessions(
        self,
        patient_id: Optional[int] = None,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> List[SessionRecord]:
        params: Dict[str, Any] = {}
        if start:
            params["start"] = start.isoformat()
        if end:
            params["end"] = end.isoformat()
        path = f"patients/{patient_id}/sessions" if patient_id is not None else "sessions"
        sessions = self._parse(SessionRecord, self._get_list(path, params))
        sessions.sort(key=lambda s: (s.session_date, s.id), reverse=True)
        return sessions

    def list_strategy_usage(self, patient_id: int) -> List[StrategyUsageRecord]:
        return self._parse(StrategyUsageRecord, self._get_list(f"patients/{patient_id}/strategies"))

    def query_records(
        self,
        entity: str,
        filters: List[RecordFilter],
        limit: int
    ) -> List[Dict[str, Any]]:
        payload = {
            "entity": entity,
            "filters": [f.model_dump(mode="json") for f in filters],
            "limit": limit,
        }
        data = self._request("POST", "records/query", payload=payload)
        if isinstance(data, dict):
            data = data.get("results") or []
        return list(data)[:limit]

    def get_last_error(self) -> Optional[str]:
        """Get the last error message."""
        return self._last_error
