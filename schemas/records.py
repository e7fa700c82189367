"""Clinical records returned by the external data collaborators."""

from datetime import date
from typing import Any, List, Optional
from pydantic import BaseModel, Field


class PatientRecord(BaseModel):
    """Canonical patient record."""
    id: int
    name: str
    unique_identifier: Optional[str] = None
    date_of_birth: Optional[date] = None
    onboarding_status: Optional[str] = None
    created_at: Optional[date] = None

    @property
    def display_name(self) -> str:
        """Name as clinicians write it, e.g. Radwan-563004."""
        if self.unique_identifier:
            return f"{self.name}-{self.unique_identifier}"
        return self.name

    def brief(self) -> dict:
        """Compact form used for candidate lists."""
        return {
            "id": self.id,
            "name": self.name,
            "unique_identifier": self.unique_identifier,
            "date_of_birth": self.date_of_birth.isoformat() if self.date_of_birth else None,
        }


class GoalRecord(BaseModel):
    """Therapy goal for a patient."""
    id: int
    patient_id: int
    title: str
    description: Optional[str] = None
    status: str = "not_started"  # not_started | in_progress | completed
    importance_level: Optional[str] = None


class SubgoalRecord(BaseModel):
    """Milestone under a goal."""
    id: int
    goal_id: int
    title: str
    status: str = "not_started"


class BudgetSettingsRecord(BaseModel):
    """A funding plan attached to a patient."""
    id: int
    patient_id: int
    plan_code: Optional[str] = None
    is_active: bool = True
    ndis_funds: float = 0.0
    end_of_plan: Optional[date] = None
    plan_type: Optional[str] = None  # ndis | private


class BudgetItemRecord(BaseModel):
    """A catalog line item allocated under a funding plan."""
    id: int
    patient_id: int
    budget_settings_id: int
    item_code: Optional[str] = None
    description: Optional[str] = None
    category: str = "Uncategorized"
    unit_price: float = 0.0
    quantity: int = 0
    used_quantity: int = 0

    @property
    def allocated(self) -> float:
        return self.unit_price * self.quantity

    @property
    def spent(self) -> float:
        return self.unit_price * self.used_quantity


class SessionRecord(BaseModel):
    """A therapy session."""
    id: int
    patient_id: int
    session_date: date
    duration: int = 0  # minutes
    status: str = "completed"  # completed | scheduled | cancelled | no_show
    location: Optional[str] = None
    notes: Optional[str] = None


class StrategyUsageRecord(BaseModel):
    """One use of a therapy strategy within a session."""
    id: int
    patient_id: int
    strategy_name: str
    category: str = "General"
    goal_id: Optional[int] = None
    session_id: Optional[int] = None
    used_on: Optional[date] = None
    effectiveness: Optional[int] = Field(None, ge=1, le=10)


class RecordFilter(BaseModel):
    """One allow-listed condition of a structured record query."""
    field: str
    operator: str = "="
    value: Any = None


class RecordQuery(BaseModel):
    """Structured description of a record listing."""
    entity: str
    filters: List[RecordFilter] = Field(default_factory=list)
    limit: int = 20
