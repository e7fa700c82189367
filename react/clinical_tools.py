"""Clinical data tools used by the agent loop."""

import logging
from collections import Counter, defaultdict
from datetime import timedelta
from typing import Any, Dict, List, Optional

from schemas.context import QueryParameters
from schemas.records import PatientRecord
from schemas.responses import ToolResult
from .tools import PatientScopedTool, Tool, ToolInput, ToolKind

logger = logging.getLogger(__name__)


# Number of items kept in top-N lists
TOP_N = 5

IMPORTANCE_ORDER = {"high": 0, "medium": 1, "low": 2}
GOAL_STATUSES = ("completed", "in_progress", "not_started")
MISSED_SESSION_STATUSES = ("cancelled", "no_show")


def _percent(part: float, whole: float) -> Optional[float]:
    if not whole:
        return None
    return round(part / whole * 100, 1)


class PatientCountTool(Tool):
    """Practice-wide patient counts."""

    name = "patient_count"
    kind = ToolKind.PATIENT_COUNT
    description = """Count the patients in the practice.
Returns the total, patients with goals, with sessions in the last 30 days
and with active budgets. Optional filter: active, inactive or new."""
    parameters = {
        "type": "object",
        "properties": {
            "parameters": {
                "type": "object",
                "description": "category: active | inactive | new"
            }
        }
    }
    requires_patient = False

    RECENT_DAYS = 30
    ACTIVE_DAYS = 60

    def run(self, tool_input: ToolInput) -> ToolResult:
        today = self.clock()
        patients = self.provider.list_patients()
        patient_ids = {p.id for p in patients}

        with_goals = sum(1 for p in patients if self.provider.list_goals(p.id))
        recent = {
            s.patient_id
            for s in self.provider.list_sessions(start=today - timedelta(days=self.RECENT_DAYS), end=today)
        } & patient_ids
        active_budgets = {
            b.patient_id for b in self.provider.list_budget_settings() if b.is_active
        } & patient_ids

        data: Dict[str, Any] = {
            "total_patients": len(patients),
            "with_goals": with_goals,
            "with_recent_sessions": len(recent),
            "with_active_budgets": len(active_budgets),
        }

        count_filter = tool_input.parameters.category
        if count_filter in ("active", "inactive"):
            active = {
                s.patient_id
                for s in self.provider.list_sessions(start=today - timedelta(days=self.ACTIVE_DAYS), end=today)
            } & patient_ids
            if count_filter == "active":
                data["filtered_count"] = len(active)
                data["filter_description"] = f"active (had a session in the last {self.ACTIVE_DAYS} days)"
            else:
                data["filtered_count"] = len(patient_ids - active)
                data["filter_description"] = f"inactive (no sessions in the last {self.ACTIVE_DAYS} days)"
        elif count_filter == "new":
            cutoff = today - timedelta(days=self.RECENT_DAYS)
            data["filtered_count"] = sum(1 for p in patients if p.created_at and p.created_at >= cutoff)
            data["filter_description"] = f"new (added in the last {self.RECENT_DAYS} days)"

        if "filtered_count" in data:
            data["filter"] = count_filter

        return ToolResult.ok(self.name, data)


class PatientLookupTool(PatientScopedTool):
    """Profile of a single patient."""

    name = "patient_lookup"
    kind = ToolKind.PATIENT_LOOKUP
    description = """Look up a patient's profile.
Returns identifiers, onboarding status, and goal, session and plan counts."""

    def summarize(self, patient: PatientRecord, parameters: QueryParameters) -> Dict[str, Any]:
        today = self.clock()
        goals = self.provider.list_goals(patient.id)
        sessions = self.provider.list_sessions(patient.id, end=today)
        plans = self.provider.list_budget_settings(patient.id)
        active_plan = next((p for p in plans if p.is_active), None)

        return {
            "onboarding_status": patient.onboarding_status,
            "goal_count": len(goals),
            "session_count": len(sessions),
            "last_session": sessions[0].session_date if sessions else None,
            "active_plan": {
                "plan_code": active_plan.plan_code,
                "end_of_plan": active_plan.end_of_plan,
            } if active_plan else None,
        }


class GoalTrackingTool(PatientScopedTool):
    """Goals with subgoal progress."""

    name = "goal_tracking"
    kind = ToolKind.GOAL_TRACKING
    description = """Track a patient's therapy goals.
Returns goals with subgoal progress, a status breakdown and the top goals.
Optional filters: sub_topic (e.g. communication) and status."""

    def summarize(self, patient: PatientRecord, parameters: QueryParameters) -> Dict[str, Any]:
        goals = self.provider.list_goals(patient.id)

        if parameters.sub_topic:
            topic = parameters.sub_topic.lower()
            goals = [
                g for g in goals
                if topic in g.title.lower() or topic in (g.description or "").lower()
            ]
        if parameters.status in GOAL_STATUSES:
            goals = [g for g in goals if g.status == parameters.status]

        subgoals_by_goal = defaultdict(list)
        for subgoal in self.provider.list_subgoals([g.id for g in goals]):
            subgoals_by_goal[subgoal.goal_id].append(subgoal)

        shaped = []
        for goal in goals:
            subgoals = subgoals_by_goal.get(goal.id, [])
            completed = sum(1 for s in subgoals if s.status == "completed")
            if subgoals:
                progress = round(completed / len(subgoals) * 100)
            else:
                progress = 100 if goal.status == "completed" else 0
            shaped.append({
                "id": goal.id,
                "title": goal.title,
                "status": goal.status,
                "importance_level": goal.importance_level,
                "subgoals_total": len(subgoals),
                "subgoals_completed": completed,
                "progress_percent": progress,
            })

        shaped.sort(key=lambda g: (IMPORTANCE_ORDER.get(g["importance_level"] or "", 3), g["id"]))
        status_counts = Counter(g.status for g in goals)

        return {
            "total_goals": len(goals),
            "status_breakdown": {status: status_counts.get(status, 0) for status in GOAL_STATUSES},
            "average_progress": round(sum(g["progress_percent"] for g in shaped) / len(shaped)) if shaped else None,
            "goals": shaped[:TOP_N],
            "sub_topic": parameters.sub_topic,
            "status_filter": parameters.status if parameters.status in GOAL_STATUSES else None,
        }


class BudgetTrackingTool(PatientScopedTool):
    """Funding plan utilization."""

    name = "budget_tracking"
    kind = ToolKind.BUDGET_TRACKING
    description = """Track a patient's active funding plan.
Returns total funds, spent, remaining, percent remaining and a per-category
breakdown. Optional: category filter and focus (remaining, spent, categories)."""

    def summarize(self, patient: PatientRecord, parameters: QueryParameters) -> Dict[str, Any]:
        plans = self.provider.list_budget_settings(patient.id)
        active = [p for p in plans if p.is_active]
        if not active:
            return {"has_active_plan": False, "focus": parameters.focus}

        # Latest-ending active plan
        plan = max(active, key=lambda p: (p.end_of_plan is not None, p.end_of_plan or p.id, p.id))
        items = self.provider.list_budget_items(plan.id)
        if parameters.category:
            items = [i for i in items if i.category.lower() == parameters.category.lower()]

        categories: Dict[str, Dict[str, float]] = {}
        for item in items:
            totals = categories.setdefault(item.category, {"allocated": 0.0, "spent": 0.0})
            totals["allocated"] += item.allocated
            totals["spent"] += item.spent
        for totals in categories.values():
            totals["allocated"] = round(totals["allocated"], 2)
            totals["spent"] = round(totals["spent"], 2)
            totals["remaining"] = round(totals["allocated"] - totals["spent"], 2)

        spent = round(sum(i.spent for i in items), 2)
        allocated = round(sum(i.allocated for i in items), 2)
        # Category filters measure against the category allocation, not the plan
        total_funds = allocated if parameters.category else plan.ndis_funds
        remaining = round(total_funds - spent, 2)

        return {
            "has_active_plan": True,
            "plan_code": plan.plan_code,
            "end_of_plan": plan.end_of_plan,
            "total_funds": round(total_funds, 2),
            "allocated": allocated,
            "spent": spent,
            "remaining": remaining,
            "percent_remaining": _percent(remaining, total_funds),
            "categories": dict(sorted(categories.items(), key=lambda kv: -kv[1]["allocated"])),
            "category_filter": parameters.category,
            "focus": parameters.focus,
        }


class BudgetExpirationTool(PatientScopedTool):
    """Active plans ending soon."""

    name = "budget_expiration"
    kind = ToolKind.BUDGET_EXPIRATION
    description = """List active funding plans ending within a window (default 30 days).
The patient reference is optional; without it the whole practice is checked."""
    requires_patient = False

    DEFAULT_WINDOW_DAYS = 30

    def summarize(self, patient: Optional[PatientRecord], parameters: QueryParameters) -> Dict[str, Any]:
        today = self.clock()
        days = parameters.within_days or self.DEFAULT_WINDOW_DAYS
        window_end = today + timedelta(days=days)

        plans = self.provider.list_budget_settings(patient.id if patient else None)
        expiring = sorted(
            (p for p in plans if p.is_active and p.end_of_plan and today <= p.end_of_plan <= window_end),
            key=lambda p: (p.end_of_plan, p.id)
        )

        names = {p.id: p.display_name for p in self.provider.list_patients()} if expiring else {}
        return {
            "within_days": days,
            "window_end": window_end,
            "plans": [
                {
                    "patient_id": p.patient_id,
                    "patient_name": names.get(p.patient_id, f"Patient ID {p.patient_id}"),
                    "plan_code": p.plan_code,
                    "end_of_plan": p.end_of_plan,
                    "days_remaining": (p.end_of_plan - today).days,
                    "ndis_funds": p.ndis_funds,
                }
                for p in expiring
            ],
        }


class StrategyInsightsTool(PatientScopedTool):
    """Strategy usage and effectiveness."""

    name = "strategy_insights"
    kind = ToolKind.STRATEGY_INSIGHTS
    description = """Summarize therapy strategies used with a patient.
Returns usage counts, average effectiveness, the most used and most effective
strategies and per-category counts. Optional: sub_topic and date range."""

    def summarize(self, patient: PatientRecord, parameters: QueryParameters) -> Dict[str, Any]:
        usage = self.provider.list_strategy_usage(patient.id)

        if parameters.date_range:
            usage = [u for u in usage if u.used_on and parameters.date_range.contains(u.used_on)]
        if parameters.sub_topic:
            topic = parameters.sub_topic.lower()
            usage = [
                u for u in usage
                if u.category.lower() == topic or topic in u.strategy_name.lower()
            ]

        by_strategy: Dict[str, List] = defaultdict(list)
        for use in usage:
            by_strategy[use.strategy_name].append(use)

        stats = []
        for strategy, uses in by_strategy.items():
            ratings = [u.effectiveness for u in uses if u.effectiveness is not None]
            stats.append({
                "strategy": strategy,
                "uses": len(uses),
                "average_effectiveness": round(sum(ratings) / len(ratings), 1) if ratings else None,
            })

        top_used = sorted(stats, key=lambda s: (-s["uses"], s["strategy"]))[:TOP_N]
        rated = [s for s in stats if s["average_effectiveness"] is not None]
        most_effective = sorted(rated, key=lambda s: (-s["average_effectiveness"], s["strategy"]))[:TOP_N]
        all_ratings = [u.effectiveness for u in usage if u.effectiveness is not None]

        return {
            "total_uses": len(usage),
            "unique_strategies": len(by_strategy),
            "average_effectiveness": round(sum(all_ratings) / len(all_ratings), 1) if all_ratings else None,
            "top_used": top_used,
            "most_effective": most_effective,
            "categories": dict(sorted(Counter(u.category for u in usage).items())),
            "sub_topic": parameters.sub_topic,
            "period": parameters.date_range.label if parameters.date_range else "all time",
        }


class SessionEngagementTool(PatientScopedTool):
    """Session attendance and engagement."""

    name = "session_engagement"
    kind = ToolKind.SESSION_ENGAGEMENT
    description = """Summarize a patient's sessions in a date range (default: all past sessions).
Returns status counts, attendance rate, total and average duration, the last
session and the five most recent sessions."""

    def summarize(self, patient: PatientRecord, parameters: QueryParameters) -> Dict[str, Any]:
        today = self.clock()
        date_range = parameters.date_range
        start = date_range.start if date_range else None
        end = date_range.end if date_range and date_range.end else today

        sessions = self.provider.list_sessions(patient.id, start=start, end=end)
        upcoming = self.provider.list_sessions(patient.id, start=today + timedelta(days=1))

        status_counts = Counter(s.status for s in sessions)
        completed = [s for s in sessions if s.status == "completed"]
        missed = sum(status_counts.get(status, 0) for status in MISSED_SESSION_STATUSES)
        total_duration = sum(s.duration for s in completed)
        last_session = completed[0].session_date if completed else None

        return {
            "period": date_range.label if date_range else "all time",
            "total_sessions": len(sessions),
            "status_counts": dict(sorted(status_counts.items())),
            "attendance_rate": _percent(len(completed), len(completed) + missed),
            "total_duration": total_duration,
            "average_duration": round(total_duration / len(completed)) if completed else None,
            "last_session": last_session,
            "days_since_last_session": (today - last_session).days if last_session else None,
            "upcoming_sessions": len(upcoming),
            "recent_sessions": [
                {
                    "date": s.session_date,
                    "status": s.status,
                    "duration": s.duration,
                    "location": s.location,
                }
                for s in sessions[:TOP_N]
            ],
        }
