"""Response composer: renders tool results and loop outcomes as clinician-facing text."""

import logging
import re
from typing import Any, Callable, Dict, List, Optional

from llm.base_client import Message
from memory.models import RecallItem
from schemas.context import Intent, PatientReference
from schemas.records import PatientRecord
from schemas.responses import ComposerOutput, ToolResult
from .llm_composer import LLMResponder

logger = logging.getLogger(__name__)


def _money(value: Optional[float]) -> str:
    return f"${value:,.2f}" if value is not None else "unknown"


def _label(status: str) -> str:
    return status.replace("_", " ")


def _patient_label(data: Dict[str, Any]) -> str:
    patient = data.get("patient") or {}
    name = patient.get("name") or "the patient"
    if patient.get("unique_identifier"):
        return f"{name}-{patient['unique_identifier']}"
    return name


class ResponseComposer:
    """Composes final clinician-facing responses."""

    SERVICE_UNAVAILABLE = (
        "Sorry, the clinical data service is unavailable right now. "
        "Please try again in a few minutes."
    )
    BEST_EFFORT_QUALIFIER = (
        "Note: this is a best-effort answer. I could not complete every lookup for this question."
    )

    MISSING_PATIENT_TOPICS = {
        Intent.PATIENT_INFO: "look up",
        Intent.PATIENT_GOALS: "see goals for",
        Intent.GOAL_PROGRESS: "check progress for",
        Intent.BUDGET_INFO: "check the budget for",
        Intent.SESSION_INFO: "review sessions for",
        Intent.STRATEGY_INFO: "review strategies for",
    }

    GREETING_REPLY = (
        "Hello! I can help with your patients' goals, budgets, sessions and therapy strategies. "
        "What would you like to know?"
    )
    THANKS_REPLY = "You're welcome! Let me know if there's anything else you need about your patients."
    GENERAL_REPLY = (
        "I can answer questions about patients, goals, budgets, sessions and strategies. "
        "Try asking, for example, \"What are the goals for Radwan-563004?\" or "
        "\"How many patients do we have?\""
    )

    def __init__(self, responder: Optional[LLMResponder] = None):
        """
        Initialize composer.

        Args:
            responder: Optional LLM responder for free-form answers
        """
        self.responder = responder
        self._renderers: Dict[str, Callable[[Dict[str, Any]], str]] = {
            "patient_count": self._render_patient_count,
            "patient_lookup": self._render_patient_lookup,
            "goal_tracking": self._render_goals,
            "budget_tracking": self._render_budget,
            "budget_expiration": self._render_expiration,
            "strategy_insights": self._render_strategies,
            "session_engagement": self._render_sessions,
            "query_builder": self._render_records,
        }

    def compose(self, results: List[ToolResult], qualifiers: Optional[List[str]] = None) -> ComposerOutput:
        """
        Compose an answer from successful tool results.

        Args:
            results: Tool results in invocation order
            qualifiers: Notes appended after the answer

        Returns:
            ComposerOutput with response text and sources
        """
        parts = [self.render_result(r) for r in results if r.success]
        if not parts:
            parts = ["I couldn't find any data to answer that question."]

        qualifiers = list(qualifiers or [])
        text = "\n\n".join(parts)
        if qualifiers:
            text += "\n\n" + "\n".join(qualifiers)

        return ComposerOutput(
            response_text=text,
            sources=[r.tool_name for r in results if r.success],
            qualifiers=qualifiers
        )

    def render_result(self, result: ToolResult) -> str:
        """Render one tool result, success or failure."""
        if not result.success:
            return self.tool_error(result)
        renderer = self._renderers.get(result.tool_name)
        if renderer is None:
            logger.warning(f"No renderer for tool {result.tool_name}")
            return str(result.data)
        return renderer(result.data or {})

    def tool_error(self, result: ToolResult) -> str:
        """Describe a tool error the way the loop would report it."""
        error = result.error
        if error.candidates:
            return self.clarification(error.candidates)
        return f"{result.tool_name} failed ({error.kind.value}): {error.message}"

    # Loop outcomes

    def clarification(self, candidates: List[PatientRecord], reference: Optional[PatientReference] = None) -> str:
        """Ask which of several matching patients was meant, listing every candidate."""
        subject = f"matching {reference.describe()}" if reference else "matching that reference"
        lines = [f"I found {len(candidates)} patients {subject}. Which one did you mean?"]
        for patient in candidates:
            details = [f"ID {patient.id}"]
            if patient.unique_identifier:
                details.append(f"identifier {patient.unique_identifier}")
            if patient.date_of_birth:
                details.append(f"born {patient.date_of_birth.isoformat()}")
            lines.append(f"- {patient.name} ({', '.join(details)})")
        return "\n".join(lines)

    def missing_patient(self, intent: Intent) -> str:
        action = self.MISSING_PATIENT_TOPICS.get(intent, "answer that for")
        return (
            f"Which patient would you like me to {action}? "
            "Please give their name or identifier, for example \"Radwan-563004\"."
        )

    def not_found(self, message: str) -> str:
        if not message:
            return "Sorry, I couldn't find that patient. Please check the name or identifier."
        detail = message[0].lower() + message[1:]
        return f"Sorry, I couldn't find that patient: {detail}. Please check the name or identifier."

    def validation(self, message: str) -> str:
        return f"Sorry, I can't run that query: {message}."

    def service_unavailable(self) -> str:
        return self.SERVICE_UNAVAILABLE

    def best_effort(self, results: List[ToolResult]) -> ComposerOutput:
        """Answer from whatever was gathered before the iteration cap."""
        if any(r.success for r in results):
            return self.compose(results, qualifiers=[self.BEST_EFFORT_QUALIFIER])
        return ComposerOutput(
            response_text=(
                "I wasn't able to gather the data for this question in time. "
                + self.BEST_EFFORT_QUALIFIER
            ),
            qualifiers=[self.BEST_EFFORT_QUALIFIER]
        )

    def recall(self, items: List[RecallItem]) -> str:
        """Answer a backward-referencing query from conversation memory."""
        if not items:
            return "I couldn't find anything earlier in this conversation about that."

        lines = ["Here's what we covered earlier:"]
        for item in items:
            if item.source == "summary":
                lines.append(f"- Messages {item.start_index}-{item.position}: {item.content}")
            elif item.role == "user":
                lines.append(f"- You asked: {item.content}")
            else:
                lines.append(f"- I answered: {item.content}")
        return "\n".join(lines)

    def fallback(
        self,
        query: str,
        intent: Intent,
        context_messages: Optional[List[Message]] = None
    ) -> str:
        """
        Free-form answer for conversational, general and unclassified queries.

        Uses the LLM responder when configured; otherwise, or when the call
        fails, returns a canned reply.
        """
        if self.responder:
            answer = self.responder.answer(query, context_messages)
            if answer:
                return answer
            logger.warning("LLM fallback unavailable, using canned reply")

        if intent == Intent.CONVERSATIONAL:
            if re.search(r"\b(thanks|thank you|cheers|bye|goodbye)\b", query, re.IGNORECASE):
                return self.THANKS_REPLY
            return self.GREETING_REPLY
        return self.GENERAL_REPLY

    # Tool renderers

    def _render_patient_count(self, data: Dict[str, Any]) -> str:
        total = data["total_patients"]
        lines = []
        if "filtered_count" in data:
            lines.append(
                f"{data['filtered_count']} of the {total} patients are {data['filter_description']}."
            )
        else:
            lines.append(f"There are {total} patients in the practice.")

        def share(count: int) -> str:
            return f"{count} ({round(count / total * 100)}%)" if total else str(count)

        lines.append(f"- Patients with goals: {share(data['with_goals'])}")
        lines.append(f"- Patients with sessions in the last 30 days: {share(data['with_recent_sessions'])}")
        lines.append(f"- Patients with active budgets: {share(data['with_active_budgets'])}")
        return "\n".join(lines)

    def _render_patient_lookup(self, data: Dict[str, Any]) -> str:
        patient = data.get("patient", {})
        lines = [f"**{_patient_label(data)}** (ID {patient.get('id')})"]
        if patient.get("date_of_birth"):
            lines.append(f"- Date of birth: {patient['date_of_birth']}")
        if data.get("onboarding_status"):
            lines.append(f"- Onboarding: {_label(data['onboarding_status'])}")
        lines.append(f"- Goals: {data['goal_count']}")
        lines.append(f"- Sessions: {data['session_count']}")
        if data.get("last_session"):
            lines.append(f"- Last session: {data['last_session']}")
        plan = data.get("active_plan")
        if plan:
            lines.append(f"- Active plan: {plan['plan_code']} (ends {plan['end_of_plan']})")
        else:
            lines.append("- No active funding plan")
        return "\n".join(lines)

    def _render_goals(self, data: Dict[str, Any]) -> str:
        label = _patient_label(data)
        qualifier = ""
        if data.get("sub_topic"):
            qualifier += f" related to {data['sub_topic']}"
        if data.get("status_filter"):
            qualifier += f" with status {_label(data['status_filter'])}"

        if not data["total_goals"]:
            return f"No goals{qualifier} found for {label}."

        breakdown = ", ".join(
            f"{count} {_label(status)}" for status, count in data["status_breakdown"].items() if count
        )
        lines = [f"{label} has {data['total_goals']} goal(s){qualifier} ({breakdown}):"]
        for goal in data["goals"]:
            line = f"- {goal['title']}: {_label(goal['status'])}, {goal['progress_percent']}% progress"
            if goal["subgoals_total"]:
                line += f" ({goal['subgoals_completed']}/{goal['subgoals_total']} subgoals completed)"
            lines.append(line)
        if data["total_goals"] > len(data["goals"]):
            lines.append(f"...and {data['total_goals'] - len(data['goals'])} more.")
        if data.get("average_progress") is not None:
            lines.append(f"Average progress across goals: {data['average_progress']}%.")
        return "\n".join(lines)

    def _render_budget(self, data: Dict[str, Any]) -> str:
        label = _patient_label(data)
        if not data.get("has_active_plan"):
            return f"{label} has no active funding plan."

        scope = f" on {data['category_filter']}" if data.get("category_filter") else ""
        percent = f" ({data['percent_remaining']}%)" if data.get("percent_remaining") is not None else ""
        remaining = f"{_money(data['remaining'])} remaining{percent}"
        spent = f"{_money(data['spent'])} spent{scope} of {_money(data['total_funds'])}"
        headline = f"{spent}, {remaining}" if data.get("focus") != "remaining" else f"{remaining} ({spent})"

        lines = [f"{label}'s plan {data['plan_code']} (ends {data['end_of_plan']}): {headline}."]
        if data.get("focus") in (None, "categories") and data.get("categories"):
            lines.append("By category:")
            for category, totals in data["categories"].items():
                lines.append(
                    f"- {category}: {_money(totals['spent'])} spent of {_money(totals['allocated'])} allocated"
                )
        return "\n".join(lines)

    def _render_expiration(self, data: Dict[str, Any]) -> str:
        days = data["within_days"]
        plans = data["plans"]
        scope = f" for {_patient_label(data)}" if data.get("patient") else ""
        if not plans:
            return f"No active plans{scope} end in the next {days} days."

        lines = [f"{len(plans)} active plan(s){scope} end in the next {days} days:"]
        for plan in plans:
            lines.append(
                f"- {plan['patient_name']}: {plan['plan_code']} ends {plan['end_of_plan']} "
                f"(in {plan['days_remaining']} days), funds {_money(plan['ndis_funds'])}"
            )
        return "\n".join(lines)

    def _render_strategies(self, data: Dict[str, Any]) -> str:
        label = _patient_label(data)
        topic = f" for {data['sub_topic']}" if data.get("sub_topic") else ""
        if not data["total_uses"]:
            return f"No strategy usage{topic} recorded for {label} ({data['period']})."

        headline = (
            f"Strategies used with {label}{topic} ({data['period']}): "
            f"{data['total_uses']} uses of {data['unique_strategies']} strategies"
        )
        if data.get("average_effectiveness") is not None:
            headline += f", average effectiveness {data['average_effectiveness']}/10"
        lines = [headline + "."]
        lines.append("Most used: " + ", ".join(f"{s['strategy']} ({s['uses']})" for s in data["top_used"]))
        if data["most_effective"]:
            lines.append("Most effective: " + ", ".join(
                f"{s['strategy']} ({s['average_effectiveness']}/10)" for s in data["most_effective"]
            ))
        return "\n".join(lines)

    def _render_sessions(self, data: Dict[str, Any]) -> str:
        label = _patient_label(data)
        if not data["total_sessions"]:
            return f"{label} had no sessions ({data['period']})."

        statuses = ", ".join(f"{count} {_label(status)}" for status, count in data["status_counts"].items())
        lines = [f"{label} had {data['total_sessions']} session(s) ({data['period']}): {statuses}."]
        if data.get("attendance_rate") is not None:
            lines.append(f"- Attendance rate: {data['attendance_rate']}%")
        if data.get("average_duration") is not None:
            lines.append(
                f"- Time in completed sessions: {data['total_duration']} minutes "
                f"(average {data['average_duration']})"
            )
        if data.get("last_session"):
            lines.append(
                f"- Last session: {data['last_session']} ({data['days_since_last_session']} days ago)"
            )
        if data.get("upcoming_sessions"):
            lines.append(f"- Upcoming sessions: {data['upcoming_sessions']}")
        lines.append("Recent sessions:")
        for session in data["recent_sessions"]:
            lines.append(f"- {session['date']}: {_label(session['status'])}, {session['duration']} min")
        return "\n".join(lines)

    def _render_records(self, data: Dict[str, Any]) -> str:
        entity = data["entity"].replace("_", " ")
        if not data["count"]:
            return f"No {entity} records matched."

        lines = [f"Found {data['count']} {entity} record(s):"]
        for row in data["rows"]:
            shown = [f"{key}: {value}" for key, value in row.items() if value is not None][:6]
            lines.append("- " + ", ".join(shown))
        if data.get("truncated"):
            lines.append(f"Showing the first {data['limit']} records.")
        return "\n".join(lines)
