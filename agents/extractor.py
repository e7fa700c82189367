"""Intent & entity extractor for clinician questions."""

import logging
import re
from datetime import date, timedelta
from typing import Iterable, List, Optional, Tuple

from schemas.context import (
    DateRange,
    ExtractedEntities,
    Intent,
    PatientReference,
    QueryParameters,
    ReferenceSource,
)
from .rules import ANAPHORA_PATTERNS, INTENT_RULES, RECALL_TRIGGERS, IntentRule

logger = logging.getLogger(__name__)


# Specificity ranks for overlapping patient reference candidates
IDENTIFIER_RANK = 3
COMBINED_RANK = 2
NAME_RANK = 1

EXPLICIT_IDENTIFIER_PATTERNS = [
    re.compile(r"#\s*(\d+)\b"),
    re.compile(r"\b(?:id|identifier)\b\s*(?:[:#]|no\.?|number)?\s*(\d+)\b", re.IGNORECASE),
    re.compile(r"\b(?:patient|client)\s+(\d{1,6})\b", re.IGNORECASE),
]
BARE_IDENTIFIER_PATTERN = re.compile(r"(?<![\w-])(\d{6})(?![\w-])")
COMBINED_PATTERN = re.compile(r"\b([A-Za-z]+(?:-[A-Za-z]+)*)-(\d+)\b")
GREEDY_PREFIX_PATTERN = re.compile(r"((?:[A-Z][a-z]+\s+){1,2})$")

_NAME_WORDS = r"[A-Z][a-z]+(?:['-][A-Z][a-z]+)?(?:\s+[A-Z][a-z]+(?:['-][A-Z][a-z]+)?){0,2}"
NAME_TRIGGER_PATTERN = re.compile(
    r"\b(?i:for|named|about|called|patient|client|with|has|did|does|of)\s+(" + _NAME_WORDS + r")"
)
POSSESSIVE_PATTERN = re.compile(r"\b(" + _NAME_WORDS + r")'s\b")

# Capitalized words that are never part of a patient name
NON_NAME_WORDS = {
    "What", "Which", "Who", "How", "When", "Why", "Where", "Show", "List", "Find",
    "Give", "Tell", "Get", "Is", "Are", "Does", "Did", "Do", "Can", "Could",
    "Please", "The", "A", "An", "Patient", "Patients", "Client", "Clients", "Id",
    "Ndis", "Me", "My", "Our", "All", "Any", "Last", "This", "Next",
    "January", "February", "March", "April", "May", "June", "July", "August",
    "September", "October", "November", "December",
    "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
}

GOAL_AREAS = [
    "communication", "mobility", "social", "motor", "speech", "language",
    "behaviour", "behavior", "sensory", "feeding", "self-care", "literacy",
    "emotional", "cognitive",
]

BUDGET_CATEGORIES = {
    "therapy": "Therapy",
    "support coordination": "Support Coordination",
    "assistive technology": "Assistive Technology",
    "consumables": "Consumables",
    "capacity building": "Capacity Building",
    "core supports": "Core Supports",
}

RECORD_ENTITIES = {
    "patients": "patients",
    "clients": "patients",
    "goals": "goals",
    "subgoals": "subgoals",
    "sessions": "sessions",
    "budget items": "budget_items",
    "strategies": "strategy_usage",
    "strategy usage": "strategy_usage",
}

ISO_DATE = r"(\d{4}-\d{2}-\d{2})"


class IntentExtractor:
    """Classifies clinician questions and extracts patient references."""

    def __init__(
        self,
        rules: Optional[List[IntentRule]] = None,
        combined_name_mode: str = "token",
        today: Optional[date] = None
    ):
        """
        Initialize extractor.

        Args:
            rules: Rule table (defaults to INTENT_RULES)
            combined_name_mode: "token" keeps only the hyphen-attached name,
                "greedy" also takes up to two capitalized words before it
            today: Anchor date for relative date ranges (default: date.today())
        """
        if combined_name_mode not in ("token", "greedy"):
            raise ValueError(f"Unsupported combined name mode: {combined_name_mode}")

        table = rules if rules is not None else INTENT_RULES
        # Stable sort: equal priorities keep declaration order
        ordered = sorted(enumerate(table), key=lambda pair: (-pair[1].priority, pair[0]))
        self.rules = [
            (rule, re.compile(rule.pattern, re.IGNORECASE)) for _, rule in ordered
        ]
        self.combined_name_mode = combined_name_mode
        self._today = today
        self._recall_patterns = [re.compile(p, re.IGNORECASE) for p in RECALL_TRIGGERS]
        self._anaphora_patterns = [re.compile(p, re.IGNORECASE) for p in ANAPHORA_PATTERNS]

    @property
    def today(self) -> date:
        return self._today or date.today()

    def extract(self, query: str, recent_context: Optional[Iterable] = None) -> ExtractedEntities:
        """
        Extract intent, patient reference and parameters from a query.

        Never raises: unmatched or unparseable input yields UNKNOWN.

        Args:
            query: Clinician question
            recent_context: Recent conversation messages (objects with
                ``role`` and ``content``), newest last

        Returns:
            ExtractedEntities
        """
        try:
            return self._extract(query, list(recent_context or []))
        except Exception as e:
            logger.error(f"Entity extraction failed for {query!r}: {e}")
            return ExtractedEntities.unknown()

    def _extract(self, query: str, recent_context: list) -> ExtractedEntities:
        if not query or not query.strip():
            return ExtractedEntities.unknown()

        intent, pattern = self.classify(query)
        reference = self.extract_patient_reference(query)
        source = ReferenceSource.QUERY if reference else None

        if intent == Intent.UNKNOWN:
            if reference is None:
                return ExtractedEntities.unknown(references_history=self.is_backward_reference(query))
            # A bare patient reference is a lookup
            intent = Intent.PATIENT_INFO

        if reference is None and self._has_anaphora(query):
            reference = self._reference_from_context(recent_context)
            if reference:
                source = ReferenceSource.CONTEXT

        return ExtractedEntities(
            intent=intent,
            patient_reference=reference,
            reference_source=source,
            parameters=self.extract_parameters(query, intent),
            references_history=self.is_backward_reference(query),
            matched_pattern=pattern,
        )

    def classify(self, query: str) -> Tuple[Intent, Optional[str]]:
        """Return the intent of the first matching rule and its pattern."""
        for rule, compiled in self.rules:
            if compiled.search(query):
                return rule.intent, rule.pattern
        return Intent.UNKNOWN, None

    def is_backward_reference(self, query: str) -> bool:
        """Check whether the query refers back to earlier conversation."""
        return any(p.search(query) for p in self._recall_patterns)

    def extract_patient_reference(self, query: str) -> Optional[PatientReference]:
        """
        Find the most specific patient reference in a query.

        Candidates rank identifier > combined > name; on equal rank the
        earliest occurrence wins.
        """
        candidates = []  # (rank, start, reference)

        for pattern in EXPLICIT_IDENTIFIER_PATTERNS:
            for match in pattern.finditer(query):
                candidates.append((IDENTIFIER_RANK, match.start(), PatientReference.by_identifier(match.group(1))))

        for match in BARE_IDENTIFIER_PATTERN.finditer(query):
            candidates.append((IDENTIFIER_RANK, match.start(), PatientReference.by_identifier(match.group(1))))

        for match in COMBINED_PATTERN.finditer(query):
            name = match.group(1)
            if self.combined_name_mode == "greedy":
                prefix = GREEDY_PREFIX_PATTERN.search(query[:match.start()])
                if prefix:
                    # Only the contiguous run of name words directly before the token
                    leading = []
                    for word in reversed(prefix.group(1).split()):
                        if word in NON_NAME_WORDS:
                            break
                        leading.insert(0, word)
                    if leading:
                        name = " ".join(leading + [name])
            candidates.append((COMBINED_RANK, match.start(), PatientReference.combined(name, match.group(2))))

        for pattern in (NAME_TRIGGER_PATTERN, POSSESSIVE_PATTERN):
            for match in pattern.finditer(query):
                name = self._clean_name(match.group(1))
                if name:
                    candidates.append((NAME_RANK, match.start(1), PatientReference.by_name(name)))

        if not candidates:
            return None

        rank, start, reference = max(candidates, key=lambda c: (c[0], -c[1]))
        return reference

    def _clean_name(self, raw: str) -> Optional[str]:
        """Strip capitalized non-name words from both ends of a capture."""
        words = raw.split()
        while words and words[0] in NON_NAME_WORDS:
            words.pop(0)
        while words and words[-1] in NON_NAME_WORDS:
            words.pop()
        return " ".join(words) if words else None

    def _has_anaphora(self, query: str) -> bool:
        return any(p.search(query) for p in self._anaphora_patterns)

    def _reference_from_context(self, recent_context: list) -> Optional[PatientReference]:
        """Reuse the newest patient reference from recent user messages."""
        for message in reversed(recent_context):
            if getattr(message, "role", None) != "user":
                continue
            reference = self.extract_patient_reference(getattr(message, "content", "") or "")
            if reference:
                return reference
        return None

    def extract_parameters(self, query: str, intent: Intent) -> QueryParameters:
        """Extract date range, topic, category, status and focus."""
        query_lower = query.lower()
        params = QueryParameters()

        params.date_range = self._extract_date_range(query_lower)
        params.within_days = self._extract_window_days(query_lower)

        for area in GOAL_AREAS:
            if re.search(rf"\b{re.escape(area)}\b", query_lower):
                params.sub_topic = area
                break

        if intent == Intent.PATIENT_COUNT:
            count_filter = re.search(r"\b(inactive|active|new)\b", query_lower)
            if count_filter:
                params.category = count_filter.group(1)
        else:
            for keyword, category in BUDGET_CATEGORIES.items():
                if keyword in query_lower:
                    params.category = category
                    break

        params.status = self._extract_status(query_lower)

        if re.search(r"\b(remaining|left|available|balance)\b", query_lower):
            params.focus = "remaining"
        elif re.search(r"\b(spent|used|spending|expenditures?)\b", query_lower):
            params.focus = "spent"
        elif re.search(r"\b(categor\w*|breakdown)\b", query_lower):
            params.focus = "categories"

        if intent == Intent.RECORD_QUERY:
            for word, entity in RECORD_ENTITIES.items():
                if re.search(rf"\ball\s+(the\s+)?{word}\b", query_lower):
                    params.record_entity = entity
                    break

        return params

    def _extract_status(self, query_lower: str) -> Optional[str]:
        if re.search(r"\bnot started\b", query_lower):
            return "not_started"
        if re.search(r"\b(in progress|in-progress|ongoing)\b", query_lower):
            return "in_progress"
        if re.search(r"\b(completed|complete|achieved|done)\b", query_lower):
            return "completed"
        if re.search(r"\b(cancelled|canceled)\b", query_lower):
            return "cancelled"
        if re.search(r"\bno[- ]shows?\b", query_lower):
            return "no_show"
        if re.search(r"\b(scheduled|upcoming)\b", query_lower):
            return "scheduled"
        return None

    def _extract_date_range(self, query_lower: str) -> Optional[DateRange]:
        """Resolve relative date expressions against today."""
        today = self.today

        between = re.search(rf"\bbetween\s+{ISO_DATE}\s+and\s+{ISO_DATE}", query_lower)
        if between:
            try:
                start, end = date.fromisoformat(between.group(1)), date.fromisoformat(between.group(2))
            except ValueError as e:
                logger.warning(f"Ignoring invalid date range in {query_lower!r}: {e}")
                return None
            return DateRange(start=start, end=end, label=f"{start.isoformat()} to {end.isoformat()}")

        since = re.search(rf"\bsince\s+{ISO_DATE}", query_lower)
        if since:
            try:
                start = date.fromisoformat(since.group(1))
            except ValueError as e:
                logger.warning(f"Ignoring invalid date in {query_lower!r}: {e}")
                return None
            return DateRange(start=start, end=today, label=f"since {start.isoformat()}")

        numbered = re.search(r"\b(?:last|past)\s+(\d+)\s+(days?|weeks?|months?)\b", query_lower)
        if numbered:
            count = int(numbered.group(1))
            unit = numbered.group(2)
            days = count * (1 if unit.startswith("day") else 7 if unit.startswith("week") else 30)
            return DateRange(start=today - timedelta(days=days), end=today, label=f"the last {count} {unit}")

        relative = [
            (r"\b(last|past) week\b", 7, "the last week"),
            (r"\b(last|past) month\b", 30, "the last month"),
            (r"\b(last|past) (quarter|three months)\b", 90, "the last 3 months"),
            (r"\b(last|past) (six months|half year)\b", 182, "the last 6 months"),
            (r"\b(last|past) year\b", 365, "the last year"),
            (r"\brecent(ly)?\b", 90, "the last 3 months"),
        ]
        for pattern, days, label in relative:
            if re.search(pattern, query_lower):
                return DateRange(start=today - timedelta(days=days), end=today, label=label)

        if re.search(r"\bthis month\b", query_lower):
            return DateRange(start=today.replace(day=1), end=today, label="this month")
        if re.search(r"\bthis year\b", query_lower):
            return DateRange(start=today.replace(month=1, day=1), end=today, label="this year")

        return None

    def _extract_window_days(self, query_lower: str) -> Optional[int]:
        """Forward-looking window, e.g. for plans ending soon."""
        numbered = re.search(r"\bnext\s+(\d+)\s+(days?|weeks?|months?)\b", query_lower)
        if numbered:
            count = int(numbered.group(1))
            unit = numbered.group(2)
            return count * (1 if unit.startswith("day") else 7 if unit.startswith("week") else 30)
        if re.search(r"\bnext week\b", query_lower):
            return 7
        if re.search(r"\bnext month\b", query_lower):
            return 30
        if re.search(r"\bnext (quarter|three months)\b", query_lower):
            return 90
        if re.search(r"\bnext year\b", query_lower):
            return 365
        return None
