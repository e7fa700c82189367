"""Intent rule table.

Rules are evaluated by ``IntentExtractor`` in descending priority; the first
pattern that matches wins and equal priorities keep declaration order. The
table holds no behavior: adding an intent phrase means adding a row here.
"""

from typing import List, Tuple
from pydantic import BaseModel

from schemas.context import Intent


class IntentRule(BaseModel):
    """A single (pattern, intent, priority) entry."""
    pattern: str
    intent: Intent
    priority: int


INTENT_RULES: List[IntentRule] = [
    # Greetings and small talk
    IntentRule(pattern=r"^\s*(hello|hi|hey|good (morning|afternoon|evening)|how are you)\b", intent=Intent.CONVERSATIONAL, priority=100),
    IntentRule(pattern=r"^\s*(thanks|thank you|cheers|goodbye|bye)\b", intent=Intent.CONVERSATIONAL, priority=100),

    # Practice-wide counts
    IntentRule(pattern=r"\bhow many (patients|clients)\b", intent=Intent.PATIENT_COUNT, priority=90),
    IntentRule(pattern=r"\b(number|count|total) of (patients|clients)\b", intent=Intent.PATIENT_COUNT, priority=90),
    IntentRule(pattern=r"\b(patient|client) (count|numbers)\b", intent=Intent.PATIENT_COUNT, priority=90),

    # Plans running out
    IntentRule(pattern=r"\b(budgets?|plans?|funding)\b.*\b(expir\w*|ending|end soon|run(ning)? out)\b", intent=Intent.BUDGET_EXPIRATION, priority=80),
    IntentRule(pattern=r"\b(expir\w*|ending)\b.*\b(budgets?|plans?|funding)\b", intent=Intent.BUDGET_EXPIRATION, priority=80),

    # Structured record listings
    IntentRule(pattern=r"^\s*(list|show|find|query)\s+(me\s+)?all\s+(the\s+)?(patients|clients|goals|subgoals|sessions|budget items|strategies|strategy usage)\b", intent=Intent.RECORD_QUERY, priority=70),

    # Progress on goals
    IntentRule(pattern=r"\bprogress\b", intent=Intent.GOAL_PROGRESS, priority=60),
    IntentRule(pattern=r"\b(improv(ed|ing|ement)|achiev(ed|ing|ement)|milestones?)\b", intent=Intent.GOAL_PROGRESS, priority=60),

    # Strategy usage
    IntentRule(pattern=r"\bstrateg(y|ies)\b", intent=Intent.STRATEGY_INFO, priority=55),
    IntentRule(pattern=r"\b(techniques?|interventions?)\b", intent=Intent.STRATEGY_INFO, priority=55),

    # Budgets and sessions share a tier; budget rows are declared first
    IntentRule(pattern=r"\b(budgets?|funds?|funding|spent|spending|remaining balance|ndis|allocation)\b", intent=Intent.BUDGET_INFO, priority=50),
    IntentRule(pattern=r"\bsessions?\b", intent=Intent.SESSION_INFO, priority=50),
    IntentRule(pattern=r"\b(appointments?|visits?|attendance|engagement|attended)\b", intent=Intent.SESSION_INFO, priority=50),

    # Goals
    IntentRule(pattern=r"\b(sub)?goals?\b", intent=Intent.PATIENT_GOALS, priority=45),

    # Patient lookups
    IntentRule(pattern=r"\b(find|look ?up|search( for)?|who is)\b.*\b(patient|client)\b", intent=Intent.PATIENT_INFO, priority=30),
    IntentRule(pattern=r"\b(details|information|info|profile)\s+(for|about|on|of)\b", intent=Intent.PATIENT_INFO, priority=30),
    IntentRule(pattern=r"\b(find|look ?up)\b", intent=Intent.PATIENT_INFO, priority=25),

    # Anything phrased as a question with no data intent
    IntentRule(pattern=r"^\s*(what|how|why|when|can|could|should|is|are|does|do|explain)\b", intent=Intent.GENERAL_QUESTION, priority=10),
]


# Phrases that mark a query as referring back to earlier conversation
RECALL_TRIGGERS: Tuple[str, ...] = (
    r"\bearlier\b",
    r"\bpreviously\b",
    r"\bbefore\b.*\b(said|asked|mentioned|discussed)\b",
    r"\blast time\b",
    r"\bwe (discussed|talked about|covered|looked at)\b",
    r"\byou (said|told me|mentioned)\b",
    r"\bi (asked|mentioned)\b",
    r"\bremind me\b",
    r"\bgo back to\b",
    r"\bwhat did (we|you|i)\b",
)


# Phrases that point at a patient mentioned in recent turns
ANAPHORA_PATTERNS: Tuple[str, ...] = (
    r"\b(he|she|they|him|them)\b",
    r"\b(his|her|their|hers|theirs)\b",
    r"\b(this|that|the same) (patient|client)\b",
)


# Queries every rule above must classify correctly
INTENT_EXAMPLES: List[Tuple[str, Intent]] = [
    ("Hello there", Intent.CONVERSATIONAL),
    ("thanks, that helps", Intent.CONVERSATIONAL),
    ("How many patients do we have?", Intent.PATIENT_COUNT),
    ("What is the total number of clients this year?", Intent.PATIENT_COUNT),
    ("Which budgets are expiring next month?", Intent.BUDGET_EXPIRATION),
    ("Any plans ending soon for Radwan-563004?", Intent.BUDGET_EXPIRATION),
    ("List all sessions for patient #123456", Intent.RECORD_QUERY),
    ("show all goals with status completed", Intent.RECORD_QUERY),
    ("What progress has Radwan made?", Intent.GOAL_PROGRESS),
    ("Which milestones did patient 563004 reach?", Intent.GOAL_PROGRESS),
    ("What strategies work best for Radwan-563004?", Intent.STRATEGY_INFO),
    ("Which interventions were used with patient #123456?", Intent.STRATEGY_INFO),
    ("How much budget is remaining for patient 563004?", Intent.BUDGET_INFO),
    ("How much was spent on therapy sessions for Radwan-563004?", Intent.BUDGET_INFO),
    ("How many sessions did patient ID 5 attend last month?", Intent.SESSION_INFO),
    ("Show appointments for John Smith", Intent.SESSION_INFO),
    ("What are the goals for patient ID 5", Intent.PATIENT_GOALS),
    ("List subgoals for Radwan-563004", Intent.PATIENT_GOALS),
    ("Find patient John Smith", Intent.PATIENT_INFO),
    ("Give me details about Radwan-563004", Intent.PATIENT_INFO),
    ("What is sensory processing disorder?", Intent.GENERAL_QUESTION),
    ("banana", Intent.UNKNOWN),
]
