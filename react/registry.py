"""Tool registry: maps intents to tool kinds to tools."""

import logging
from datetime import date
from typing import Callable, Dict, List, Optional

from retrieval.clinical_provider import ClinicalDataProvider
from retrieval.patient_resolver import PatientResolver
from schemas.context import FALLBACK_INTENTS, Intent
from .clinical_tools import (
    PatientCountTool,
    PatientLookupTool,
    GoalTrackingTool,
    BudgetTrackingTool,
    BudgetExpirationTool,
    StrategyInsightsTool,
    SessionEngagementTool,
)
from .query_builder import QueryBuilderTool
from .tools import Tool, ToolKind

logger = logging.getLogger(__name__)


# Primary tool for each data intent; fallback intents are answered without tools
INTENT_TOOL_KINDS: Dict[Intent, ToolKind] = {
    Intent.PATIENT_COUNT: ToolKind.PATIENT_COUNT,
    Intent.PATIENT_INFO: ToolKind.PATIENT_LOOKUP,
    Intent.PATIENT_GOALS: ToolKind.GOAL_TRACKING,
    Intent.GOAL_PROGRESS: ToolKind.GOAL_TRACKING,
    Intent.BUDGET_INFO: ToolKind.BUDGET_TRACKING,
    Intent.BUDGET_EXPIRATION: ToolKind.BUDGET_EXPIRATION,
    Intent.SESSION_INFO: ToolKind.SESSION_ENGAGEMENT,
    Intent.STRATEGY_INFO: ToolKind.STRATEGY_INSIGHTS,
    Intent.RECORD_QUERY: ToolKind.QUERY_BUILDER,
}

# Secondary tools run after a successful primary call
FOLLOW_UPS: Dict[Intent, List[ToolKind]] = {
    Intent.GOAL_PROGRESS: [ToolKind.STRATEGY_INSIGHTS],
}


class ToolRegistrationError(Exception):
    """Malformed tool registration; fatal for the agent loop."""


class ToolRegistry:
    """Registry of tools keyed by name and kind."""

    def __init__(
        self,
        tools: List[Tool],
        intent_map: Optional[Dict[Intent, ToolKind]] = None,
        follow_ups: Optional[Dict[Intent, List[ToolKind]]] = None
    ):
        """
        Register tools and validate the intent mapping.

        Args:
            tools: Tool instances, one per kind
            intent_map: Intent -> primary tool kind (default: INTENT_TOOL_KINDS)
            follow_ups: Intent -> follow-up tool kinds (default: FOLLOW_UPS)

        Raises:
            ToolRegistrationError: missing name or kind, duplicate name or
                kind, or an intent mapped to an unregistered kind
        """
        self._by_name: Dict[str, Tool] = {}
        self._by_kind: Dict[ToolKind, Tool] = {}
        for tool in tools:
            self.register(tool)

        self.intent_map = dict(INTENT_TOOL_KINDS if intent_map is None else intent_map)
        self.follow_up_map = dict(FOLLOW_UPS if follow_ups is None else follow_ups)
        self._validate_mapping()

    def register(self, tool: Tool) -> None:
        name = getattr(tool, "name", None)
        kind = getattr(tool, "kind", None)
        if not name:
            raise ToolRegistrationError(f"Tool {type(tool).__name__} has no name")
        if not isinstance(kind, ToolKind):
            raise ToolRegistrationError(f"Tool '{name}' has no valid kind")
        if name in self._by_name:
            raise ToolRegistrationError(f"Duplicate tool name '{name}'")
        if kind in self._by_kind:
            raise ToolRegistrationError(
                f"Duplicate tool kind '{kind.value}' ('{self._by_kind[kind].name}' and '{name}')"
            )
        self._by_name[name] = tool
        self._by_kind[kind] = tool

    def _validate_mapping(self) -> None:
        for intent, kind in self.intent_map.items():
            if intent in FALLBACK_INTENTS:
                raise ToolRegistrationError(f"Intent '{intent.value}' is answered without tools")
            if kind not in self._by_kind:
                raise ToolRegistrationError(
                    f"Intent '{intent.value}' maps to unregistered tool kind '{kind.value}'"
                )
        for intent, kinds in self.follow_up_map.items():
            for kind in kinds:
                if kind not in self._by_kind:
                    raise ToolRegistrationError(
                        f"Follow-up for '{intent.value}' maps to unregistered tool kind '{kind.value}'"
                    )

    def primary_tool(self, intent: Intent) -> Optional[Tool]:
        """Primary tool for an intent, or None for fallback intents."""
        kind = self.intent_map.get(intent)
        return self._by_kind[kind] if kind else None

    def follow_ups(self, intent: Intent) -> List[Tool]:
        return [self._by_kind[kind] for kind in self.follow_up_map.get(intent, [])]

    def get(self, name: str) -> Tool:
        """Get a tool by name (KeyError if unknown)."""
        return self._by_name[name]

    def by_kind(self, kind: ToolKind) -> Tool:
        return self._by_kind[kind]

    @property
    def names(self) -> List[str]:
        return list(self._by_name.keys())

    def get_definitions(self) -> List[Dict]:
        """OpenAI-compatible definitions for every tool."""
        return [tool.get_definition() for tool in self._by_name.values()]


def create_default_registry(
    provider: ClinicalDataProvider,
    clock: Callable[[], date] = date.today
) -> ToolRegistry:
    """
    Build the registry of clinical tools over one data provider.

    Args:
        provider: Clinical data collaborator
        clock: Returns today's date

    Returns:
        ToolRegistry with all eight tools
    """
    resolver = PatientResolver(provider)
    tools: List[Tool] = [PatientCountTool(provider, clock=clock)]
    for tool_class in (
        PatientLookupTool,
        GoalTrackingTool,
        BudgetTrackingTool,
        BudgetExpirationTool,
        StrategyInsightsTool,
        SessionEngagementTool,
        QueryBuilderTool,
    ):
        tools.append(tool_class(provider, clock=clock, resolver=resolver))

    registry = ToolRegistry(tools)
    logger.info(f"Registered tools: {', '.join(registry.names)}")
    return registry
