"""Bounded THINK / ACT / OBSERVE loop over the tool registry."""

import logging
from typing import List, Optional
from pydantic import BaseModel, Field

from agents.composer import ResponseComposer
from llm.base_client import Message
from memory.models import RecallItem
from schemas.context import ExtractedEntities, PatientReference, ReferenceKind
from schemas.responses import (
    AgentResult,
    ComposerOutput,
    FinishReason,
    LoopOutcome,
    ToolErrorKind,
    ToolInvocation,
    ToolResult,
)
from .registry import ToolRegistry
from .tools import ToolInput

logger = logging.getLogger(__name__)


ABORTED_ANSWER = "Sorry, something went wrong while answering that. Please try again."


def reference_fallbacks(reference: Optional[PatientReference]) -> List[PatientReference]:
    """
    Corrected references to try, in order, after a reference matched nobody.

    A combined reference falls back to its identifier and then its name; a
    multi-word name falls back to the first name.
    """
    if reference is None:
        return []

    fallbacks = []
    if reference.kind == ReferenceKind.COMBINED:
        fallbacks.append(PatientReference.by_identifier(reference.identifier))
        fallbacks.append(PatientReference.by_name(reference.name))

    words = (reference.name or "").split()
    if len(words) > 1:
        fallbacks.append(PatientReference.by_name(words[0]))
    return fallbacks


class AgentSession(BaseModel):
    """Per-run loop state."""
    query: str
    entities: ExtractedEntities
    iteration: int = 0
    retries: int = 0
    current_tool: Optional[str] = None
    current_input: Optional[ToolInput] = None
    pending_tools: List[str] = Field(default_factory=list)
    fallback_references: List[PatientReference] = Field(default_factory=list)
    scratchpad: List[ToolInvocation] = Field(default_factory=list)
    observations: List[ToolResult] = Field(default_factory=list)


class AgentLoop:
    """
    Runs tools chosen from the extracted intent until it can answer.

    Each ACT step counts toward ``max_iterations``; retries after transient
    failures and corrected patient references share ``retry_budget``.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        composer: Optional[ResponseComposer] = None,
        max_iterations: int = 5,
        retry_budget: int = 2
    ):
        """
        Initialize agent loop.

        Args:
            registry: Tool registry
            composer: Response composer
            max_iterations: Maximum ACT steps per run
            retry_budget: Maximum retries per run
        """
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")

        self.registry = registry
        self.composer = composer or ResponseComposer()
        self.max_iterations = max_iterations
        self.retry_budget = retry_budget

    def run(
        self,
        query: str,
        entities: ExtractedEntities,
        context_messages: Optional[List[Message]] = None,
        recall_items: Optional[List[RecallItem]] = None
    ) -> AgentResult:
        """
        Run the loop until it finishes or the iteration cap is reached.

        Args:
            query: Clinician query
            entities: Extracted intent, patient reference and parameters
            context_messages: Conversation context for free-form answers
            recall_items: Earlier conversation items relevant to the query

        Returns:
            AgentResult with a non-empty answer and the invocation trace
        """
        session = AgentSession(query=query, entities=entities)
        try:
            return self._run(session, context_messages or [], recall_items)
        except Exception as e:
            logger.error(f"Agent loop aborted after {session.iteration} iteration(s): {e}", exc_info=True)
            return AgentResult(
                outcome=LoopOutcome.ABORTED,
                finish_reason=FinishReason.ERROR,
                answer=ABORTED_ANSWER,
                iterations_used=session.iteration,
                invocations=session.scratchpad
            )

    def _run(
        self,
        session: AgentSession,
        context_messages: List[Message],
        recall_items: Optional[List[RecallItem]]
    ) -> AgentResult:
        entities = session.entities
        intent = entities.intent
        wants_recall = entities.references_history and recall_items is not None

        # Questions about the conversation itself are answered from memory
        if wants_recall and recall_items:
            return self._finish(session, FinishReason.RECALL, self.composer.recall(recall_items))

        primary = self.registry.primary_tool(intent)
        if primary is None:
            answer = self.composer.fallback(session.query, intent, context_messages)
            return self._finish(session, FinishReason.FALLBACK, answer)

        if primary.requires_patient and entities.patient_reference is None:
            if wants_recall:
                return self._finish(session, FinishReason.RECALL, self.composer.recall(recall_items))
            return self._finish(session, FinishReason.MISSING_PATIENT, self.composer.missing_patient(intent))

        session.current_tool = primary.name
        session.current_input = ToolInput(
            patient_reference=entities.patient_reference,
            parameters=entities.parameters
        )
        session.pending_tools = [tool.name for tool in self.registry.follow_ups(intent)]
        session.fallback_references = reference_fallbacks(entities.patient_reference)

        while session.iteration < self.max_iterations:
            result = self._act(session)
            finished = self._think(session, result)
            if finished is not None:
                return finished

        logger.warning(f"Iteration cap of {self.max_iterations} reached for: {session.query}")
        output = self.composer.best_effort(session.observations)
        return AgentResult(
            outcome=LoopOutcome.MAX_ITERATIONS_EXCEEDED,
            finish_reason=FinishReason.BEST_EFFORT,
            answer=output.response_text,
            iterations_used=session.iteration,
            invocations=session.scratchpad
        )

    def _act(self, session: AgentSession) -> ToolResult:
        """Execute the current tool and record the observation."""
        session.iteration += 1
        tool = self.registry.get(session.current_tool)
        logger.info(f"Iteration {session.iteration}/{self.max_iterations}: {tool.name}")

        result = tool.execute(session.current_input)
        session.scratchpad.append(ToolInvocation(
            iteration=session.iteration,
            tool_name=tool.name,
            input=session.current_input.model_dump(mode="json", exclude_none=True),
            result=result
        ))
        return result

    def _think(self, session: AgentSession, result: ToolResult) -> Optional[AgentResult]:
        """
        Decide the next step from the latest observation.

        Returns:
            AgentResult when the loop should finish, None to act again
        """
        if result.success:
            session.observations.append(result)
            if session.pending_tools:
                session.current_tool = session.pending_tools.pop(0)
                return None
            return self._answer(session)

        error = result.error
        logger.info(f"{result.tool_name} reported {error.kind.value}: {error.message}")

        if error.kind == ToolErrorKind.AMBIGUOUS:
            answer = self.composer.clarification(error.candidates, session.current_input.patient_reference)
            return self._finish(session, FinishReason.CLARIFICATION, answer)

        if error.kind == ToolErrorKind.NOT_FOUND:
            if session.fallback_references and session.retries < self.retry_budget:
                session.retries += 1
                corrected = session.fallback_references.pop(0)
                logger.info(f"Retrying {session.current_tool} with {corrected.describe()}")
                session.current_input = session.current_input.model_copy(
                    update={"patient_reference": corrected}
                )
                return None
            if session.observations:
                return self._answer(session)
            return self._finish(session, FinishReason.NOT_FOUND, self.composer.not_found(error.message))

        if error.kind.is_transient:
            if session.retries < self.retry_budget:
                session.retries += 1
                logger.info(f"Retrying {session.current_tool} ({session.retries}/{self.retry_budget})")
                return None
            if session.observations:
                return self._answer(session)
            return self._finish(session, FinishReason.SERVICE_UNAVAILABLE, self.composer.service_unavailable())

        if session.observations:
            return self._answer(session)
        return self._finish(session, FinishReason.VALIDATION, self.composer.validation(error.message))

    def _answer(self, session: AgentSession) -> AgentResult:
        output: ComposerOutput = self.composer.compose(session.observations)
        return self._finish(session, FinishReason.ANSWERED, output.response_text)

    def _finish(self, session: AgentSession, reason: FinishReason, answer: str) -> AgentResult:
        logger.info(f"Finished with {reason.value} after {session.iteration} iteration(s)")
        return AgentResult(
            outcome=LoopOutcome.FINISHED,
            finish_reason=reason,
            answer=answer or ABORTED_ANSWER,
            iterations_used=session.iteration,
            invocations=session.scratchpad
        )
