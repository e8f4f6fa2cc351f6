"""Use-case service: one inbound request from admission to synchronous reply."""

from __future__ import annotations

import logging

from brain_dispatch.orchestrator.cancellation import CancellationGate
from brain_dispatch.orchestrator.dispatcher import Dispatcher
from brain_dispatch.orchestrator.governor import AdmissionGovernor
from brain_dispatch.orchestrator.models import (
    CancelReply,
    CancelRequest,
    ClassificationUsage,
    ConversationTurnWrite,
    InboundReply,
    InboundRequest,
    ReplyStatus,
    RouteHints,
    TaskUsage,
)
from brain_dispatch.orchestrator.pricing import estimate_cost_usd
from brain_dispatch.orchestrator.repository import TaskRepository
from brain_dispatch.orchestrator.router import IntentRouter

logger = logging.getLogger(__name__)

CONTEXT_TURN_MAX_CHARS = 300


class OrchestratorService:
    """Governor, router and dispatcher wired in request order.

    Only admission errors (and an empty message) reach the caller; everything
    after dispatch is observable through task status alone.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: TaskRepository,
        governor: AdmissionGovernor,
        router: IntentRouter,
        dispatcher: Dispatcher,
        cancellation: CancellationGate,
        history_turns: int = 6,
    ) -> None:
        self.repository = repository
        self.governor = governor
        self.router = router
        self.dispatcher = dispatcher
        self.cancellation = cancellation
        self.history_turns = history_turns

    def handle_request(self, request: InboundRequest) -> InboundReply:
        message = request.message.strip()
        if not message:
            raise ValueError("Message is required.")

        self.repository.ensure_principal(request.principal_id)
        self.governor.admit(request.principal_id)

        route = self.router.route(
            message,
            RouteHints(
                principal_id=request.principal_id,
                project_id=request.project_id,
                tier_override=request.tier_override,
                context=request.context or self._recent_context(request.principal_id),
                source=request.source,
            ),
        )
        if route.needs_short_circuit:
            self.repository.add_conversation_turns(
                principal_id=request.principal_id,
                turns=[
                    ConversationTurnWrite(role="user", content=message),
                    ConversationTurnWrite(role="assistant", content=route.ack_message),
                ],
                task_ids=[],
            )
            return InboundReply(
                ack_message=route.ack_message,
                root_task_id=None,
                child_task_ids=[],
                primary_intent=route.primary_intent,
                status=route.status or ReplyStatus.NEEDS_CLARIFICATION,
                candidates=list(route.candidates),
            )

        result = self.dispatcher.dispatch(
            principal_id=request.principal_id,
            message=message,
            route=route,
            source=request.source,
        )
        if route.usage is not None:
            self._record_classification_usage(result.root_task_id, route.usage)
        return InboundReply(
            ack_message=result.reply,
            root_task_id=result.root_task_id,
            child_task_ids=list(result.child_task_ids),
            primary_intent=result.primary_intent,
            status=result.status,
        )

    def cancel(self, principal_id: str, request: CancelRequest) -> CancelReply:
        return self.cancellation.handle(principal_id, request)

    def _recent_context(self, principal_id: str) -> str:
        if self.history_turns <= 0:
            return ""
        turns = self.repository.list_conversation_turns(
            principal_id=principal_id,
            limit=self.history_turns,
        )
        return "\n".join(
            f"{turn.role}: {turn.content[:CONTEXT_TURN_MAX_CHARS]}" for turn in turns
        )

    def _record_classification_usage(self, task_id: str, usage: ClassificationUsage) -> None:
        cost = estimate_cost_usd(
            model=usage.model,
            tokens_in=usage.tokens_in,
            tokens_out=usage.tokens_out,
        )
        recorded = self.repository.record_usage(
            task_id=task_id,
            usage=TaskUsage(
                tokens_in=usage.tokens_in,
                tokens_out=usage.tokens_out,
                cost_usd=cost,
            ),
        )
        if not recorded:
            logger.debug("No classification usage recorded for %s", task_id)
