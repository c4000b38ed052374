"""
Workflow Trigger Dispatcher
============================

Matches ticket events and scheduler ticks against the trigger nodes of
executable workflows and runs each match as its own asyncio task.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Set

from slaflow.config import settings, TimerStatus
from slaflow.sla.application import SLATimerService, ISLATimerRepository, ITicketStore, utc_now
from slaflow.sla.domain import TicketSnapshot
from slaflow.workflows.domain import NodeType, Workflow, WorkflowNode, ExecutionContext, config_value
from slaflow.workflows.application.dto import DispatchResult
from slaflow.workflows.application.executor import WorkflowExecutor
from slaflow.workflows.application.services import IWorkflowRepository
from slaflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class TriggerEvent(str):
    """Event names carried in ExecutionContext.event."""
    TICKET_CREATED = "ticket_created"
    TICKET_UPDATED = "ticket_updated"
    TIME_CHECK = "time_check"


def _as_list(value: Any) -> List[Any]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def matches_created_filters(trigger: WorkflowNode, ticket: TicketSnapshot) -> bool:
    """department / priorities / category filters; empty filters match anything."""
    config = trigger.config

    department = config_value(config, "department")
    if department and department != ticket.department_id:
        return False

    priorities = [str(p).lower() for p in _as_list(config_value(config, "priorities"))]
    if priorities and (ticket.priority or "").lower() not in priorities:
        return False

    category = config_value(config, "category")
    if category and category != ticket.category_id:
        return False

    return True


def matches_watch_fields(trigger: WorkflowNode, changes: Mapping[str, Any]) -> bool:
    """At least one changed key is watched; no watch list matches any change."""
    watch_fields = _as_list(config_value(trigger.config, "watch_fields"))
    if not watch_fields:
        return True
    return any(name in changes for name in watch_fields)


class WorkflowTriggerDispatcher:
    """
    Fans ticket events out to workflow executions.

    Executions run as independent tasks bounded by a semaphore; an
    exception in one execution is logged and never reaches the caller or
    the other executions. Errors while selecting workflows (store or ticket
    lookups) are logged and returned as a failed DispatchResult.
    """

    def __init__(
        self,
        workflow_repository: IWorkflowRepository,
        executor: WorkflowExecutor,
        timer_service: SLATimerService,
        timer_repository: ISLATimerRepository,
        ticket_store: ITicketStore,
        max_concurrency: Optional[int] = None
    ):
        self._workflow_repo = workflow_repository
        self._executor = executor
        self._timers = timer_service
        self._timer_repo = timer_repository
        self._tickets = ticket_store
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.workflow_max_concurrency)
        self._tasks: Set["asyncio.Task[Any]"] = set()

    @property
    def pending(self) -> int:
        """Executions scheduled and not yet finished."""
        return len(self._tasks)

    async def on_ticket_created(self, ticket: TicketSnapshot) -> DispatchResult:
        result = DispatchResult(event=TriggerEvent.TICKET_CREATED, conversation_ids=[ticket.id])
        try:
            context = self._ticket_context(ticket, TriggerEvent.TICKET_CREATED)

            for workflow in await self._workflow_repo.list_executable():
                trigger = workflow.trigger_node(NodeType.TICKET_CREATED)
                if trigger is None:
                    continue
                if not matches_created_filters(trigger, ticket):
                    result.skipped_workflow_ids.append(workflow.id)
                    continue
                self._schedule(workflow, context)
                result.scheduled_workflow_ids.append(workflow.id)
        except Exception as e:
            return self._dispatch_failed(result, e)

        logger.info(
            "Ticket created dispatched",
            extra={"conversation_id": ticket.id, "scheduled": result.scheduled}
        )
        return result

    async def on_ticket_updated(
        self,
        ticket: TicketSnapshot,
        changes: Mapping[str, Any]
    ) -> DispatchResult:
        """
        Dispatch a ticket update.

        A status change is applied to the ticket's timers (pause rules,
        stop on resolve/close) before any workflow is scheduled.
        """
        result = DispatchResult(event=TriggerEvent.TICKET_UPDATED, conversation_ids=[ticket.id])
        try:
            if "status" in changes:
                await self._timers.on_status_change(ticket.id, ticket.status)

            context = self._ticket_context(ticket, TriggerEvent.TICKET_UPDATED, changes=dict(changes))

            for workflow in await self._workflow_repo.list_executable():
                trigger = workflow.trigger_node(NodeType.TICKET_UPDATED)
                if trigger is None:
                    continue
                if not matches_watch_fields(trigger, changes):
                    result.skipped_workflow_ids.append(workflow.id)
                    continue
                self._schedule(workflow, context)
                result.scheduled_workflow_ids.append(workflow.id)
        except Exception as e:
            return self._dispatch_failed(result, e)

        logger.info(
            "Ticket updated dispatched",
            extra={
                "conversation_id": ticket.id,
                "changed_fields": sorted(changes),
                "scheduled": result.scheduled,
            }
        )
        return result

    async def on_time_tick(self, now: Optional[datetime] = None) -> DispatchResult:
        """
        Run time_scheduler workflows for every running timer.

        Each timer yields one context with percent_remaining
        (remaining_time / target_time) and time_remaining.
        """
        now = now or utc_now()
        result = DispatchResult(event=TriggerEvent.TIME_CHECK)
        try:
            workflows = [
                w for w in await self._workflow_repo.list_executable()
                if w.trigger_node(NodeType.TIME_SCHEDULER) is not None
            ]
            if not workflows:
                return result

            for timer in await self._timer_repo.list_by_status([TimerStatus.RUNNING]):
                ticket = await self._tickets.get_ticket(timer.conversation_id)
                values: Dict[str, Any] = {
                    "conversation_id": timer.conversation_id,
                    "priority": ticket.priority if ticket else timer.initial_priority,
                    "percent_remaining": timer.remaining_time / timer.target_time,
                    "time_remaining": timer.remaining_time,
                    "timer_id": timer.id,
                    "timer_type": timer.timer_type,
                    "policy_id": timer.policy_id,
                    "checked_at": now.isoformat(),
                }
                if ticket is not None:
                    values.update({
                        "status": ticket.status,
                        "category": ticket.category_id,
                        "department": ticket.department_id,
                        "channel": ticket.channel,
                        "ticket": ticket.to_dict(),
                    })
                result.conversation_ids.append(timer.conversation_id)

                for workflow in workflows:
                    context = ExecutionContext(values, event=TriggerEvent.TIME_CHECK)
                    if workflow.policy_id:
                        context = context.with_updates({"policy_id": workflow.policy_id})
                    self._schedule(workflow, context)
                    result.scheduled_workflow_ids.append(workflow.id)
        except Exception as e:
            return self._dispatch_failed(result, e)

        logger.info(
            "Time trigger dispatched",
            extra={"timers": len(result.conversation_ids), "scheduled": result.scheduled}
        )
        return result

    async def drain(self) -> None:
        """Wait for every scheduled execution to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ========== Internals ==========

    @staticmethod
    def _ticket_context(
        ticket: TicketSnapshot,
        event: str,
        changes: Optional[Dict[str, Any]] = None
    ) -> ExecutionContext:
        return ExecutionContext(
            conversation_id=ticket.id,
            priority=ticket.priority,
            status=ticket.status,
            category=ticket.category_id,
            department=ticket.department_id,
            channel=ticket.channel,
            ticket=ticket.to_dict(),
            changes=changes or {},
            event=event,
        )

    @staticmethod
    def _dispatch_failed(result: DispatchResult, error: Exception) -> DispatchResult:
        result.success = False
        result.error = str(error) or error.__class__.__name__
        logger.error(
            "Workflow dispatch failed",
            extra={
                "event": result.event,
                "conversation_ids": result.conversation_ids,
                "scheduled": result.scheduled,
                "error": result.error,
            },
            exc_info=True
        )
        return result

    def _schedule(self, workflow: Workflow, context: ExecutionContext) -> None:
        if workflow.policy_id and not context.policy_id:
            context = context.with_updates({"policy_id": workflow.policy_id})
        task = asyncio.ensure_future(self._run(workflow, context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, workflow: Workflow, context: ExecutionContext) -> None:
        async with self._semaphore:
            try:
                result = await self._executor.execute(workflow, context)
            except Exception as e:
                logger.error(
                    "Workflow execution crashed",
                    extra={
                        "workflow_id": workflow.id,
                        "conversation_id": context.conversation_id,
                        "error": str(e),
                    },
                    exc_info=True
                )
                return

        if result.executed and not result.success:
            logger.warning(
                "Workflow execution failed",
                extra={
                    "workflow_id": workflow.id,
                    "conversation_id": context.conversation_id,
                    "error": result.error,
                    "failed_nodes": [r.node_id for r in result.failed_nodes()],
                }
            )
