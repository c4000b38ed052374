"""
Workflow Graph Executor
========================

Walks a workflow graph from its trigger node.

Traversal rules:
- a node result with success=False or stop=True halts that path
- a condition node follows only the edge whose source_handle matches
  its outcome ("true"/"false"); no matching edge ends the path
- every other node follows all outgoing edges in declaration order, each
  branch with the context produced by that node; a failing branch does
  not prevent its siblings from running
- an exception inside a node fails that node only
- notifications go out as tasks; traversal does not wait for them and
  execute() collects them before returning (a failed send is logged)

Node kinds are the closed NodeType enum; every kind has an entry in
NODE_HANDLERS, checked when this module is imported.
"""

import asyncio
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple
from uuid import uuid4

from slaflow.config import Priority, NotificationType, EscalationType
from slaflow.core import ApplicationException, WorkflowGraphException
from slaflow.sla.application import (
    SLATimerService, SLAMonitorService, PolicyResolver, SLANotifier,
    ISLAEscalationRepository, ITicketStore, INotificationSink, TimerStartResult, utc_now
)
from slaflow.sla.application.services import Clock
from slaflow.sla.domain import SLAEscalation, Notification, SLACalculator
from slaflow.workflows.domain import (
    NodeType, Workflow, WorkflowNode, ExecutionContext, NodeResult, ExecutionResult,
    ConditionEvaluator, render_template, convert_to_minutes, config_value
)
from slaflow.shared.infrastructure.logging import get_logger, get_context_logger

logger = get_logger(__name__)

# Notification tasks started by the execution running in this context
_pending_deliveries: ContextVar[Optional[List["asyncio.Task[bool]"]]] = ContextVar(
    "workflow_pending_deliveries", default=None
)


@dataclass
class _PathOutcome:
    success: bool = True
    stopped: bool = False
    message: Optional[str] = None
    error: Optional[str] = None


@dataclass
class _Run:
    workflow: Workflow
    log: Any
    trace: List[str] = field(default_factory=list)
    node_results: List[NodeResult] = field(default_factory=list)


NodeHandler = Callable[
    ["WorkflowExecutor", WorkflowNode, ExecutionContext, Workflow],
    Awaitable[NodeResult]
]


class WorkflowExecutor:
    """
    Interprets workflow graphs.

    Timer actions go through the SLA timer service and monitor, so they
    share the per-ticket lock with the periodic sweep.
    """

    def __init__(
        self,
        timer_service: SLATimerService,
        monitor_service: SLAMonitorService,
        policy_resolver: PolicyResolver,
        escalation_repository: ISLAEscalationRepository,
        ticket_store: ITicketStore,
        notification_sink: INotificationSink,
        clock: Optional[Clock] = None
    ):
        self._timers = timer_service
        self._monitor = monitor_service
        self._resolver = policy_resolver
        self._escalations = escalation_repository
        self._tickets = ticket_store
        self._sink = notification_sink
        self._notifier = SLANotifier(ticket_store, notification_sink)
        self._clock = clock or utc_now
        self._in_flight: Set["asyncio.Task[bool]"] = set()

    async def execute(self, workflow: Workflow, context: ExecutionContext) -> ExecutionResult:
        """
        Execute a workflow for one context.

        Returns:
            ExecutionResult; executed=False when the workflow is not
            executable or has no trigger node
        """
        if not workflow.is_executable:
            logger.info("Workflow not active", extra={"workflow_id": workflow.id})
            return ExecutionResult(
                workflow_id=workflow.id,
                success=False,
                executed=False,
                message="Workflow not active"
            )

        trigger = workflow.trigger_node()
        if trigger is None:
            error = WorkflowGraphException(workflow.id, "No trigger node")
            logger.warning(error.message, extra={"workflow_id": workflow.id})
            return ExecutionResult(
                workflow_id=workflow.id,
                success=False,
                executed=False,
                message=error.message,
                error=error.message
            )

        correlation_id = uuid4().hex
        run = _Run(workflow=workflow, log=get_context_logger(__name__, correlation_id))
        run.log.info(
            "Workflow execution started",
            extra={
                "workflow_id": workflow.id,
                "conversation_id": context.conversation_id,
                "event": context.event,
            }
        )

        deliveries = _pending_deliveries.set([])
        try:
            outcome = await self._visit(trigger, context, run, ancestors=())
            delivered = await self._settle_deliveries(run)
        finally:
            _pending_deliveries.reset(deliveries)

        run.log.info(
            "Workflow execution finished",
            extra={
                "workflow_id": workflow.id,
                "success": outcome.success,
                "visited": len(run.trace),
                "notifications": delivered,
            }
        )
        return ExecutionResult(
            workflow_id=workflow.id,
            success=outcome.success,
            executed=True,
            message=outcome.message,
            error=outcome.error,
            trace=run.trace,
            node_results=run.node_results,
            correlation_id=correlation_id
        )

    # ========== Traversal ==========

    async def _visit(
        self,
        node: WorkflowNode,
        context: ExecutionContext,
        run: _Run,
        ancestors: Tuple[str, ...]
    ) -> _PathOutcome:
        run.trace.append(node.id)
        result = await self._run_node(node, context, run)
        run.node_results.append(result)

        if result.halts:
            return _PathOutcome(
                success=result.success,
                stopped=result.stop,
                message=result.message,
                error=result.error
            )

        next_context = context.with_updates(result.updates)
        edges = run.workflow.outgoing(node.id)
        if not edges:
            return _PathOutcome(message="Workflow completed")

        path = ancestors + (node.id,)

        if node.node_type == NodeType.CONDITION_IF:
            handle = "true" if result.condition else "false"
            edge = next((e for e in edges if e.source_handle == handle), None)
            target = run.workflow.find_node(edge.target) if edge else None
            if target is None:
                return _PathOutcome(message="No matching path found")
            return await self._follow(target, next_context, run, path)

        outcomes = []
        for edge in edges:
            target = run.workflow.find_node(edge.target)
            if target is not None:
                outcomes.append(await self._follow(target, next_context, run, path))

        failures = [o for o in outcomes if not o.success]
        if failures:
            return _PathOutcome(success=False, message=failures[0].message, error=failures[0].error)
        return _PathOutcome(message="Workflow completed")

    async def _follow(
        self,
        target: WorkflowNode,
        context: ExecutionContext,
        run: _Run,
        path: Tuple[str, ...]
    ) -> _PathOutcome:
        if target.id in path:
            error = f"Cycle detected at node '{target.id}'"
            run.trace.append(target.id)
            run.node_results.append(
                NodeResult(node_id=target.id, node_type=target.type, success=False, error=error)
            )
            run.log.warning(error, extra={"workflow_id": run.workflow.id, "node_id": target.id})
            return _PathOutcome(success=False, error=error)
        return await self._visit(target, context, run, path)

    async def _run_node(self, node: WorkflowNode, context: ExecutionContext, run: _Run) -> NodeResult:
        node_type = node.node_type
        if node_type is None:
            error = f"Unknown node type '{node.type}'"
            run.log.warning(error, extra={"workflow_id": run.workflow.id, "node_id": node.id})
            return NodeResult(node_id=node.id, node_type=node.type, success=False, error=error)

        handler = NODE_HANDLERS[node_type]
        try:
            result = await handler(self, node, context, run.workflow)
        except ApplicationException as e:
            run.log.error(
                "Workflow node failed",
                extra={"workflow_id": run.workflow.id, "node_id": node.id, "error": e.message}
            )
            return NodeResult(node_id=node.id, node_type=node.type, success=False, error=e.message)
        except Exception as e:
            run.log.error(
                "Workflow node raised",
                extra={"workflow_id": run.workflow.id, "node_id": node.id, "error": str(e)},
                exc_info=True
            )
            return NodeResult(node_id=node.id, node_type=node.type, success=False, error=str(e))

        run.log.debug(
            "Workflow node executed",
            extra={
                "workflow_id": run.workflow.id,
                "node_id": node.id,
                "node_type": node.type,
                "success": result.success,
            }
        )
        return result

    # ========== Helpers ==========

    @staticmethod
    def _ok(node: WorkflowNode, **kwargs: Any) -> NodeResult:
        return NodeResult(node_id=node.id, node_type=node.type, **kwargs)

    @staticmethod
    def _fail(node: WorkflowNode, error: str, **kwargs: Any) -> NodeResult:
        return NodeResult(node_id=node.id, node_type=node.type, success=False, error=error, **kwargs)

    @staticmethod
    def _priority(context: ExecutionContext) -> str:
        return str(context.lookup("priority") or Priority.MEDIUM).lower()

    def _deliver(self, notification: Notification) -> None:
        """Hand a notification to the sink; traversal does not wait for delivery."""
        task = asyncio.ensure_future(self._send(notification))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        pending = _pending_deliveries.get()
        if pending is not None:
            pending.append(task)

    async def _send(self, notification: Notification) -> bool:
        try:
            return bool(await self._sink.send(notification))
        except Exception as e:
            logger.warning(
                "Workflow notification not delivered",
                extra={
                    "recipient": notification.recipient,
                    "type": notification.type,
                    "conversation_id": notification.metadata.get("conversation_id"),
                    "error": str(e),
                }
            )
            return False

    @staticmethod
    async def _settle_deliveries(run: _Run) -> int:
        """Wait for this run's notifications once traversal is done."""
        pending = _pending_deliveries.get() or []
        if not pending:
            return 0
        results = await asyncio.gather(*pending)
        delivered = sum(1 for ok in results if ok)
        if delivered < len(results):
            run.log.warning(
                "Some workflow notifications failed",
                extra={"workflow_id": run.workflow.id, "failed": len(results) - delivered}
            )
        return delivered

    async def _recipients(self, node: WorkflowNode, conversation_id: str) -> List[str]:
        recipient = config_value(node.config, "recipient")
        if recipient:
            return recipient if isinstance(recipient, list) else [recipient]
        return await self._notifier.recipients_for(conversation_id)

    # ========== Node handlers ==========

    async def _pass_through(self, node, context, workflow) -> NodeResult:
        return self._ok(node)

    async def _start_sla_timer(self, node, context, workflow) -> NodeResult:
        conversation_id = context.conversation_id
        if not conversation_id:
            return self._fail(node, "No conversation ID in context")

        config = node.config
        priority = self._priority(context)
        restart = bool(config_value(config, "restart", False))

        if config_value(config, "sla_policy") == "custom":
            result = await self._timers.start_timers_with_durations(
                conversation_id, priority,
                convert_to_minutes(
                    config_value(config, "response_duration"),
                    config_value(config, "response_duration_unit")
                ),
                convert_to_minutes(
                    config_value(config, "resolution_duration"),
                    config_value(config, "resolution_duration_unit")
                ),
                policy_id=workflow.policy_id or context.policy_id,
                restart=restart
            )
        else:
            policy_id = config_value(config, "sla_policy_id") or workflow.policy_id or context.policy_id
            if policy_id:
                policy = await self._resolver.get_policy(policy_id)
                if policy is None:
                    result = TimerStartResult(
                        started=False,
                        conversation_id=conversation_id,
                        policy_id=policy_id,
                        reason=f"SLA policy '{policy_id}' not found"
                    )
                else:
                    result = await self._timers.start_timers_from_policy(
                        conversation_id, priority, policy, restart=restart
                    )
            else:
                result = await self._timers.start_timers(
                    conversation_id, priority,
                    department_id=context.lookup("department"),
                    category_id=context.lookup("category"),
                    restart=restart
                )

        if not result.started:
            return self._fail(node, result.reason or "SLA timers not started", data=result.to_dict())

        return self._ok(
            node,
            message="SLA timers started",
            data=result.to_dict(),
            updates={"policy_id": result.policy_id} if result.policy_id else {}
        )

    async def _pause_sla(self, node, context, workflow) -> NodeResult:
        conversation_id = context.conversation_id
        if not conversation_id:
            return self._fail(node, "No conversation ID in context")
        reason = config_value(node.config, "reason") or "Manual pause"
        paused = await self._timers.pause_timers(conversation_id, reason)
        return self._ok(node, data={"paused": paused})

    async def _resume_sla(self, node, context, workflow) -> NodeResult:
        conversation_id = context.conversation_id
        if not conversation_id:
            return self._fail(node, "No conversation ID in context")
        resumed = await self._timers.resume_timers(conversation_id)
        return self._ok(node, data={"resumed": resumed})

    async def _check_sla_time(self, node, context, workflow) -> NodeResult:
        conversation_id = context.conversation_id
        if not conversation_id:
            return self._fail(node, "No conversation ID in context")

        metrics = await self._timers.get_metrics(conversation_id, now=self._clock())
        if not metrics:
            return self._fail(node, "No SLA timers found")

        serialized = [m.model_dump() for m in metrics]
        updates: Dict[str, Any] = {"sla_metrics": serialized}
        active = [m for m in metrics if m.status in ("running", "paused")]
        if active:
            updates["time_remaining"] = active[0].remaining
        return self._ok(node, updates=updates, data={"metrics": serialized})

    async def _sla_warning(self, node, context, workflow) -> NodeResult:
        conversation_id = context.conversation_id
        if not conversation_id:
            return self._fail(node, "No conversation ID in context")

        threshold = float(config_value(node.config, "threshold", 80) or 80)
        alert_priority = config_value(node.config, "alert_priority") or Priority.MEDIUM
        now = self._clock()

        warned = 0
        for timer in await self._timers.get_active_timers(conversation_id):
            if not timer.is_running:
                continue
            elapsed, percentage = SLACalculator.evaluate(timer, now)
            if percentage < threshold:
                continue
            remaining = timer.target_time - elapsed
            percent_remaining = max(0, round(100 - percentage))
            for recipient in await self._recipients(node, conversation_id):
                self._deliver(Notification(
                    recipient=recipient,
                    subject=f"SLA Warning: ticket {conversation_id}",
                    body=(
                        f"SLA {timer.timer_type} is at {percent_remaining}% - "
                        f"{remaining} minutes remaining"
                    ),
                    priority=alert_priority,
                    type=NotificationType.SLA_WARNING,
                    link=f"/admin/tickets/{conversation_id}",
                    metadata={"conversation_id": conversation_id, "timer_id": timer.id},
                ))
            warned += 1

        return self._ok(node, data={"warnings": warned})

    async def _sla_breach(self, node, context, workflow) -> NodeResult:
        conversation_id = context.conversation_id
        if not conversation_id:
            return self._fail(node, "No conversation ID in context")

        breaches = await self._monitor.breach_overdue_timers(conversation_id, now=self._clock())
        actions = config_value(node.config, "breach_actions") or []
        updates: Dict[str, Any] = {}

        if breaches and "change_priority" in actions:
            await self._tickets.update_fields(conversation_id, {"priority": Priority.URGENT})
            updates["priority"] = Priority.URGENT

        if breaches and "send_email" in actions:
            for recipient in await self._recipients(node, conversation_id):
                self._deliver(Notification(
                    recipient=recipient,
                    subject=f"SLA BREACHED: ticket {conversation_id}",
                    body=f"SLA BREACHED for ticket {conversation_id}",
                    priority=Priority.URGENT,
                    type=NotificationType.EMAIL,
                    link=f"/admin/tickets/{conversation_id}",
                    metadata={"conversation_id": conversation_id},
                ))

        return self._ok(node, updates=updates, data={"breaches": len(breaches)})

    async def _condition_if(self, node, context, workflow) -> NodeResult:
        condition = ConditionEvaluator.evaluate_in_context(node.config, context)
        logger.debug(
            "Condition evaluated",
            extra={
                "node_id": node.id,
                "field": node.config.get("field"),
                "operator": node.config.get("operator"),
                "condition": condition,
            }
        )
        return self._ok(node, condition=condition)

    async def _send_notification(self, node, context, workflow) -> NodeResult:
        conversation_id = context.conversation_id
        if not conversation_id:
            return self._fail(node, "No conversation ID in context")

        subject = render_template(config_value(node.config, "subject"), context)
        body = render_template(config_value(node.config, "message_template"), context)
        recipients = await self._recipients(node, conversation_id)
        for recipient in recipients:
            self._deliver(Notification(
                recipient=recipient,
                subject=subject,
                body=body,
                priority=config_value(node.config, "priority") or Priority.MEDIUM,
                type=node.type,
                link=f"/admin/tickets/{conversation_id}",
                metadata={"conversation_id": conversation_id, "workflow_id": workflow.id},
            ))
        return self._ok(node, data={"recipients": recipients})

    _UPDATABLE_FIELDS = ("priority", "status", "category")

    async def _update_field(self, node, context, workflow) -> NodeResult:
        conversation_id = context.conversation_id
        if not conversation_id:
            return self._fail(node, "No conversation ID in context")

        field_name = config_value(node.config, "field_to_update")
        new_value = config_value(node.config, "new_value")
        if field_name not in self._UPDATABLE_FIELDS:
            return self._ok(node, message=f"Field '{field_name}' is not updatable, skipped")

        await self._tickets.update_fields(conversation_id, {field_name: new_value})
        return self._ok(
            node,
            updates={field_name: new_value},
            data={"field": field_name, "value": new_value}
        )

    async def _assign_ticket(self, node, context, workflow) -> NodeResult:
        conversation_id = context.conversation_id
        if not conversation_id:
            return self._fail(node, "No conversation ID in context")

        mode = config_value(node.config, "assign_to")
        user_id = None
        if mode == "specific_user":
            user_id = config_value(node.config, "user_id")
        elif mode == "round_robin":
            user_id = await self._least_loaded_agent()

        if not user_id:
            return self._ok(node, message="No assignee selected")

        await self._tickets.assign(conversation_id, user_id)
        return self._ok(node, updates={"assignee_id": user_id}, data={"assignee_id": user_id})

    async def _least_loaded_agent(self) -> Optional[str]:
        """Active agent with the fewest open tickets; ties keep listing order."""
        agents = [a for a in await self._tickets.list_agent_loads() if a.is_active]
        if not agents:
            return None
        return min(agents, key=lambda a: a.open_tickets).agent_id

    async def _add_note(self, node, context, workflow) -> NodeResult:
        conversation_id = context.conversation_id
        if not conversation_id:
            return self._fail(node, "No conversation ID in context")

        content = render_template(config_value(node.config, "note_content"), context)
        internal = not bool(config_value(node.config, "visible_to_customer", False))
        await self._tickets.add_note(conversation_id, content, internal=internal)
        return self._ok(node, data={"internal": internal})

    async def _escalation(self, node, context, workflow) -> NodeResult:
        conversation_id = context.conversation_id
        if not conversation_id:
            return self._fail(node, "No conversation ID in context")

        try:
            level = int(config_value(node.config, "escalation_level", 1))
        except (TypeError, ValueError):
            return self._fail(node, "escalation_level must be an integer")
        actions = config_value(node.config, "escalation_actions") or []

        escalation = await self._escalations.create(SLAEscalation(
            id=str(uuid4()),
            conversation_id=conversation_id,
            escalation_level=level,
            escalation_type=EscalationType.WORKFLOW,
            reason=f"Workflow '{workflow.name}' escalated ticket to level {level}",
            escalated_at=self._clock(),
        ))

        notified = 0
        if "notify_supervisor" in actions:
            for supervisor_id in await self._tickets.list_supervisors():
                self._deliver(Notification(
                    recipient=supervisor_id,
                    subject=f"Ticket {conversation_id} escalated",
                    body=f"Ticket {conversation_id} escalated to level {level}",
                    priority=Priority.HIGH,
                    type=NotificationType.ESCALATION,
                    link=f"/admin/tickets/{conversation_id}",
                    metadata={"conversation_id": conversation_id, "escalation_id": escalation.id},
                ))
                notified += 1

        return self._ok(node, data={"escalation_level": level, "notified": notified})

    async def _marker(self, node, context, workflow) -> NodeResult:
        # merge_branches and wait_delay carry no runtime behavior
        return self._ok(node, message=f"{node.type} marker")


NODE_HANDLERS: Dict[NodeType, NodeHandler] = {
    NodeType.TICKET_CREATED: WorkflowExecutor._pass_through,
    NodeType.TICKET_UPDATED: WorkflowExecutor._pass_through,
    NodeType.TIME_SCHEDULER: WorkflowExecutor._pass_through,
    NodeType.START_SLA_TIMER: WorkflowExecutor._start_sla_timer,
    NodeType.PAUSE_SLA: WorkflowExecutor._pause_sla,
    NodeType.RESUME_SLA: WorkflowExecutor._resume_sla,
    NodeType.CHECK_SLA_TIME: WorkflowExecutor._check_sla_time,
    NodeType.SLA_WARNING: WorkflowExecutor._sla_warning,
    NodeType.SLA_BREACH: WorkflowExecutor._sla_breach,
    NodeType.CONDITION_IF: WorkflowExecutor._condition_if,
    NodeType.MERGE_BRANCHES: WorkflowExecutor._marker,
    NodeType.WAIT_DELAY: WorkflowExecutor._marker,
    NodeType.SEND_EMAIL: WorkflowExecutor._send_notification,
    NodeType.SEND_SMS: WorkflowExecutor._send_notification,
    NodeType.SEND_NOTIFICATION: WorkflowExecutor._send_notification,
    NodeType.UPDATE_FIELD: WorkflowExecutor._update_field,
    NodeType.ASSIGN_TICKET: WorkflowExecutor._assign_ticket,
    NodeType.ADD_NOTE: WorkflowExecutor._add_note,
    NodeType.ESCALATION: WorkflowExecutor._escalation,
}

_unhandled = [t.value for t in NodeType if t not in NODE_HANDLERS]
if _unhandled:
    raise RuntimeError(f"No workflow node handler registered for: {_unhandled}")
