from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from tortoise.expressions import F, Q

from config import Config
from models import ABTest, Contact, Workflow, WorkflowRun, WorkflowRunEvent
from services.ab_testing import assign_variant, record_assignment, variant_for
from services.conditions import check_goal, contact_attributes, evaluate, evaluate_condition_type
from services.delivery import DeliveryAdapters, DeliveryResult, Recipient
from services.errors import InvalidWorkflowDefinition, RunNotFound, WorkflowError
from services.workflow_graph import FALSE_HANDLES, TRUE_HANDLES, Edge, WorkflowGraph, trigger_matches

logger = logging.getLogger(__name__)

WAITING_STATUSES = ("pending", "waiting_delay", "waiting_retry")
ACTIVE_STATUSES = ("running", *WAITING_STATUSES)
TERMINAL_STATUSES = ("completed", "failed", "cancelled")

# Returned by node handlers that already suspended or terminated the run.
HALT = object()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Subject:
    customer_email: str
    store_id: str | None = None
    contact_id: int | None = None
    execution_data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RunHandle:
    run_id: int
    status: str
    created: bool = True


class WorkflowEngine:
    """Interprets workflow graphs for one subject per run.

    Every transition is written to ``workflow_runs`` before the next node
    executes, so a run can be resumed from its persisted position by
    :meth:`tick` after a restart. Writes are conditional on the run still being
    ``running``; a concurrent :meth:`cancel` therefore stops the run at its
    next transition.
    """

    def __init__(
        self,
        delivery: DeliveryAdapters,
        *,
        clock: Callable[[], datetime] | None = None,
        max_attempts: int | None = None,
        retry_backoff_minutes: int | None = None,
        max_steps: int | None = None,
        notify_email: str | None = None,
        lease_seconds: int | None = None,
    ):
        self.delivery = delivery
        self.clock = clock or _utcnow
        self.max_attempts = max_attempts or Config.DELIVERY_MAX_ATTEMPTS
        self.retry_backoff_minutes = (
            retry_backoff_minutes if retry_backoff_minutes is not None else Config.DELIVERY_RETRY_BACKOFF_MINUTES
        )
        self.max_steps = max_steps or Config.WORKFLOW_MAX_STEPS_PER_ADVANCE
        self.notify_email = notify_email or Config.NOTIFY_EMAIL
        self.lease_seconds = lease_seconds or Config.WORKFLOW_RUN_LEASE_SECONDS

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def start(self, workflow_id: int, subject: Subject, *, defer: bool = False) -> RunHandle:
        """Enroll ``subject`` and drive the run until it first suspends.

        With ``defer`` the run is only positioned at its start node and left
        ``pending`` for the next :meth:`tick`.
        """
        email = subject.customer_email.strip().lower()
        if not email:
            raise WorkflowError("customer_email is required")

        workflow = await Workflow.get_or_none(id=workflow_id)
        if workflow is None:
            run = await WorkflowRun.create(
                workflow=None,
                store_id=subject.store_id or "",
                contact_id=subject.contact_id,
                customer_email=email,
                execution_data=subject.execution_data,
                status="failed",
                failure_reason="workflow_not_found",
                completed_at=self.clock(),
            )
            await self._event(run, None, "failed", {"reason": "workflow_not_found", "workflowId": workflow_id})
            logger.info("Run %s failed: workflow %s not found", run.id, workflow_id)
            return RunHandle(run_id=run.id, status=run.status)

        if not workflow.is_active:
            raise WorkflowError(f"Workflow {workflow_id} is not active")

        existing = await WorkflowRun.filter(
            workflow=workflow, customer_email=email, status__in=ACTIVE_STATUSES
        ).first()
        if existing:
            return RunHandle(run_id=existing.id, status=existing.status, created=False)

        store_id = subject.store_id or workflow.store_id
        contact_id = subject.contact_id
        if contact_id is None:
            contact = await Contact.filter(store_id=store_id, email=email).first()
            contact_id = contact.id if contact else None

        run = await WorkflowRun.create(
            workflow=workflow,
            workflow_version=workflow.version,
            store_id=store_id,
            contact_id=contact_id,
            customer_email=email,
            execution_data=subject.execution_data,
            status="running",
            next_step_at=self._lease(),
        )
        await self._event(run, None, "started", {"workflowVersion": workflow.version})

        try:
            graph = WorkflowGraph.parse(workflow.nodes, workflow.edges, strict=False)
        except InvalidWorkflowDefinition as exc:
            await self._fail(run, "invalid_definition", problems=exc.problems)
            return RunHandle(run_id=run.id, status=run.status)

        start = graph.start_node()
        if start is None:
            await self._finish(run, "completed")
            return RunHandle(run_id=run.id, status=run.status)

        if defer:
            await self._update(run, status="pending", current_node_id=start.id, next_step_at=self.clock())
            return RunHandle(run_id=run.id, status=run.status)

        await self._update(run, current_node_id=start.id)
        status = await self._advance_safely(run.id)
        return RunHandle(run_id=run.id, status=status)

    async def start_for_trigger(
        self,
        trigger_type: str,
        subject: Subject,
        *,
        context: dict | None = None,
        defer: bool = False,
    ) -> list[RunHandle]:
        """Enroll ``subject`` in every active workflow of its store listening for ``trigger_type``."""
        context = context or {}
        workflows = await Workflow.filter(
            store_id=subject.store_id, trigger_type=trigger_type, is_active=True
        ).order_by("id")
        handles = []
        for workflow in workflows:
            if not trigger_matches(trigger_type, workflow.trigger_config, context):
                continue
            enrolled = replace(subject, execution_data={"triggerType": trigger_type, **context, **subject.execution_data})
            handle = await self.start(workflow.id, enrolled, defer=defer)
            if handle.created:
                logger.info("Enrolled %s in %s workflow %s", subject.customer_email, trigger_type, workflow.id)
            handles.append(handle)
        return handles

    async def cancel(self, run_id: int) -> RunHandle:
        run = await WorkflowRun.get_or_none(id=run_id)
        if run is None:
            raise RunNotFound(run_id)
        if run.status in TERMINAL_STATUSES:
            return RunHandle(run_id=run.id, status=run.status, created=False)
        now = self.clock()
        updated = await WorkflowRun.filter(id=run.id, status__in=ACTIVE_STATUSES).update(
            status="cancelled", next_step_at=None, completed_at=now, updated_at=now
        )
        await run.refresh_from_db()
        if updated:
            await self._event(run, run.current_node_id, "cancelled", {})
            logger.info("Run %s cancelled at node %s", run.id, run.current_node_id)
        return RunHandle(run_id=run.id, status=run.status, created=False)

    async def cancel_runs_for_contact(self, contact: Contact) -> int:
        run_ids = await WorkflowRun.filter(contact=contact, status__in=ACTIVE_STATUSES).values_list("id", flat=True)
        for run_id in run_ids:
            await self.cancel(run_id)
        return len(run_ids)

    async def skip_delay(self, run_id: int) -> RunHandle:
        """Resume a run waiting on a delay (or retry) right now."""
        run = await WorkflowRun.get_or_none(id=run_id)
        if run is None:
            raise RunNotFound(run_id)
        if run.status not in WAITING_STATUSES:
            raise WorkflowError(f"Run {run_id} is not waiting (status {run.status})")
        if not await self._claim(run.id, run.status):
            await run.refresh_from_db()
            return RunHandle(run_id=run.id, status=run.status, created=False)
        await self._event(run, run.current_node_id, "delay_skipped", {})
        status = await self._advance_safely(run.id)
        return RunHandle(run_id=run.id, status=status, created=False)

    async def tick(self, now: datetime | None = None) -> dict:
        """Resume every run whose ``next_step_at`` has passed.

        That covers waiting runs that are due and ``running`` runs whose lease
        expired because the process driving them died mid-advance.
        """
        now = now or self.clock()
        due = (
            await WorkflowRun.filter(Q(status__in=WAITING_STATUSES) | Q(status="running"), next_step_at__lte=now)
            .order_by("next_step_at", "id")
            .limit(Config.WORKFLOW_TICK_BATCH_SIZE)
            .values_list("id", "status")
        )
        semaphore = asyncio.Semaphore(max(Config.WORKFLOW_TICK_CONCURRENCY, 1))

        async def _resume(run_id: int, status: str) -> str | None:
            async with semaphore:
                if not await self._claim(run_id, status, due_before=now):
                    return None
                if status == "running":
                    logger.warning("Run %s lease expired; resuming from its last persisted node", run_id)
                return await self._advance_safely(run_id)

        outcomes = await asyncio.gather(*(_resume(run_id, status) for run_id, status in due))
        summary = {"due": len(due), "processed": 0, "recovered": sum(1 for _, status in due if status == "running")}
        for status in ACTIVE_STATUSES + TERMINAL_STATUSES:
            summary[status] = 0
        for status in outcomes:
            if status is None:
                continue
            summary["processed"] += 1
            summary[status] = summary.get(status, 0) + 1
        logger.info("Workflow tick: %s", summary)
        return summary

    async def _advance_safely(self, run_id: int) -> str:
        try:
            run = await self.advance(run_id)
        except Exception:
            logger.exception("Run %s crashed while advancing", run_id)
            run = await WorkflowRun.get(id=run_id)
            await self._fail(run, "error")
        return run.status

    async def advance(self, run_id: int) -> WorkflowRun:
        """Drive a claimed (``running``) run until it suspends or terminates."""
        run = await WorkflowRun.get_or_none(id=run_id)
        if run is None:
            raise RunNotFound(run_id)
        if run.status != "running":
            return run

        workflow = await Workflow.get_or_none(id=run.workflow_id) if run.workflow_id else None  # type: ignore[attr-defined]
        if workflow is None:
            await self._fail(run, "workflow_not_found")
            return run
        if not workflow.is_active:
            await self._finish(run, "cancelled", reason="workflow_inactive")
            return run

        try:
            graph = WorkflowGraph.parse(workflow.nodes, workflow.edges, strict=False)
        except InvalidWorkflowDefinition as exc:
            await self._fail(run, "invalid_definition", problems=exc.problems)
            return run

        steps = 0
        while True:
            await run.refresh_from_db()
            if run.status != "running":
                return run

            contact = await Contact.get_or_none(id=run.contact_id) if run.contact_id else None  # type: ignore[attr-defined]
            if contact is not None and contact.status == "unsubscribed":
                await self._finish(run, "cancelled", reason="unsubscribed")
                return run

            node = graph.node(run.current_node_id)
            if node is None:
                await self._finish(run, "completed")
                return run

            steps += 1
            if steps > self.max_steps:
                await self._fail(run, "step_limit")
                return run

            logger.debug("Run %s executing %s node %s", run.id, node.type, node.id)
            handler = getattr(self, f"_node_{node.type}", self._node_unknown)
            outcome = await handler(run, workflow, graph, node, contact)
            if outcome is HALT:
                return run
            if not await self._move(run, outcome):
                return run

    # ------------------------------------------------------------------
    # Node handlers
    # ------------------------------------------------------------------

    async def _node_trigger(self, run, workflow, graph, node, contact):
        return graph.edge_for(node.id)

    async def _node_email(self, run, workflow, graph, node, contact):
        data = node.data
        attempt = (run.attempts or 0) + 1
        if not await self._update(run, attempts=attempt):
            return HALT

        recipient = Recipient(
            email=run.customer_email,
            first_name=contact.first_name if contact else None,
            last_name=contact.last_name if contact else None,
            contact_id=contact.id if contact else None,
        )
        if data.template_id not in (None, ""):
            result = await self.delivery.send_templated_email(data.template_id, recipient)
            sent = {"templateId": data.template_id}
        else:
            result = await self.delivery.send_custom_email(data.subject, data.content, recipient)
            sent = {"subject": data.subject}
        if result.ok:
            await self._event(
                run,
                node.id,
                "email_sent",
                {**sent, "attempt": attempt, "externalId": result.external_id},
            )
            if contact is not None:
                await Contact.filter(id=contact.id).update(emails_sent=F("emails_sent") + 1)
        elif await self._retry_or_give_up(run, node.id, attempt, result):
            return HALT

        if data.ab_test_id and data.variant:
            await record_assignment(
                test_id=data.ab_test_id,
                run=run,
                variant=data.variant,
                subject_key=run.customer_email,
                sent=result.ok,
            )
        return graph.edge_for(node.id)

    async def _node_delay(self, run, workflow, graph, node, contact):
        delay_ms = node.data.delay_ms
        edge = graph.edge_for(node.id)
        if delay_ms <= 0:
            return edge
        resume_at = self.clock() + timedelta(milliseconds=delay_ms)
        # The position moves past the delay now; resuming simply continues there.
        suspended = await self._update(
            run,
            status="waiting_delay",
            current_node_id=edge.target if edge else None,
            next_step_at=resume_at,
            attempts=0,
        )
        if suspended:
            await self._event(run, node.id, "delay_started", {"delayMs": delay_ms, "resumeAt": resume_at.isoformat()})
            logger.info("Run %s waiting %sms at node %s", run.id, delay_ms, node.id)
        return HALT

    async def _node_condition(self, run, workflow, graph, node, contact):
        data = node.data
        if data.condition_type:
            result = await evaluate_condition_type(
                data.condition_type,
                data.model_dump(by_alias=True),
                contact=contact,
                store_id=run.store_id,
                customer_email=run.customer_email,
                now=self.clock(),
            )
        else:
            attributes = contact_attributes(contact, self._context(run), self.clock())
            result = evaluate(attributes, data.condition.model_dump())

        handles = TRUE_HANDLES if result else FALSE_HANDLES
        edge = graph.edge_for(node.id, handles) or graph.edge_for(node.id, (None,))
        await self._event(run, node.id, "condition_evaluated", {"result": result})
        if edge is None:
            await self._fail(run, "dead_end", node_id=node.id)
            return HALT
        return edge

    async def _node_split(self, run, workflow, graph, node, contact):
        data = node.data
        test = await ABTest.get_or_none(id=data.ab_test_id) if data.ab_test_id else None
        if test is not None:
            variant = variant_for(test, run.customer_email)
        else:
            variant = assign_variant(run.customer_email, data.split_percentage)
        await self._event(run, node.id, "split_assigned", {"variant": variant})
        return graph.edge_for(node.id, (variant,)) or graph.edge_for(node.id)

    async def _node_webhook(self, run, workflow, graph, node, contact):
        attempt = (run.attempts or 0) + 1
        if not await self._update(run, attempts=attempt):
            return HALT
        if contact is not None:
            contact_payload = {"email": contact.email, "firstName": contact.first_name, "lastName": contact.last_name}
        else:
            contact_payload = {"email": run.customer_email}
        payload = {
            "event": "workflow_webhook",
            "workflowId": workflow.id,
            "workflowName": workflow.name,
            "runId": run.id,
            "nodeId": node.id,
            "contact": contact_payload,
            "executionData": run.execution_data or {},
            "timestamp": int(self.clock().timestamp() * 1000),
        }
        result = await self.delivery.post_webhook(node.data.webhook_url, payload)
        if result.ok:
            await self._event(run, node.id, "webhook_sent", {"attempt": attempt})
        elif await self._retry_or_give_up(run, node.id, attempt, result):
            return HALT
        return graph.edge_for(node.id)

    async def _node_goal(self, run, workflow, graph, node, contact):
        reached = await check_goal(
            node.data.goal_type,
            node.data.goal_value,
            contact=contact,
            store_id=run.store_id,
            customer_email=run.customer_email,
        )
        if reached:
            await self._event(run, node.id, "goal_reached", {"goalType": node.data.goal_type})
            await self._finish(run, "completed", stopped_at_node_id=node.id)
            return HALT
        return graph.edge_for(node.id)

    async def _node_stop(self, run, workflow, graph, node, contact):
        await self._finish(run, "completed", stopped_at_node_id=node.id)
        return HALT

    async def _node_action(self, run, workflow, graph, node, contact):
        data = node.data
        tag = data.value or data.tag_name
        if contact is None or not tag:
            logger.info("Run %s skipped action %s at node %s", run.id, data.action_type, node.id)
            return graph.edge_for(node.id)
        tags = list(contact.tags or [])
        if data.action_type == "add_tag" and tag not in tags:
            tags.append(tag)
        elif data.action_type == "remove_tag":
            tags = [t for t in tags if t != tag]
        else:
            return graph.edge_for(node.id)
        contact.tags = tags  # type: ignore[assignment]
        await contact.save(update_fields=["tags", "updated_at"])
        await self._event(run, node.id, data.action_type, {"tag": tag})
        if data.action_type == "add_tag":
            # Runs started here wait for the next tick instead of nesting inside this one.
            await self.start_for_trigger(
                "tag_added",
                Subject(customer_email=contact.email, store_id=contact.store_id, contact_id=contact.id),
                context={"tagName": tag},
                defer=True,
            )
        return graph.edge_for(node.id)

    async def _node_notify(self, run, workflow, graph, node, contact):
        data = node.data
        to = data.notify_email or self.notify_email
        if data.notify_method != "email" or not to:
            logger.info("Run %s has no notification recipient at node %s", run.id, node.id)
            return graph.edge_for(node.id)
        who = contact.email if contact else run.customer_email
        message = f"{data.message}\n\nContact: {who}\nWorkflow: {workflow.name}"
        result = await self.delivery.send_notification(to, f"[Workflow] {workflow.name} - Notification", message)
        if result.ok:
            await self._event(run, node.id, "notification_sent", {"to": to})
        else:
            await self._delivery_failed(run, node.id, 1, result)
        return graph.edge_for(node.id)

    async def _node_unknown(self, run, workflow, graph, node, contact):
        logger.info("Run %s skipping unknown node type %r (%s)", run.id, node.type, node.id)
        return graph.edge_for(node.id)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _context(self, run: WorkflowRun) -> dict:
        return {
            "customerEmail": run.customer_email,
            "storeId": run.store_id,
            "executionData": run.execution_data or {},
        }

    def _lease(self) -> datetime:
        return self.clock() + timedelta(seconds=self.lease_seconds)

    async def _claim(self, run_id: int, expected_status: str, due_before: datetime | None = None) -> bool:
        qs = WorkflowRun.filter(id=run_id, status=expected_status)
        if due_before is not None:
            # A second claimer sees the fresh lease and matches nothing.
            qs = qs.filter(next_step_at__lte=due_before)
        claimed = await qs.update(status="running", next_step_at=self._lease(), updated_at=self.clock())
        return bool(claimed)

    async def _update(self, run: WorkflowRun, **fields: Any) -> bool:
        fields["updated_at"] = self.clock()
        if "status" not in fields:
            # Still running: every persisted step renews the lease.
            fields.setdefault("next_step_at", self._lease())
        updated = await WorkflowRun.filter(id=run.id, status="running").update(**fields)
        if not updated:
            await run.refresh_from_db()
            return False
        for key, value in fields.items():
            setattr(run, key, value)
        return True

    async def _move(self, run: WorkflowRun, edge: Edge | None) -> bool:
        if edge is None:
            await self._finish(run, "completed")
            return False
        return await self._update(run, current_node_id=edge.target, attempts=0)

    async def _finish(
        self,
        run: WorkflowRun,
        status: str,
        *,
        stopped_at_node_id: str | None = None,
        reason: str | None = None,
    ) -> None:
        now = self.clock()
        fields: dict[str, Any] = {"status": status, "next_step_at": None, "completed_at": now}
        if stopped_at_node_id:
            fields["stopped_at_node_id"] = stopped_at_node_id
        if await self._update(run, **fields):
            await self._event(run, stopped_at_node_id or run.current_node_id, status, {"reason": reason} if reason else {})
            logger.info("Run %s %s%s", run.id, status, f" ({reason})" if reason else "")

    async def _fail(self, run: WorkflowRun, reason: str, **metadata: Any) -> None:
        now = self.clock()
        if await self._update(run, status="failed", failure_reason=reason, next_step_at=None, completed_at=now):
            await self._event(run, run.current_node_id, "failed", {"reason": reason, **metadata})
            logger.info("Run %s failed: %s", run.id, reason)

    async def _event(self, run: WorkflowRun, node_id: str | None, event_type: str, metadata: dict) -> None:
        await WorkflowRunEvent.create(run=run, node_id=node_id, event_type=event_type, metadata=metadata)

    async def _retry_or_give_up(self, run: WorkflowRun, node_id: str, attempt: int, result: DeliveryResult) -> bool:
        """Schedule another attempt if any remain; returns True when the run was suspended."""
        logger.warning(
            "Delivery failed for run %s node %s (attempt %s/%s): %s",
            run.id,
            node_id,
            attempt,
            self.max_attempts,
            result.reason,
        )
        if attempt < self.max_attempts:
            retry_at = self.clock() + timedelta(minutes=self.retry_backoff_minutes * 2 ** (attempt - 1))
            if await self._update(run, status="waiting_retry", next_step_at=retry_at):
                await self._event(
                    run,
                    node_id,
                    "delivery_retry_scheduled",
                    {"attempt": attempt, "reason": result.reason, "retryAt": retry_at.isoformat()},
                )
            return True
        await self._delivery_failed(run, node_id, attempt, result)
        return False

    async def _delivery_failed(self, run: WorkflowRun, node_id: str, attempt: int, result: DeliveryResult) -> None:
        await self._event(run, node_id, "delivery_failed", {"attempts": attempt, "reason": result.reason})
        await WorkflowRun.filter(id=run.id).update(delivery_failures=F("delivery_failures") + 1)
        run.delivery_failures = (run.delivery_failures or 0) + 1  # type: ignore[assignment]


async def workflow_stats(workflow: Workflow) -> dict:
    runs = await WorkflowRun.filter(workflow=workflow).values("status", "current_node_id", "delivery_failures")
    by_status = {status: 0 for status in ACTIVE_STATUSES + TERMINAL_STATUSES}
    by_node: dict[str, int] = {}
    failures = 0
    for row in runs:
        by_status[row["status"]] = by_status.get(row["status"], 0) + 1
        failures += row["delivery_failures"] or 0
        if row["status"] in ACTIVE_STATUSES and row["current_node_id"]:
            by_node[row["current_node_id"]] = by_node.get(row["current_node_id"], 0) + 1
    emails_sent = await WorkflowRunEvent.filter(run__workflow=workflow, event_type="email_sent").count()
    return {
        "workflow_id": workflow.id,
        "total_runs": len(runs),
        "by_status": by_status,
        "emails_sent": emails_sent,
        "delivery_failures": failures,
        "active_by_node": by_node,
    }
