# tests/test_workflow_engine.py
"""Tests for the durable workflow run engine."""

from datetime import timedelta

import pytest

from conftest import run_db
from models import ABTest, ABTestAssignment, Contact, EmailTemplate, Workflow, WorkflowRun, WorkflowRunEvent
from services.ab_testing import ab_test_results, assign_variant, build_ab_test_definition
from services.delivery import DeliveryResult
from services.errors import RunNotFound, WorkflowError
from services.workflow_engine import Subject, WorkflowEngine, workflow_stats

EMAIL = "a@example.com"


def _edges(*pairs) -> list[dict]:
    edges = []
    for i, pair in enumerate(pairs):
        source, target, *handle = pair
        edge = {"id": f"e{i}", "source": source, "target": target}
        if handle:
            edge["sourceHandle"] = handle[0]
        edges.append(edge)
    return edges


def _drip_workflow(**kwargs) -> dict:
    nodes = [
        {"id": "trigger", "type": "trigger", "data": {}},
        {"id": "t1", "type": "email", "data": {"templateId": 101}},
        {"id": "wait", "type": "delay", "data": {"delayDays": 3}},
        {"id": "t2", "type": "email", "data": {"templateId": 102}},
        {"id": "stop", "type": "stop", "data": {}},
    ]
    edges = _edges(("trigger", "t1"), ("t1", "wait"), ("wait", "t2"), ("t2", "stop"))
    return {"store_id": "s1", "name": "Drip", "nodes": nodes, "edges": edges, **kwargs}


async def _event_types(run_id: int) -> list[str]:
    return list(await WorkflowRunEvent.filter(run_id=run_id).order_by("id").values_list("event_type", flat=True))


class TestDripSequence:
    def test_sends_waits_and_completes(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            contact = await Contact.create(store_id="s1", email=EMAIL)
            workflow = await Workflow.create(**_drip_workflow())

            handle = await engine.start(workflow.id, Subject(customer_email="A@Example.com"))
            assert handle.created is True
            assert handle.status == "waiting_delay"
            assert delivery.emails == [(101, EMAIL)]

            run = await WorkflowRun.get(id=handle.run_id)
            assert run.current_node_id == "t2"
            assert run.next_step_at == clock.now + timedelta(days=3)
            assert run.contact_id == contact.id

            clock.advance(days=1)
            summary = await engine.tick()
            assert summary["due"] == 0
            assert delivery.emails == [(101, EMAIL)]

            clock.advance(days=2)
            summary = await engine.tick()
            assert summary["due"] == 1
            assert summary["completed"] == 1

            await run.refresh_from_db()
            await contact.refresh_from_db()
            return run, contact, await _event_types(run.id)

        run, contact, events = run_db(scenario)
        assert delivery.emails == [(101, EMAIL), (102, EMAIL)]
        assert run.status == "completed"
        assert run.stopped_at_node_id == "stop"
        assert run.completed_at is not None
        assert contact.emails_sent == 2
        assert events == ["started", "email_sent", "delay_started", "email_sent", "completed"]

    def test_skip_delay_resumes_now(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            workflow = await Workflow.create(**_drip_workflow())
            handle = await engine.start(workflow.id, Subject(customer_email=EMAIL))
            return await engine.skip_delay(handle.run_id)

        handle = run_db(scenario)
        assert handle.status == "completed"
        assert [template for template, _ in delivery.emails] == [101, 102]

    def test_skip_delay_requires_waiting_run(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            workflow = await Workflow.create(
                store_id="s1",
                name="One shot",
                nodes=[{"id": "t", "type": "trigger"}, {"id": "s", "type": "stop"}],
                edges=_edges(("t", "s")),
            )
            handle = await engine.start(workflow.id, Subject(customer_email=EMAIL))
            with pytest.raises(WorkflowError):
                await engine.skip_delay(handle.run_id)
            return handle

        assert run_db(scenario).status == "completed"

    def test_enrolment_is_idempotent_while_active(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            workflow = await Workflow.create(**_drip_workflow())
            first = await engine.start(workflow.id, Subject(customer_email=EMAIL))
            second = await engine.start(workflow.id, Subject(customer_email=EMAIL.upper()))
            return first, second, await WorkflowRun.filter(workflow=workflow).count()

        first, second, count = run_db(scenario)
        assert second.created is False
        assert second.run_id == first.run_id
        assert count == 1
        assert len(delivery.emails) == 1

    def test_stats(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            workflow = await Workflow.create(**_drip_workflow())
            await engine.start(workflow.id, Subject(customer_email="one@example.com"))
            await engine.start(workflow.id, Subject(customer_email="two@example.com"))
            return await workflow_stats(workflow)

        stats = run_db(scenario)
        assert stats["total_runs"] == 2
        assert stats["by_status"]["waiting_delay"] == 2
        assert stats["emails_sent"] == 2
        assert stats["active_by_node"] == {"t2": 2}


class TestStartFailures:
    def test_missing_workflow_records_failed_run(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            handle = await engine.start(9999, Subject(customer_email=EMAIL, store_id="s1"))
            return handle, await WorkflowRun.get(id=handle.run_id)

        handle, run = run_db(scenario)
        assert handle.status == "failed"
        assert run.failure_reason == "workflow_not_found"
        assert delivery.emails == []

    def test_inactive_workflow_rejected(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            workflow = await Workflow.create(**_drip_workflow(is_active=False))
            with pytest.raises(WorkflowError):
                await engine.start(workflow.id, Subject(customer_email=EMAIL))
            return await WorkflowRun.all().count()

        assert run_db(scenario) == 0

    def test_stored_invalid_definition_fails_run(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            workflow = await Workflow.create(
                store_id="s1",
                name="Broken",
                nodes=[{"id": "t", "type": "trigger"}, {"id": "e", "type": "email", "data": {}}],
                edges=_edges(("t", "e")),
            )
            handle = await engine.start(workflow.id, Subject(customer_email=EMAIL))
            return await WorkflowRun.get(id=handle.run_id)

        run = run_db(scenario)
        assert run.status == "failed"
        assert run.failure_reason == "invalid_definition"

    def test_unknown_node_is_skipped(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            workflow = await Workflow.create(
                store_id="s1",
                name="Future",
                nodes=[
                    {"id": "t", "type": "trigger"},
                    {"id": "x", "type": "sms", "data": {"body": "hi"}},
                    {"id": "e", "type": "email", "data": {"templateId": 5}},
                ],
                edges=_edges(("t", "x"), ("x", "e")),
            )
            return await engine.start(workflow.id, Subject(customer_email=EMAIL))

        assert run_db(scenario).status == "completed"
        assert delivery.emails == [(5, EMAIL)]


class TestBranching:
    @staticmethod
    def _branching(condition_data: dict) -> dict:
        nodes = [
            {"id": "t", "type": "trigger"},
            {"id": "c", "type": "condition", "data": condition_data},
            {"id": "yes", "type": "email", "data": {"templateId": 1}},
            {"id": "no", "type": "email", "data": {"templateId": 2}},
        ]
        edges = _edges(("t", "c"), ("c", "yes", "true"), ("c", "no", "false"))
        return {"store_id": "s1", "name": "Branch", "nodes": nodes, "edges": edges}

    @pytest.mark.parametrize(("tags", "expected"), [(["vip"], 1), (["regular"], 2)])
    def test_typed_condition(self, delivery, clock, tags, expected) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            await Contact.create(store_id="s1", email=EMAIL, tags=tags)
            workflow = await Workflow.create(**self._branching({"conditionType": "has_tag", "tagName": "VIP"}))
            return await engine.start(workflow.id, Subject(customer_email=EMAIL))

        assert run_db(scenario).status == "completed"
        assert delivery.emails == [(expected, EMAIL)]

    def test_descriptor_condition_uses_execution_data(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)
        condition = {"condition": {"field": "orderTotal", "operator": "greater_than", "value": 100}}

        async def scenario():
            workflow = await Workflow.create(**self._branching(condition))
            await engine.start(workflow.id, Subject(customer_email="big@example.com", execution_data={"orderTotal": 250}))
            await engine.start(workflow.id, Subject(customer_email="small@example.com", execution_data={"orderTotal": 20}))

        run_db(scenario)
        assert delivery.emails == [(1, "big@example.com"), (2, "small@example.com")]

    def test_missing_branch_is_dead_end(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            definition = self._branching({"conditionType": "opened_email"})
            definition["edges"] = [e for e in definition["edges"] if e.get("sourceHandle") != "false"]
            workflow = await Workflow.create(**definition)
            handle = await engine.start(workflow.id, Subject(customer_email=EMAIL))
            return await WorkflowRun.get(id=handle.run_id)

        run = run_db(scenario)
        assert run.status == "failed"
        assert run.failure_reason == "dead_end"
        assert delivery.emails == []

    def test_goal_ends_run_early(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            await Contact.create(store_id="s1", email=EMAIL, tags=["buyer"])
            workflow = await Workflow.create(
                store_id="s1",
                name="Goal",
                nodes=[
                    {"id": "t", "type": "trigger"},
                    {"id": "g", "type": "goal", "data": {"goalType": "tag_applied", "goalValue": "buyer"}},
                    {"id": "e", "type": "email", "data": {"templateId": 9}},
                ],
                edges=_edges(("t", "g"), ("g", "e")),
            )
            handle = await engine.start(workflow.id, Subject(customer_email=EMAIL))
            return await WorkflowRun.get(id=handle.run_id)

        run = run_db(scenario)
        assert run.status == "completed"
        assert run.stopped_at_node_id == "g"
        assert delivery.emails == []

    def test_tag_actions(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            contact = await Contact.create(store_id="s1", email=EMAIL, tags=["lead"])
            workflow = await Workflow.create(
                store_id="s1",
                name="Tags",
                nodes=[
                    {"id": "t", "type": "trigger"},
                    {"id": "add", "type": "action", "data": {"actionType": "add_tag", "value": "customer"}},
                    {"id": "rm", "type": "action", "data": {"actionType": "remove_tag", "tagName": "lead"}},
                ],
                edges=_edges(("t", "add"), ("add", "rm")),
            )
            await engine.start(workflow.id, Subject(customer_email=EMAIL))
            await contact.refresh_from_db()
            return contact.tags

        assert run_db(scenario) == ["customer"]


class TestDeliveryFailures:
    @staticmethod
    def _webhook_workflow() -> dict:
        return {
            "store_id": "s1",
            "name": "Hook",
            "nodes": [
                {"id": "t", "type": "trigger"},
                {"id": "w", "type": "webhook", "data": {"webhookUrl": "https://hooks.example.com/x"}},
                {"id": "s", "type": "stop"},
            ],
            "edges": _edges(("t", "w"), ("w", "s")),
        }

    def test_webhook_retries_then_continues(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock, max_attempts=3, retry_backoff_minutes=5)
        delivery.webhook_results = [DeliveryResult.failed("HTTP 500: Internal Server Error")] * 3

        async def scenario():
            workflow = await Workflow.create(**self._webhook_workflow())
            handle = await engine.start(workflow.id, Subject(customer_email=EMAIL))
            assert handle.status == "waiting_retry"

            clock.advance(minutes=4)
            assert (await engine.tick())["due"] == 0
            clock.advance(minutes=1)
            assert (await engine.tick())["waiting_retry"] == 1
            clock.advance(minutes=10)
            assert (await engine.tick())["completed"] == 1

            return await WorkflowRun.get(id=handle.run_id), await _event_types(handle.run_id)

        run, events = run_db(scenario)
        assert len(delivery.webhooks) == 3
        assert run.status == "completed"
        assert run.delivery_failures == 1
        assert events.count("delivery_retry_scheduled") == 2
        assert "delivery_failed" in events

    def test_webhook_payload(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            await Contact.create(store_id="s1", email=EMAIL, first_name="Ada")
            workflow = await Workflow.create(**self._webhook_workflow())
            handle = await engine.start(workflow.id, Subject(customer_email=EMAIL, execution_data={"orderId": "o-1"}))
            return workflow.id, handle.run_id

        workflow_id, run_id = run_db(scenario)
        url, payload = delivery.webhooks[0]
        assert url == "https://hooks.example.com/x"
        assert payload["event"] == "workflow_webhook"
        assert payload["workflowId"] == workflow_id
        assert payload["workflowName"] == "Hook"
        assert payload["runId"] == run_id
        assert payload["nodeId"] == "w"
        assert payload["contact"] == {"email": EMAIL, "firstName": "Ada", "lastName": None}
        assert payload["executionData"] == {"orderId": "o-1"}
        assert payload["timestamp"] == int(clock.now.timestamp() * 1000)

    def test_email_retry_succeeds(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock, max_attempts=3, retry_backoff_minutes=5)
        delivery.email_results = [DeliveryResult.failed("SES error: throttled")]

        async def scenario():
            workflow = await Workflow.create(**_drip_workflow())
            handle = await engine.start(workflow.id, Subject(customer_email=EMAIL))
            clock.advance(minutes=5)
            await engine.tick()
            return await WorkflowRun.get(id=handle.run_id)

        run = run_db(scenario)
        assert delivery.emails == [(101, EMAIL), (101, EMAIL)]
        assert run.status == "waiting_delay"
        assert run.delivery_failures == 0
        assert run.attempts == 0


class TestCancellation:
    def test_cancel_during_delay(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            workflow = await Workflow.create(**_drip_workflow())
            handle = await engine.start(workflow.id, Subject(customer_email=EMAIL))
            cancelled = await engine.cancel(handle.run_id)
            clock.advance(days=4)
            summary = await engine.tick()
            return cancelled, summary

        cancelled, summary = run_db(scenario)
        assert cancelled.status == "cancelled"
        assert summary["due"] == 0
        assert delivery.emails == [(101, EMAIL)]

    def test_cancel_unknown_run(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            with pytest.raises(RunNotFound):
                await engine.cancel(42)

        run_db(scenario)

    def test_unsubscribed_contact_stops_at_next_step(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            contact = await Contact.create(store_id="s1", email=EMAIL)
            workflow = await Workflow.create(**_drip_workflow())
            handle = await engine.start(workflow.id, Subject(customer_email=EMAIL))
            contact.status = "unsubscribed"
            await contact.save()
            clock.advance(days=3)
            summary = await engine.tick()
            return summary, await WorkflowRun.get(id=handle.run_id)

        summary, run = run_db(scenario)
        assert summary["cancelled"] == 1
        assert run.status == "cancelled"
        assert delivery.emails == [(101, EMAIL)]

    def test_cancel_runs_for_contact(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            contact = await Contact.create(store_id="s1", email=EMAIL)
            first = await Workflow.create(**_drip_workflow())
            second = await Workflow.create(**_drip_workflow(name="Second"))
            await engine.start(first.id, Subject(customer_email=EMAIL))
            await engine.start(second.id, Subject(customer_email=EMAIL))
            cancelled = await engine.cancel_runs_for_contact(contact)
            statuses = await WorkflowRun.filter(contact=contact).values_list("status", flat=True)
            return cancelled, statuses

        cancelled, statuses = run_db(scenario)
        assert cancelled == 2
        assert set(statuses) == {"cancelled"}

    def test_deactivated_workflow_cancels_on_resume(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            workflow = await Workflow.create(**_drip_workflow())
            handle = await engine.start(workflow.id, Subject(customer_email=EMAIL))
            workflow.is_active = False
            await workflow.save()
            clock.advance(days=3)
            await engine.tick()
            return await WorkflowRun.get(id=handle.run_id)

        assert run_db(scenario).status == "cancelled"
        assert len(delivery.emails) == 1


class TestNotify:
    def test_notification_message(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock, notify_email="owner@example.com")

        async def scenario():
            workflow = await Workflow.create(
                store_id="s1",
                name="Onboarding",
                nodes=[
                    {"id": "t", "type": "trigger"},
                    {"id": "n", "type": "notify", "data": {"message": "New signup"}},
                ],
                edges=_edges(("t", "n")),
            )
            return await engine.start(workflow.id, Subject(customer_email=EMAIL))

        assert run_db(scenario).status == "completed"
        assert delivery.notifications == [
            (
                "owner@example.com",
                "[Workflow] Onboarding - Notification",
                f"New signup\n\nContact: {EMAIL}\nWorkflow: Onboarding",
            )
        ]


class TestABTestRuns:
    def test_assignment_is_recorded(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)
        subject = "split-me@example.com"

        async def scenario():
            a = await EmailTemplate.create(store_id="s1", name="A", subject="Hi", html_content="<p>A</p>")
            b = await EmailTemplate.create(store_id="s1", name="B", subject="Hey", html_content="<p>B</p>")
            test = await ABTest.create(
                store_id="s1", name="Subject", split_percentage=50, variant_a_template=a, variant_b_template=b
            )
            nodes, edges = build_ab_test_definition(test)
            workflow = await Workflow.create(store_id="s1", name="AB", nodes=nodes, edges=edges)
            test.workflow = workflow
            await test.save()

            handle = await engine.start(workflow.id, Subject(customer_email=subject))
            assignment = await ABTestAssignment.get(run_id=handle.run_id)
            return {"a": a.id, "b": b.id}, assignment, await ab_test_results(test)

        templates, assignment, results = run_db(scenario)
        variant = assign_variant(subject, 50)
        assert delivery.emails == [(templates[variant], subject)]
        assert assignment.variant == variant
        assert assignment.sent is True
        assert results["variants"][variant] == {"assigned": 1, "sent": 1}

    def test_winner_receives_all_new_runs(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            a = await EmailTemplate.create(store_id="s1", name="A", subject="Hi", html_content="<p>A</p>")
            b = await EmailTemplate.create(store_id="s1", name="B", subject="Hey", html_content="<p>B</p>")
            test = await ABTest.create(
                store_id="s1", name="Subject", split_percentage=100, variant_a_template=a, variant_b_template=b
            )
            nodes, edges = build_ab_test_definition(test)
            workflow = await Workflow.create(store_id="s1", name="AB", nodes=nodes, edges=edges)
            test.winner = "b"
            await test.save()
            for i in range(3):
                await engine.start(workflow.id, Subject(customer_email=f"user{i}@example.com"))
            return b.id

        b_id = run_db(scenario)
        assert [template for template, _ in delivery.emails] == [b_id, b_id, b_id]


class TestRecovery:
    def test_crash_during_start_fails_the_run(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def boom(template_id, recipient):
            raise RuntimeError("SES connection reset")

        delivery.send_templated_email = boom

        async def scenario():
            workflow = await Workflow.create(**_drip_workflow())
            handle = await engine.start(workflow.id, Subject(customer_email=EMAIL))
            clock.advance(days=30)
            summary = await engine.tick()
            return handle, summary, await WorkflowRun.get(id=handle.run_id)

        handle, summary, run = run_db(scenario)
        assert handle.status == "failed"
        assert run.status == "failed"
        assert run.failure_reason == "error"
        assert run.next_step_at is None
        assert summary["due"] == 0

    def test_tick_resumes_run_with_expired_lease(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            workflow = await Workflow.create(**_drip_workflow())
            orphan = await WorkflowRun.create(
                workflow=workflow,
                workflow_version=1,
                store_id="s1",
                customer_email=EMAIL,
                status="running",
                current_node_id="t1",
                next_step_at=clock.now - timedelta(minutes=1),
            )
            summary = await engine.tick()
            return summary, await WorkflowRun.get(id=orphan.id), await _event_types(orphan.id)

        summary, run, events = run_db(scenario)
        assert summary["due"] == 1
        assert summary["recovered"] == 1
        assert summary["waiting_delay"] == 1
        assert run.status == "waiting_delay"
        assert run.current_node_id == "t2"
        assert delivery.emails == [(101, EMAIL)]
        assert events == ["email_sent", "delay_started"]

    def test_live_lease_is_left_alone(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock, lease_seconds=300)

        async def scenario():
            workflow = await Workflow.create(**_drip_workflow())
            await WorkflowRun.create(
                workflow=workflow,
                store_id="s1",
                customer_email=EMAIL,
                status="running",
                current_node_id="t1",
                next_step_at=clock.now + timedelta(minutes=5),
            )
            first = await engine.tick()
            clock.advance(minutes=6)
            second = await engine.tick()
            return first, second

        first, second = run_db(scenario)
        assert first["due"] == 0
        assert second["recovered"] == 1
        assert delivery.emails == [(101, EMAIL)]


class TestCustomEmail:
    def test_subject_and_body_without_template(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            workflow = await Workflow.create(
                store_id="s1",
                name="Welcome",
                nodes=[
                    {"id": "t", "type": "trigger"},
                    {"id": "e", "type": "email", "data": {"subject": "Welcome {{firstName}}", "body": "Thanks!"}},
                    {"id": "s", "type": "stop"},
                ],
                edges=_edges(("t", "e"), ("e", "s")),
            )
            handle = await engine.start(workflow.id, Subject(customer_email=EMAIL))
            sent = await WorkflowRunEvent.get(run_id=handle.run_id, event_type="email_sent")
            return handle, sent.metadata

        handle, metadata = run_db(scenario)
        assert handle.status == "completed"
        assert delivery.emails == []
        assert delivery.custom_emails == [("Welcome {{firstName}}", "Thanks!", EMAIL)]
        assert metadata["subject"] == "Welcome {{firstName}}"
        assert "templateId" not in metadata


class TestTriggers:
    @staticmethod
    def _listener(name: str, config: dict, template_id: int, trigger_type: str = "tag_added") -> dict:
        return {
            "store_id": "s1",
            "name": name,
            "trigger_type": trigger_type,
            "trigger_config": config,
            "nodes": [
                {"id": "t", "type": "trigger"},
                {"id": "e", "type": "email", "data": {"templateId": template_id}},
            ],
            "edges": _edges(("t", "e")),
        }

    def test_add_tag_enrolls_tag_added_workflows(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            await Contact.create(store_id="s1", email=EMAIL)
            tagger = await Workflow.create(
                store_id="s1",
                name="Tagger",
                nodes=[
                    {"id": "t", "type": "trigger"},
                    {"id": "add", "type": "action", "data": {"actionType": "add_tag", "value": "vip"}},
                ],
                edges=_edges(("t", "add")),
            )
            vip = await Workflow.create(**self._listener("VIP", {"tagName": "VIP"}, 201))
            await Workflow.create(**self._listener("Other", {"tagName": "churned"}, 202))

            await engine.start(tagger.id, Subject(customer_email=EMAIL))
            pending = await WorkflowRun.get(workflow=vip)
            assert pending.status == "pending"
            assert delivery.emails == []

            summary = await engine.tick()
            await pending.refresh_from_db()
            return summary, pending, await WorkflowRun.all().count()

        summary, run, total = run_db(scenario)
        assert summary["completed"] == 1
        assert run.status == "completed"
        assert run.execution_data == {"triggerType": "tag_added", "tagName": "vip"}
        assert delivery.emails == [(201, EMAIL)]
        assert total == 2

    def test_start_for_trigger_filters_by_product(self, delivery, clock) -> None:
        engine = WorkflowEngine(delivery, clock=clock)

        async def scenario():
            await Workflow.create(**self._listener("Course", {"productId": "course-1"}, 301, "product_purchase"))
            await Workflow.create(**self._listener("Any", {}, 302, "product_purchase"))
            await Workflow.create(**self._listener("Off", {}, 303, "product_purchase"), is_active=False)
            await Workflow.create(**self._listener("Signup", {}, 304, "lead_signup"))
            return await engine.start_for_trigger(
                "product_purchase",
                Subject(customer_email=EMAIL, store_id="s1"),
                context={"productId": "course-2"},
            )

        handles = run_db(scenario)
        assert [h.status for h in handles] == ["completed"]
        assert delivery.emails == [(302, EMAIL)]
