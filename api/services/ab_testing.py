from __future__ import annotations

import logging

from models import ABTest, ABTestAssignment, WorkflowRun

logger = logging.getLogger(__name__)

VARIANTS = ("a", "b")


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def hash_subject(subject: str) -> int:
    """Stable 32-bit rolling hash of ``subject``.

    Matches the browser-side ``(h << 5) - h + charCode`` hash over UTF-16 code
    units, so a subject resolves to the same bucket on every platform.
    """
    h = 0
    encoded = subject.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        code = encoded[i] | (encoded[i + 1] << 8)
        h = _to_int32((h << 5) - h + code)
    return abs(h)


def assign_variant(subject: str, split_percentage: float = 50) -> str:
    """``"a"`` for the first ``split_percentage`` buckets out of 100, else ``"b"``."""
    return "a" if hash_subject(subject) % 100 < split_percentage else "b"


def variant_for(test: ABTest, subject: str) -> str:
    if test.winner in VARIANTS:
        return test.winner
    return assign_variant(subject, test.split_percentage)


def _delay_data(delay: dict | None) -> dict:
    delay = delay or {}
    return {
        "delayMinutes": delay.get("minutes", delay.get("delayMinutes", 0)) or 0,
        "delayHours": delay.get("hours", delay.get("delayHours", 0)) or 0,
        "delayDays": delay.get("days", delay.get("delayDays", 0)) or 0,
    }


def build_ab_test_definition(test: ABTest) -> tuple[list[dict], list[dict]]:
    """Workflow graph for a two-variant test: trigger, split, then delay and email per variant."""
    nodes = [
        {"id": "trigger", "type": "trigger", "data": {}},
        {
            "id": "split",
            "type": "split",
            "data": {"splitPercentage": test.split_percentage, "abTestId": test.id},
        },
    ]
    edges = [{"id": "e-trigger-split", "source": "trigger", "target": "split"}]
    templates = {"a": test.variant_a_template_id, "b": test.variant_b_template_id}  # type: ignore[attr-defined]
    delays = {"a": test.variant_a_delay, "b": test.variant_b_delay}
    for variant in VARIANTS:
        delay_id = f"delay-{variant}"
        email_id = f"email-{variant}"
        nodes.append({"id": delay_id, "type": "delay", "data": _delay_data(delays[variant])})
        nodes.append(
            {
                "id": email_id,
                "type": "email",
                "data": {"templateId": templates[variant], "abTestId": test.id, "variant": variant},
            }
        )
        edges.append(
            {
                "id": f"e-split-{variant}",
                "source": "split",
                "target": delay_id,
                "sourceHandle": variant,
            }
        )
        edges.append({"id": f"e-{delay_id}-{email_id}", "source": delay_id, "target": email_id})
    return nodes, edges


async def record_assignment(
    *,
    test_id: int,
    run: WorkflowRun,
    variant: str,
    subject_key: str,
    sent: bool,
) -> ABTestAssignment | None:
    test = await ABTest.get_or_none(id=test_id)
    if test is None:
        logger.warning("A/B test %s not found while recording run %s", test_id, run.id)
        return None
    assignment, created = await ABTestAssignment.get_or_create(
        run=run,
        defaults={"test": test, "variant": variant, "subject_key": subject_key, "sent": sent},
    )
    if not created and sent and not assignment.sent:
        assignment.sent = True  # type: ignore[assignment]
        await assignment.save()
    return assignment


async def ab_test_results(test: ABTest) -> dict:
    results: dict[str, dict] = {}
    for variant in VARIANTS:
        assigned = await ABTestAssignment.filter(test=test, variant=variant).count()
        sent = await ABTestAssignment.filter(test=test, variant=variant, sent=True).count()
        results[variant] = {"assigned": assigned, "sent": sent}
    return {
        "test_id": test.id,
        "name": test.name,
        "split_percentage": test.split_percentage,
        "winner": test.winner,
        "variants": results,
    }
