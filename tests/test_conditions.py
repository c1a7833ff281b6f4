# tests/test_conditions.py
"""Tests for condition descriptors, typed conditions and goal checks."""

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given
from hypothesis import strategies as st

from conftest import run_db
from models import Contact, ContactActivity, Purchase
from services.conditions import check_goal, contact_attributes, evaluate, evaluate_condition_type

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class TestEvaluate:
    """Descriptor operators against a plain attribute map."""

    @pytest.mark.parametrize(
        ("operator", "value", "expected"),
        [
            ("equals", "VIP", True),
            ("not_equals", "vip", False),
            ("contains", "i", True),
            ("not_contains", "x", True),
            ("starts_with", "v", True),
            ("ends_with", "p", True),
            ("is_set", None, True),
            ("is_not_set", None, False),
            ("is_empty", None, False),
            ("is_not_empty", None, True),
            ("in_list", ["gold", "vip"], True),
            ("not_in_list", ["gold"], True),
        ],
    )
    def test_string_operators(self, operator: str, value, expected: bool) -> None:
        condition = {"field": "segment", "operator": operator, "value": value}
        assert evaluate({"segment": "vip"}, condition) is expected

    def test_numeric_comparison(self) -> None:
        attrs = {"emailsOpened": 3}
        assert evaluate(attrs, {"field": "emailsOpened", "operator": "greater_than", "value": "2"}) is True
        assert evaluate(attrs, {"field": "emailsOpened", "operator": "less_than", "value": 3}) is False

    def test_numeric_comparison_with_non_number_is_false(self) -> None:
        attrs = {"emailsOpened": "many"}
        assert evaluate(attrs, {"field": "emailsOpened", "operator": "greater_than", "value": 1}) is False
        assert evaluate(attrs, {"field": "emailsOpened", "operator": "less_than", "value": 1}) is False

    def test_contains_searches_lists(self) -> None:
        attrs = {"tags": ["Early-Bird", "newsletter"]}
        assert evaluate(attrs, {"field": "tags", "operator": "contains", "value": "early"}) is True
        assert evaluate(attrs, {"field": "tags", "operator": "in_list", "value": ["newsletter"]}) is True

    def test_missing_field(self) -> None:
        assert evaluate({}, {"field": "firstName", "operator": "is_not_set"}) is True
        assert evaluate({}, {"field": "firstName", "operator": "is_empty"}) is True

    def test_unknown_operator_passes(self) -> None:
        assert evaluate({"a": 1}, {"field": "a", "operator": "regex", "value": ".*"}) is True

    @given(actual=st.text(max_size=20), expected=st.text(max_size=20))
    def test_equals_and_not_equals_are_complements(self, actual: str, expected: str) -> None:
        attrs = {"f": actual}
        equal = evaluate(attrs, {"field": "f", "operator": "equals", "value": expected})
        different = evaluate(attrs, {"field": "f", "operator": "not_equals", "value": expected})
        assert equal is not different


class TestContactConditions:
    def test_attributes_include_derived_fields(self) -> None:
        async def scenario():
            contact = await Contact.create(
                store_id="s1",
                email="ann@example.com",
                first_name="Ann",
                tags=["vip"],
                emails_sent=4,
                emails_opened=1,
                subscribed_at=NOW - timedelta(days=10),
                custom_fields={"plan": "gold"},
            )
            return contact_attributes(contact, {"customerEmail": contact.email}, NOW)

        attrs = run_db(scenario)
        assert attrs["openRate"] == 25
        assert attrs["tagCount"] == 1
        assert attrs["daysSinceSignup"] == 10
        assert attrs["daysSinceLastOpen"] is None
        assert attrs["plan"] == "gold"
        assert attrs["fullName"] == "Ann"

    def test_typed_conditions(self) -> None:
        async def scenario():
            contact = await Contact.create(
                store_id="s1",
                email="bo@example.com",
                tags=["VIP"],
                subscribed_at=NOW - timedelta(days=40),
            )
            await ContactActivity.create(contact=contact, activity_type="email_clicked", metadata={"url": "https://shop/x"})
            await Purchase.create(store_id="s1", customer_email="bo@example.com", product_id="p-1")
            kwargs = {"contact": contact, "store_id": "s1", "customer_email": contact.email, "now": NOW}
            return {
                "opened": await evaluate_condition_type("opened_email", {}, **kwargs),
                "clicked": await evaluate_condition_type("clicked_link", {"linkUrl": "shop/x"}, **kwargs),
                "clicked_other": await evaluate_condition_type("clicked_link", {"linkUrl": "other"}, **kwargs),
                "tag": await evaluate_condition_type("has_tag", {"tagName": "vip"}, **kwargs),
                "bought": await evaluate_condition_type("has_purchased_product", {"productId": "p-1"}, **kwargs),
                "bought_other": await evaluate_condition_type("has_purchased_product", {"productId": "p-2"}, **kwargs),
                "old": await evaluate_condition_type(
                    "time_based", {"timeField": "subscribedAt", "timeDays": 30}, **kwargs
                ),
            }

        results = run_db(scenario)
        assert results == {
            "opened": False,
            "clicked": True,
            "clicked_other": False,
            "tag": True,
            "bought": True,
            "bought_other": False,
            "old": True,
        }

    def test_goals(self) -> None:
        async def scenario():
            contact = await Contact.create(store_id="s1", email="cy@example.com", tags=["customer"])
            await ContactActivity.create(contact=contact, activity_type="email_opened")
            kwargs = {"contact": contact, "store_id": "s1", "customer_email": contact.email}
            return (
                await check_goal("has_opened_email", None, **kwargs),
                await check_goal("tag_applied", "customer", **kwargs),
                await check_goal("has_purchased", None, **kwargs),
                await check_goal("unknown", None, **kwargs),
            )

        assert run_db(scenario) == (True, True, False, False)
