"""Unit tests for the plan history / variety context."""
from datetime import date

import pytest

from plan_store import InMemoryPlanStore
from tests.fixtures.plans import make_plan_document
from variety_advisor import (
    GENERIC_VARIETY_REQUIREMENT,
    MAX_MEAL_NAMES,
    RENDERED_INGREDIENTS,
    VarietyContext,
    build_variety_context,
    extract_history,
)

WEEK = date(2025, 1, 6)


class BrokenStore:
    def get_plan(self, user_id, week_key):
        raise RuntimeError("store offline")


@pytest.mark.priority_medium
@pytest.mark.unit
class TestExtractHistory:
    def test_dedupes_names_case_insensitively(self):
        first = make_plan_document(days=1, meal_names=["Beef Stew"])
        second = make_plan_document(days=1, meal_names=["beef stew"])
        context = extract_history([first, second])

        assert context.weeks_found == 2
        assert [name.lower() for name in context.meal_names].count("beef stew") == 1
        assert "Monday Oat Bowl" in context.meal_names

    def test_ingredient_heads(self):
        context = extract_history([make_plan_document(days=1)])
        assert "chicken" in context.ingredient_names
        assert "salmon" in context.ingredient_names
        assert "2 lbs chicken breast" not in context.ingredient_names

    def test_meal_name_cap(self):
        plan = {"meals": [{"dinner": {"name": f"Dish {i}"}} for i in range(MAX_MEAL_NAMES + 20)]}
        context = extract_history([plan])
        assert len(context.meal_names) == MAX_MEAL_NAMES

    def test_ignores_junk_entries(self):
        context = extract_history([{"meals": ["not a day", {"snacks": ["nope", {"name": "Nuts"}]}]}])
        assert context.meal_names == ["Nuts"]


@pytest.mark.priority_medium
@pytest.mark.unit
class TestRender:
    def test_empty_context_uses_generic_requirement(self):
        assert VarietyContext().render() == GENERIC_VARIETY_REQUIREMENT

    def test_history_block(self):
        context = VarietyContext(meal_names=["Beef Stew", "Pad Thai"], ingredient_names=["beef"], weeks_found=2)
        text = context.render()
        assert "last 2 weeks" in text
        assert "DO NOT reuse" in text
        assert "Beef Stew; Pad Thai" in text
        assert "beef" in text

    def test_rendered_ingredients_truncated(self):
        names = [f"food{i}" for i in range(RENDERED_INGREDIENTS + 10)]
        text = VarietyContext(ingredient_names=names, weeks_found=1).render()
        assert f"food{RENDERED_INGREDIENTS - 1}" in text
        assert f"food{RENDERED_INGREDIENTS}," not in text
        assert f"food{RENDERED_INGREDIENTS + 9}" not in text


@pytest.mark.priority_medium
@pytest.mark.unit
class TestBuildContext:
    def test_reads_previous_weeks_only(self):
        store = InMemoryPlanStore()
        store.write_plan("u1", "2024-12-30", make_plan_document(days=1, meal_names=["Last Week Chili"]))
        store.write_plan("u1", "2024-12-16", make_plan_document(days=1, meal_names=["Older Curry"]))
        store.write_plan("u1", "2025-01-06", make_plan_document(days=1, meal_names=["This Week Soup"]))
        store.write_plan("u1", "2024-10-28", make_plan_document(days=1, meal_names=["Ancient Pie"]))

        context = build_variety_context(store, "u1", WEEK)

        assert context.weeks_found == 2
        assert "Last Week Chili" in context.meal_names
        assert "Older Curry" in context.meal_names
        assert "This Week Soup" not in context.meal_names
        assert "Ancient Pie" not in context.meal_names

    def test_no_history(self):
        assert build_variety_context(InMemoryPlanStore(), "u1", WEEK).is_empty

    def test_store_failure_returns_empty_context(self):
        context = build_variety_context(BrokenStore(), "u1", WEEK)
        assert context.is_empty
        assert context.render() == GENERIC_VARIETY_REQUIREMENT
