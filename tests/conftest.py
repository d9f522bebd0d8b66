"""Shared test fixtures for the weekly blueprint pipeline tests."""
from datetime import datetime, timezone

import pytest

from collaborators import AllowAllEntitlements, NullNotifier
from generation_orchestrator import GenerationOrchestrator
from macro_recalculator import MacroRecalculator
from plan_store import InMemoryPlanStore
from schemas import NutritionProfile
from blueprint_pipeline import WeeklyBlueprintPipeline
from tests.fixtures.fakes import FakeGenerator, FakeLookup, RecordingSleep
from tests.fixtures.plans import plan_json

USER_ID = "user-1"
# A Wednesday; its week key is 2025-01-06
FIXED_NOW = datetime(2025, 1, 8, 12, 0, tzinfo=timezone.utc)
WEEK_KEY = "2025-01-06"


@pytest.fixture
def profile():
    """80 kg male with an explicit 2000 kcal goal on the balanced preset.

    Resolves to 2000 kcal / 125 g protein / 250 g carbs / 56 g fat.
    """
    return NutritionProfile(
        weight_kg=80,
        height_cm=180,
        age=35,
        sex="male",
        activity_level="moderate",
        dietary_preference="balanced",
        calorie_goal=2000,
        use_imperial=True,
    )


@pytest.fixture
def store(profile):
    store = InMemoryPlanStore()
    store.save_profile(USER_ID, profile)
    return store


@pytest.fixture
def no_sleep():
    return RecordingSleep()


@pytest.fixture
def fake_generator():
    return FakeGenerator([plan_json()])


@pytest.fixture
def fake_lookup():
    return FakeLookup()


@pytest.fixture
def orchestrator(fake_generator, no_sleep):
    return GenerationOrchestrator(fake_generator, sleep=no_sleep)


@pytest.fixture
def recalculator(store, fake_lookup, no_sleep):
    return MacroRecalculator(store, fake_lookup, sleep=no_sleep)


@pytest.fixture
def pipeline(store, orchestrator, recalculator):
    return WeeklyBlueprintPipeline(
        store=store,
        orchestrator=orchestrator,
        recalculator=recalculator,
        entitlements=AllowAllEntitlements(),
        notifier=NullNotifier(),
        tz_name="UTC",
        now=lambda: FIXED_NOW,
    )
