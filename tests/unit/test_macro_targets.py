"""Unit tests for calorie goal and macro target resolution."""
import pytest

from macro_targets import (
    DIET_PRESETS,
    activity_multiplier,
    adjusted_ratios,
    calculate_bmr,
    resolve_calorie_goal,
    resolve_macro_targets,
    resolve_preset,
    weight_trend,
)
from pipeline_errors import PreconditionFailedError
from schemas import MacroOverride, NutritionProfile


def _profile(**overrides):
    fields = dict(weight_kg=80, height_cm=180, age=35, sex="male", activity_level="moderate")
    fields.update(overrides)
    return NutritionProfile(**fields)


@pytest.mark.priority_high
@pytest.mark.unit
class TestCalorieGoal:
    def test_bmr_male(self):
        assert calculate_bmr(_profile()) == pytest.approx(1755.0)

    def test_bmr_missing_sex_uses_female_constant(self):
        assert calculate_bmr(_profile(sex=None)) == pytest.approx(1589.0)

    def test_bmr_requires_body_metrics(self):
        with pytest.raises(PreconditionFailedError) as exc:
            calculate_bmr(_profile(age=None))
        assert "weight, height, and age" in exc.value.message

    def test_derived_goal_uses_activity_multiplier(self):
        # 1755 * 1.55 = 2720.25
        assert resolve_calorie_goal(_profile()) == 2720

    def test_explicit_goal_wins(self):
        assert resolve_calorie_goal(_profile(calorie_goal=2150.4)) == 2150

    def test_explicit_goal_without_body_metrics(self):
        profile = NutritionProfile(calorie_goal=1800)
        assert resolve_calorie_goal(profile) == 1800

    @pytest.mark.parametrize("goal", [900, 6000])
    def test_goal_outside_band_is_precondition_failure(self, goal):
        with pytest.raises(PreconditionFailedError):
            resolve_calorie_goal(_profile(calorie_goal=goal))

    def test_zero_goal_falls_back_to_bmr(self):
        assert resolve_calorie_goal(_profile(calorie_goal=0)) == 2720

    @pytest.mark.parametrize(
        "level,expected",
        [("sedentary", 1.2), ("Very Active", 1.9), ("lightly-active", 1.375), ("unknown", 1.55), (None, 1.55)],
    )
    def test_activity_multiplier(self, level, expected):
        assert activity_multiplier(level) == expected


@pytest.mark.priority_high
@pytest.mark.unit
class TestPresets:
    @pytest.mark.parametrize(
        "name,key",
        [
            ("keto", "ketogenic"),
            ("Ketogenic", "ketogenic"),
            ("High Protein", "high_protein"),
            ("plant-based", "plant_based"),
            ("low carb", "moderate_low_carb"),
            (None, "balanced"),
        ],
    )
    def test_resolve_preset(self, name, key):
        assert resolve_preset(name).key == key

    def test_unknown_preset(self):
        with pytest.raises(PreconditionFailedError):
            resolve_preset("fruitarian")

    def test_strict_low_carb_ignores_trend(self):
        keto = DIET_PRESETS["ketogenic"]
        ratios = adjusted_ratios(keto, "lose")
        assert ratios["protein"] == pytest.approx(keto.protein)
        assert ratios["carbs"] == pytest.approx(keto.carbs)

    def test_lose_trend_shifts_carbs_to_protein(self):
        balanced = DIET_PRESETS["balanced"]
        ratios = adjusted_ratios(balanced, "lose")
        assert ratios["protein"] == pytest.approx(0.30)
        assert ratios["carbs"] == pytest.approx(0.45)
        assert sum(ratios.values()) == pytest.approx(1.0)

    def test_weight_trend_dead_band(self):
        assert weight_trend(_profile(goal_weight_kg=80.05)) == "maintain"
        assert weight_trend(_profile(goal_weight_kg=70)) == "lose"
        assert weight_trend(_profile(goal_weight_kg=90)) == "gain"


@pytest.mark.priority_high
@pytest.mark.unit
class TestMacroTargets:
    def test_balanced_split(self, profile):
        target = resolve_macro_targets(profile, 2000)
        assert (target.protein_grams, target.carbs_grams, target.fat_grams) == (125, 250, 56)
        assert target.source == "preset"
        assert target.preset == "balanced"
        assert "Balanced focus" in target.recommendation

    def test_protein_clamped_to_per_kg_band(self):
        # 25% of 2720 kcal is 170 g but 80 kg caps protein at 2.0 g/kg
        target = resolve_macro_targets(_profile(), 2720)
        assert target.protein_grams == 160

    def test_fat_floor(self):
        target = resolve_macro_targets(_profile(dietary_preference="low_fat"), 2000)
        assert target.fat_grams * 9 >= 2000 * 0.20 - 9

    def test_valid_custom_override(self):
        profile = _profile(macro_override=MacroOverride(protein_grams=150, carbs_grams=200, fat_grams=67))
        target = resolve_macro_targets(profile, 2000)
        assert target.source == "custom"
        assert (target.protein_grams, target.carbs_grams, target.fat_grams) == (150, 200, 67)

    def test_custom_override_outside_tolerance_is_ignored(self):
        profile = _profile(macro_override=MacroOverride(protein_grams=300, carbs_grams=300, fat_grams=100))
        target = resolve_macro_targets(profile, 2000)
        assert target.source == "preset"

    def test_custom_override_requires_positive_protein(self):
        profile = _profile(macro_override=MacroOverride(protein_grams=0, carbs_grams=400, fat_grams=45))
        assert resolve_macro_targets(profile, 2000).source == "preset"

    def test_unknown_preference_is_precondition_failure(self):
        with pytest.raises(PreconditionFailedError):
            resolve_macro_targets(_profile(dietary_preference="moon diet"), 2000)

    def test_scaled_targets(self, profile):
        target = resolve_macro_targets(profile, 2000)
        assert target.scaled(4) == {"calories": 8000, "protein": 500, "carbs": 1000, "fat": 224}


@pytest.mark.priority_high
@pytest.mark.unit
class TestMacroEnergyBalance:
    @pytest.mark.parametrize("calories", [1800, 2000, 2800])
    @pytest.mark.parametrize("goal_weight_kg,trend", [(70, "lose"), (90, "gain"), (80, "maintain")])
    @pytest.mark.parametrize("preset", sorted(DIET_PRESETS))
    def test_grams_add_up_to_calorie_goal(self, preset, goal_weight_kg, trend, calories):
        profile = _profile(dietary_preference=preset, goal_weight_kg=goal_weight_kg)
        assert weight_trend(profile) == trend

        target = resolve_macro_targets(profile, calories)

        energy = target.protein_grams * 4 + target.carbs_grams * 4 + target.fat_grams * 9
        # Rounding each macro to whole grams moves the total by at most 8.5 kcal
        assert energy == pytest.approx(calories, abs=9)
        assert min(target.protein_grams, target.carbs_grams, target.fat_grams) >= 0
        assert target.preset == preset
