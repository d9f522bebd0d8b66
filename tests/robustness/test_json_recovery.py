"""Robustness tests for recovering JSON from messy generator output."""
import pytest

import json_recovery
from json_recovery import (
    MAX_REPAIR_PASSES,
    JSONRecoveryError,
    clean_model_output,
    close_unbalanced,
    insert_missing_separators,
    normalize_single_quotes,
    parse_model_json,
    quote_bare_keys,
    strip_trailing_commas,
)
from tests.fixtures.plans import plan_json


@pytest.mark.priority_high
@pytest.mark.robustness
class TestCleanOutput:
    def test_strips_code_fences(self):
        assert clean_model_output('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_strips_surrounding_prose(self):
        raw = 'Here is your plan:\n{"a": {"b": 2}}\nEnjoy the week!'
        assert clean_model_output(raw) == '{"a": {"b": 2}}'

    def test_keeps_truncated_tail(self):
        raw = '{"meals": [{"day": "Monday"}, {"day": "Tue'
        assert clean_model_output(raw) == raw

    def test_none_is_empty(self):
        assert clean_model_output(None) == ""


@pytest.mark.priority_high
@pytest.mark.robustness
class TestRepairPasses:
    def test_quote_bare_keys(self):
        assert quote_bare_keys('{name: "x", calories: 5}') == '{"name": "x", "calories": 5}'

    def test_quote_bare_key_at_line_start(self):
        assert quote_bare_keys('{"a": [1]\n b: 2}') == '{"a": [1]\n "b": 2}'

    def test_strip_trailing_commas(self):
        assert strip_trailing_commas('{"a": [1, 2,],}') == '{"a": [1, 2]}'

    def test_single_quotes_become_double(self):
        assert normalize_single_quotes("{'name': 'Oats'}") == '{"name": "Oats"}'

    def test_apostrophes_inside_words_survive(self):
        text = '{"name": "Mom\'s Stew"}'
        assert normalize_single_quotes(text) == text

    def test_missing_separators(self):
        assert insert_missing_separators('["x" "y"]') == '["x", "y"]'
        assert insert_missing_separators('[{"a": 1} {"a": 2}]') == '[{"a": 1}, {"a": 2}]'

    def test_string_content_is_never_rewritten(self):
        text = '{"step": "Rest, tip: cover, \'to taste\', [1,]"}'
        for transform in (quote_bare_keys, normalize_single_quotes, strip_trailing_commas, insert_missing_separators):
            assert transform(text) == text

    def test_close_unbalanced(self):
        assert close_unbalanced('{"a": [1, 2,') == '{"a": [1, 2]}'
        assert close_unbalanced('{"name": "Oat') == '{"name": "Oat"}'


@pytest.mark.priority_high
@pytest.mark.robustness
class TestParseModelJson:
    def test_valid_json_needs_no_passes(self):
        parsed, passes = parse_model_json('{"meals": []}')
        assert parsed == {"meals": []}
        assert passes == 0

    def test_fenced_plan(self):
        parsed, passes = parse_model_json(f"```json\n{plan_json()}\n```")
        assert len(parsed["meals"]) == 7
        assert passes == 0

    def test_bare_keys_and_trailing_commas(self):
        parsed, passes = parse_model_json('{meals: [{day: "Monday", snacks: [],},],}')
        assert parsed == {"meals": [{"day": "Monday", "snacks": []}]}
        assert passes == 1

    def test_single_quoted_document(self):
        parsed, _ = parse_model_json("{'day': 'Monday', 'name': 'Oat Bowl'}")
        assert parsed == {"day": "Monday", "name": "Oat Bowl"}

    def test_truncated_body_closed_on_last_pass(self):
        parsed, passes = parse_model_json('{"meals": [{"day": "Monday", "name": "Oat')
        assert parsed == {"meals": [{"day": "Monday", "name": "Oat"}]}
        assert passes == MAX_REPAIR_PASSES

    def test_truncated_after_comma(self):
        parsed, _ = parse_model_json('{"ingredients": ["3 eggs", "1 cup milk",')
        assert parsed == {"ingredients": ["3 eggs", "1 cup milk"]}

    @pytest.mark.parametrize("raw", ["", "I'm sorry, I can't help with that.", "not json at all"])
    def test_unrecoverable(self, raw):
        with pytest.raises(JSONRecoveryError) as exc:
            parse_model_json(raw)
        assert exc.value.passes == MAX_REPAIR_PASSES

    def test_custom_pass_budget(self):
        with pytest.raises(JSONRecoveryError) as exc:
            parse_model_json("nope", max_passes=2)
        assert exc.value.passes == 2

    def test_bare_keys_single_quotes_and_trailing_comma(self):
        parsed, passes = parse_model_json("{name: 'Omelet', qty: 2,}")
        assert parsed == {"name": "Omelet", "qty": 2}
        assert passes == 1

    def test_step_text_survives_trailing_comma_fix(self):
        raw = '{"meals": [{"day": "Monday", "steps": ["Whisk eggs, tip: add milk"]}],}'
        parsed, passes = parse_model_json(raw)
        assert parsed == {"meals": [{"day": "Monday", "steps": ["Whisk eggs, tip: add milk"]}]}
        assert passes == 1

    def test_quoted_phrase_inside_step_survives(self):
        raw = '{"meals": [{"day": "Monday", "steps": ["Season, \'to taste\', then serve"]}],}'
        parsed, _ = parse_model_json(raw)
        assert parsed["meals"][0]["steps"] == ["Season, 'to taste', then serve"]


@pytest.mark.priority_medium
@pytest.mark.robustness
class TestJsonRepairFallback:
    def test_raw_newline_in_string_recovered(self):
        parsed, passes = parse_model_json('{"name": "Oat\nBowl", "calories": 350}')
        assert parsed["calories"] == 350
        assert parsed["name"].startswith("Oat")
        assert passes == MAX_REPAIR_PASSES

    def test_oversized_input_skips_fallback(self, monkeypatch):
        monkeypatch.setattr(json_recovery, "JSON_REPAIR_MAX_CHARS", 10)
        with pytest.raises(JSONRecoveryError):
            parse_model_json('{"name": "Oat\nBowl", "calories": 350}')
