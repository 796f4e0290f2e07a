"""
Tests for instruction and listing prompt rendering.
"""
from allstar.pipeline.prompts import GRADER_ROLE, OUTPUT_CONTRACT, build_instructions, build_item_prompt

from conftest import make_feedback, make_listing


class TestBuildInstructions:
    """Tests for build_instructions function."""

    def test_no_feedback(self):
        prompt = build_instructions("Be strict.", [], [])

        assert prompt.startswith(GRADER_ROLE)
        assert "Be strict." in prompt
        assert "DISAGREEMENTS" not in prompt
        assert "WELL-GRADED" not in prompt
        assert prompt.endswith(OUTPUT_CONTRACT)

    def test_is_deterministic(self):
        disagreements = [make_feedback("Lamp", 80, "B", adjusted=40, notes="cracked")]
        agreements = [make_feedback("Bulb", 90, "A")]

        first = build_instructions("rubric", disagreements, agreements)
        second = build_instructions("rubric", disagreements, agreements)

        assert first == second

    def test_disagreements_before_agreements_in_given_order(self):
        disagreements = [make_feedback("First", adjusted=10), make_feedback("Second", adjusted=20)]
        agreements = [make_feedback("Third", 95, "A")]

        prompt = build_instructions("rubric", disagreements, agreements)

        assert prompt.index('"First"') < prompt.index('"Second"') < prompt.index('"Third"')
        assert prompt.index("PAST DISAGREEMENTS") < prompt.index("WELL-GRADED LISTINGS")

    def test_feedback_line_format(self):
        disagreements = [make_feedback("Lamp", 80, "B", adjusted=40, notes="cracked lens")]
        agreements = [make_feedback("Bulb", 90.5, "A")]

        prompt = build_instructions("rubric", disagreements, agreements)

        assert '- "Lamp": AI scored 80 (B), buyer adjusted to 40 - Notes: "cracked lens"' in prompt
        assert '- "Bulb": Score 90.5 (A)' in prompt

    def test_missing_adjusted_score(self):
        prompt = build_instructions("rubric", [make_feedback("Lamp")], [])

        assert "buyer adjusted to N/A" in prompt


class TestBuildItemPrompt:
    """Tests for the per-listing user message."""

    def test_defaults_for_missing_fields(self):
        listing = make_listing(1, price=None, image=None)

        prompt = build_item_prompt(listing)

        assert "Title: Headlight 1" in prompt
        assert "Price: N/A" in prompt
        assert "Condition: N/A" in prompt
        assert "Image: No" in prompt
        assert "Source: ebay" in prompt

    def test_image_present(self):
        listing = make_listing(2, image="https://img.test/2.jpg", seller_name="bob")

        prompt = build_item_prompt(listing)

        assert "Image: Yes (1)" in prompt
        assert "Seller: bob" in prompt
        assert "URL: https://www.ebay.test/itm/2" in prompt
