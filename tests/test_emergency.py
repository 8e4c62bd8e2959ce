"""Crisis classifier, safety catalog loading and emotion tagging."""

from __future__ import annotations

import json

import pytest

from companion.core.errors import ConfigurationError
from companion.processing.emergency import EmergencyClassifier, SafetyCatalog
from companion.processing.emotion import DEFAULT_EMOTION, infer_emotion


class TestEmergencyClassifier:
    @pytest.mark.parametrize("text", [
        "I want to kill myself",
        "Sometimes I think I'd be BETTER OFF DEAD",
        "thinking about self-harm again",
        "I just want to end it all tonight",
    ])
    def test_crisis_phrases_are_detected(self, classifier, text):
        result = classifier.assess(text)

        assert result.is_emergency
        assert result.confidence == pytest.approx(0.9)
        assert result.matched_signals
        assert "988" in result.recommended_action
        assert "741741" in result.recommended_action
        assert "911" in result.recommended_action

    def test_ordinary_message_is_not_an_emergency(self, classifier):
        result = classifier.assess("I'm anxious about work tomorrow")

        assert not result.is_emergency
        assert result.confidence == 0.0
        assert result.matched_signals == frozenset()
        assert result.recommended_action == ""

    def test_all_matching_phrases_are_reported(self, classifier):
        result = classifier.assess("I feel suicidal and want to die")
        assert {"suicidal", "want to die"} <= result.matched_signals

    def test_assessment_is_deterministic(self, classifier):
        text = "no point living anymore"
        assert classifier.assess(text) == classifier.assess(text)

    def test_resources_come_from_catalog(self, classifier):
        result = classifier.assess("suicide")
        phones = [r.phone for r in result.resources]
        assert "988" in phones


class TestSafetyCatalog:
    def test_loads_custom_file(self, tmp_path):
        path = tmp_path / "safety.json"
        path.write_text(json.dumps({
            "phrases": ["Red Flag"],
            "message": "Call 988 now.",
            "confidence": 0.8,
        }))

        classifier = EmergencyClassifier(SafetyCatalog.load(path))
        result = classifier.assess("this is a red flag")

        assert result.is_emergency
        assert result.confidence == pytest.approx(0.8)
        assert result.recommended_action == "Call 988 now."
        assert classifier.assess("suicide").is_emergency is False

    def test_missing_file_is_a_configuration_error(self, tmp_path):
        with pytest.raises(ConfigurationError):
            SafetyCatalog.load(tmp_path / "absent.json")

    def test_empty_phrase_list_is_rejected(self):
        with pytest.raises(ConfigurationError):
            SafetyCatalog.from_dict({"phrases": [], "message": "x"})

    def test_missing_message_is_rejected(self):
        with pytest.raises(ConfigurationError):
            SafetyCatalog.from_dict({"phrases": ["a"]})


class TestEmotionTagging:
    @pytest.mark.parametrize("text,expected", [
        ("Congratulations, that's wonderful news!", "celebratory"),
        ("Let's breathe together for a moment.", "calming"),
        ("I understand how hard this is.", "supportive"),
        ("Sending you warmth and care.", "warm"),
        ("Tell me more.", DEFAULT_EMOTION),
    ])
    def test_keyword_families(self, text, expected):
        assert infer_emotion(text) == expected

    def test_earlier_family_wins(self):
        assert infer_emotion("Breathe, and celebrate this step") == "celebratory"

    def test_empty_text_defaults(self):
        assert infer_emotion("") == DEFAULT_EMOTION
