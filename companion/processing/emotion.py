"""
Sage Companion — Emotion Tagging

Coarse presentation label for generated text. A keyword heuristic kept
behind one function so a real sentiment model can replace it without
touching the orchestration code.
"""

from __future__ import annotations

from typing import Tuple

DEFAULT_EMOTION = "supportive"

# First family with a hit wins
EMOTION_FAMILIES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("celebratory", ("celebrate", "wonderful", "congratulations")),
    ("calming", ("calm", "breathe", "peaceful")),
    ("supportive", ("understand", "hear you", "support")),
    ("warm", ("warmth", "care", "love")),
)


def infer_emotion(text: str) -> str:
    lowered = (text or "").lower()
    for emotion, keywords in EMOTION_FAMILIES:
        if any(k in lowered for k in keywords):
            return emotion
    return DEFAULT_EMOTION
