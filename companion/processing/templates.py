"""
Sage Companion — Hand-Authored Replies

Every fixed piece of copy the companion can say without a network call:
topic templates for the local pattern strategy, welcome messages, the
"technical difficulty" fallbacks, and the avatar greeting builder.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Tuple

from ..core.models import SessionContext


@dataclass(frozen=True)
class Template:
    text: str
    emotion: str
    # Phrasing for a continuing conversation, when it differs
    returning: Optional[str] = None

    def render(self, continuing: bool) -> str:
        if continuing and self.returning:
            return self.returning
        return self.text


@dataclass(frozen=True)
class TopicRule:
    name: str
    keywords: Tuple[str, ...]
    # Match keywords as whole words ("hi" must not match "this")
    whole_words: bool = False
    prefixes: Tuple[str, ...] = ()

    def matches(self, lowered: str) -> bool:
        if any(lowered.startswith(p) for p in self.prefixes):
            return True
        if self.whole_words:
            return any(re.search(rf"\b{re.escape(k)}\b", lowered) for k in self.keywords)
        return any(k in lowered for k in self.keywords)


# ---------------------------------------------------------------------------
# Topic classification (first match wins)
# ---------------------------------------------------------------------------

TOPIC_RULES: Tuple[TopicRule, ...] = (
    TopicRule("anxiety", ("anxious", "anxiety", "worried", "panic")),
    TopicRule("sadness", ("sad", "depressed", "down", "hopeless", "lonely")),
    TopicRule("stress", ("stress", "overwhelmed", "busy", "pressure")),
    TopicRule(
        "greeting",
        ("hello", "hi", "hey"),
        whole_words=True,
        prefixes=("good morning", "good afternoon", "good evening"),
    ),
    TopicRule("checkin", ("how are you", "how do you feel")),
    TopicRule("work", ("work", "job", "boss", "colleague", "meeting")),
    TopicRule(
        "relationships",
        ("relationship", "partner", "boyfriend", "girlfriend", "husband", "wife", "friend", "family"),
    ),
    TopicRule("sleep", ("tired", "exhausted", "sleep", "insomnia", "can't sleep")),
    TopicRule("gratitude", ("thank you", "thanks")),
    TopicRule("positive", ("good", "better", "happy", "great")),
)

DEFAULT_TOPIC = "default"


def classify_topic(message: str) -> Optional[str]:
    lowered = (message or "").lower()
    for rule in TOPIC_RULES:
        if rule.matches(lowered):
            return rule.name
    return None


TOPIC_TEMPLATES = {
    "anxiety": (
        Template(
            "I can hear the anxiety in what you're sharing. Thank you for trusting me with this feeling. "
            "Anxiety can feel so overwhelming, but you're already taking a brave step by talking about it. "
            "What does this anxiety feel like in your body right now?",
            "calming",
            returning=(
                "I notice anxiety is coming up for you again. That's completely understandable - anxiety has "
                "a way of visiting us when we least expect it. What feels different about this anxious feeling "
                "compared to what we talked about before?"
            ),
        ),
        Template(
            "Anxiety can feel like such a heavy visitor, can't it? I want you to know that what you're feeling "
            "is valid and you're not alone in this. Let's take this moment by moment. Can you tell me what's "
            "happening in your world that might be contributing to these anxious feelings?",
            "supportive",
        ),
        Template(
            "I hear you, and I want you to know that sharing your anxiety with me takes real courage. Sometimes "
            "anxiety tries to convince us we're in danger when we're actually safe. Right now, in this moment, "
            "you're here with me and you're okay. What would feel most supportive for you right now?",
            "warm",
        ),
    ),
    "sadness": (
        Template(
            "I can sense the heaviness you're carrying right now. Depression can make even the smallest things "
            "feel impossible, and I want you to know that what you're experiencing is real and valid. You've "
            "shown incredible strength just by reaching out. What's one small thing that felt manageable for "
            "you today?",
            "supportive",
            returning=(
                "I can feel the weight in your words, and I'm honored that you continue to share these difficult "
                "feelings with me. Depression can make everything feel so much harder. How has your energy been "
                "since we last talked?"
            ),
        ),
        Template(
            "Thank you for letting me into this difficult space with you. When we're feeling this low, it can "
            "be hard to remember that these feelings, as intense as they are, will shift. You don't have to "
            "carry this alone. Is there anything specific that's been weighing on your heart lately?",
            "warm",
        ),
    ),
    "stress": (
        Template(
            "I can hear how much you're juggling right now. Stress has this way of making everything feel "
            "urgent and overwhelming. You're managing more than you should have to. What's taking up the most "
            "mental space for you today?",
            "supportive",
            returning=(
                "It sounds like stress is really piling up for you. I remember you mentioning feeling overwhelmed "
                "before - has anything shifted since then, or are you feeling similar pressures?"
            ),
        ),
        Template(
            "The weight of stress can be so exhausting, can't it? It's like carrying invisible bags that get "
            "heavier throughout the day. It's okay to feel overwhelmed - it shows how much you care about "
            "things. What's one thing you could set down, even just for today?",
            "calming",
        ),
    ),
    "greeting": (
        Template(
            "Hello! It's so nice to meet you. I'm Sage, and I'm here to listen and support you in whatever way "
            "feels helpful. What's on your mind today?",
            "warm",
            returning=(
                "Hello again! It's wonderful to see you back. I've been thinking about our previous "
                "conversations. How are you feeling today?"
            ),
        ),
        Template(
            "Hi there! I'm really glad you reached out today. There's something powerful about taking that "
            "first step to connect. What would you like to talk about?",
            "supportive",
        ),
    ),
    "checkin": (
        Template(
            "Thank you for asking! I'm here and ready to focus entirely on you and whatever you're experiencing. "
            "I find meaning in being able to support people through their journeys. But I'm much more curious "
            "about how you're doing. What's been on your mind lately?",
            "warm",
        ),
    ),
    "work": (
        Template(
            "Work can be such a significant part of our lives, and when it's stressful, it really impacts "
            "everything else. I can hear that something about your work situation is weighing on you. What's "
            "been the most challenging part lately?",
            "supportive",
        ),
        Template(
            "Workplace stress can feel so consuming sometimes. It sounds like you're dealing with some "
            "difficult dynamics there. What would feel most helpful to talk through - is it the workload, "
            "relationships, or something else?",
            "calming",
        ),
    ),
    "relationships": (
        Template(
            "Relationships can bring us such joy and such pain, sometimes even at the same time. I can sense "
            "this relationship is important to you and something about it is on your heart. What's been "
            "happening that you'd like to share?",
            "supportive",
        ),
        Template(
            "Human connections are so complex and meaningful. It sounds like you're navigating something "
            "challenging with someone who matters to you. I'm here to listen without judgment. What's been "
            "weighing on you?",
            "warm",
        ),
    ),
    "sleep": (
        Template(
            "Exhaustion can make everything feel so much harder, can't it? When we're not getting the rest we "
            "need, it impacts our mood, our thinking, our ability to cope with stress. What's been affecting "
            "your sleep or energy lately?",
            "calming",
        ),
        Template(
            "Being tired all the time is such a heavy burden to carry. It can make even simple things feel "
            "overwhelming. What you're experiencing is valid. What do you think might be contributing to your "
            "exhaustion?",
            "supportive",
        ),
    ),
    "gratitude": (
        Template(
            "You're so welcome. It means a lot to me that our conversation has been helpful. That's exactly "
            "why I'm here - to support you through whatever you're experiencing. What else would be helpful to "
            "talk about?",
            "warm",
        ),
    ),
    "positive": (
        Template(
            "There's something lovely in your energy today, and I want to celebrate that with you! These good "
            "moments are so precious and important to notice. What's been bringing you joy or peace lately?",
            "celebratory",
            returning=(
                "I'm so glad to hear there's some lightness in your voice today! It's beautiful to witness these "
                "brighter moments, especially knowing some of the challenges you've been facing. What's "
                "contributing to this shift for you?"
            ),
        ),
        Template(
            "Your positive energy is contagious! I love hearing this brightness from you. Sometimes when we're "
            "feeling good, it can help to really soak it in and notice what's different. What do you think has "
            "helped create this good feeling?",
            "warm",
        ),
    ),
    DEFAULT_TOPIC: (
        Template(
            "Thank you for sharing that with me. I can sense there's a lot beneath the surface of what you're "
            "saying. Your feelings and experiences matter deeply. What feels most important for you to talk "
            "about right now?",
            "supportive",
            returning=(
                "I've been thinking about our conversation, and I'm grateful you keep sharing with me. There's "
                "something different in what you're telling me today. Help me understand what's on your mind "
                "right now."
            ),
        ),
        Template(
            "I'm really listening to what you're saying, and I can hear the trust you're placing in me by "
            "sharing this. Your inner world seems rich and complex. What would feel most helpful to explore "
            "together?",
            "warm",
            returning=(
                "I notice each time we talk, you bring such thoughtfulness to what you share. What you're telling "
                "me now - how does it connect to how you've been feeling lately?"
            ),
        ),
        Template(
            "There's wisdom in what you're sharing, even if it doesn't feel that way right now. I'm curious - as "
            "you reflect on what you just told me, what feels most true or important about it for you?",
            "supportive",
        ),
    ),
}


# ---------------------------------------------------------------------------
# Static fallbacks (no generation available at all)
# ---------------------------------------------------------------------------

FALLBACK_TEMPLATES: Tuple[Template, ...] = (
    Template(
        "I want to give you the thoughtful response you deserve, but I'm having some technical difficulties "
        "right now. What I can tell you is that I'm here, I'm listening, and what you're sharing matters to me. "
        "Can you tell me more about what's on your heart?",
        "supportive",
    ),
    Template(
        "I'm experiencing some challenges with my processing right now, but I don't want that to stop our "
        "conversation. Your feelings and thoughts are important, and I want to make sure you feel heard. What's "
        "the most important thing you'd like me to know about how you're doing?",
        "supportive",
    ),
    Template(
        "Even though I'm having some technical hiccups, I want you to know that reaching out and sharing with me "
        "shows real courage. I may not have the perfect response right now, but I'm genuinely interested in "
        "understanding your experience. What feels most pressing for you today?",
        "supportive",
    ),
)

PIPELINE_ERROR_REPLY = (
    "I'm having a bit of trouble processing your message right now, but I want you to know I'm still here "
    "with you. Sometimes technology has hiccups, but that doesn't change the fact that what you're sharing is "
    "important. Can you try sharing that thought with me again, or would you like to talk about something else?"
)


# ---------------------------------------------------------------------------
# Welcome messages (by recent-mood bucket)
# ---------------------------------------------------------------------------

WELCOME_LOW = (
    "Hello, I'm Sage. I can sense you might be going through a difficult time right now. I'm here to listen "
    "and support you. How are you feeling at this moment?"
)
WELCOME_NEUTRAL = (
    "Hello! I'm Sage, your personal wellbeing companion. I'm here to listen, support, and chat with you about "
    "anything on your mind. How are you doing today?"
)
WELCOME_HIGH = (
    "Hi there! I'm Sage, your wellbeing companion. I can sense you're feeling positive today - that's "
    "wonderful! I'm here to chat and support your journey. What's bringing you joy right now?"
)


def mood_bucket(recent_mood: Optional[int]) -> str:
    if recent_mood is None:
        return "neutral"
    if recent_mood <= 3:
        return "low"
    if recent_mood >= 8:
        return "high"
    return "neutral"


def welcome_message(context: SessionContext) -> str:
    bucket = mood_bucket(context.recent_mood)
    if bucket == "low":
        return WELCOME_LOW
    if bucket == "high":
        return WELCOME_HIGH
    return WELCOME_NEUTRAL


# ---------------------------------------------------------------------------
# Avatar greeting
# ---------------------------------------------------------------------------

AVATAR_BASE_GREETING = (
    "Hello! I'm Sage, your AI wellbeing companion. I'm here to support you on your mental health journey."
)


def avatar_greeting(context: Optional[SessionContext]) -> str:
    if context is None:
        return AVATAR_BASE_GREETING + " How are you feeling today?"

    parts = []
    mood = context.recent_mood
    if mood is not None:
        if mood >= 7:
            parts.append("I see you've been feeling quite positive lately - that's wonderful!")
        elif mood <= 3:
            parts.append("I noticed you might be going through a challenging time. I'm here to listen and support you.")
        else:
            parts.append("I see you've been tracking your mood - that's a great step in self-awareness.")

    done = len(context.completed_activities)
    if done:
        parts.append(f"I'm impressed that you've completed {done} wellbeing activit{'ies' if done > 1 else 'y'}!")

    parts.append("What would you like to talk about today?")
    return " ".join([AVATAR_BASE_GREETING, *parts])
