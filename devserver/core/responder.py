"""Deterministic rule-based assistant for the reference server.

Matches the user's message against topic patterns and returns a canned,
markdown-formatted reply with display metadata. Emergency phrases always
win over other topics. No model is called.
"""

import re
from dataclasses import dataclass

import structlog

from carechat.api.schemas import AssistantReply, MessageMetadata, utcnow

logger = structlog.get_logger(__name__)

MODEL_NAME = "carechat-dev-responder"


@dataclass
class Topic:
    name: str
    patterns: list[re.Pattern]
    reply: str
    confidence: float


_EMERGENCY_PATTERNS = [
    re.compile(r"chest\s+pain", re.IGNORECASE),
    re.compile(r"can'?t\s+breathe|shortness\s+of\s+breath|difficulty\s+breathing", re.IGNORECASE),
    re.compile(r"\bstroke\b|face\s+droop", re.IGNORECASE),
    re.compile(r"suicid|kill\s+myself|self[-\s]?harm", re.IGNORECASE),
    re.compile(r"unconscious|severe\s+bleeding", re.IGNORECASE),
]

EMERGENCY_REPLY = (
    "**This may be an emergency.** Please call your local emergency number "
    "or go to the nearest emergency department now. Do not wait for an "
    "online reply."
)

_TOPICS = [
    Topic(
        name="fever",
        patterns=[re.compile(r"\b(fever\w*|temperature|chills)\b", re.IGNORECASE)],
        reply=(
            "A fever is usually the body fighting an infection.\n\n"
            "- Rest and drink plenty of fluids\n"
            "- Monitor your temperature every few hours\n"
            "- Seek care if it stays above 39.4 °C (103 °F) or lasts more than 3 days"
        ),
        confidence=82,
    ),
    Topic(
        name="headache",
        patterns=[re.compile(r"headache|migraine", re.IGNORECASE)],
        reply=(
            "Most headaches are caused by tension, dehydration or lack of sleep.\n\n"
            "- Drink water and rest in a quiet, dark room\n"
            "- Note any triggers such as screens or skipped meals\n"
            "- See a doctor if it is sudden and severe, or comes with vision changes"
        ),
        confidence=78,
    ),
    Topic(
        name="cough",
        patterns=[re.compile(r"\b(cough\w*|sore\s+throat|cold)\b", re.IGNORECASE)],
        reply=(
            "Coughs and sore throats are often viral and improve within a week or two.\n\n"
            "- Warm drinks and honey can soothe the throat\n"
            "- Book an appointment if it lasts longer than three weeks"
        ),
        confidence=75,
    ),
    Topic(
        name="appointment",
        patterns=[re.compile(r"appointment|book|schedule|see\s+a\s+doctor", re.IGNORECASE)],
        reply="You can book a visit from the **Appointments** tab. Pick a doctor and a free slot.",
        confidence=90,
    ),
    Topic(
        name="medication",
        patterns=[re.compile(r"medication|medicine|prescription|dose|pill", re.IGNORECASE)],
        reply=(
            "Your active prescriptions are listed in the **Prescriptions** tab. "
            "Never change a dose without talking to your doctor."
        ),
        confidence=70,
    ),
    Topic(
        name="greeting",
        patterns=[re.compile(r"^\s*(hi|hello|hey|good\s+(morning|afternoon|evening))\b", re.IGNORECASE)],
        reply="Hello! I'm your health assistant. Tell me about your symptoms or ask a health question.",
        confidence=95,
    ),
]

FALLBACK_REPLY = (
    "I'm not sure I understood. Could you describe your symptoms, how long "
    "you have had them, and how severe they are?"
)

CLINICIAN_PREFIX = "**Clinical note (reference only):** "


def is_emergency(text: str) -> bool:
    return any(p.search(text) for p in _EMERGENCY_PATTERNS)


def match_topic(text: str) -> Topic | None:
    for topic in _TOPICS:
        if any(p.search(text) for p in topic.patterns):
            return topic
    return None


def respond(text: str) -> AssistantReply:
    """Build the assistant reply for a patient message.

    Args:
        text: The user's message.

    Returns:
        Reply with content, server timestamp and metadata.
    """
    if is_emergency(text):
        logger.warning("responder.emergency")
        content, confidence = EMERGENCY_REPLY, 99
    else:
        topic = match_topic(text)
        if topic is None:
            content, confidence = FALLBACK_REPLY, 40
        else:
            content, confidence = topic.reply, topic.confidence
        logger.debug("responder.topic", topic=topic.name if topic else None)

    return AssistantReply(
        content=content,
        timestamp=utcnow(),
        metadata=MessageMetadata(confidence=confidence, ai_model=MODEL_NAME),
    )


def respond_to_clinician(text: str) -> str:
    """Session-less reply for the doctor console."""
    return CLINICIAN_PREFIX + respond(text).content
