import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Sequence

from .models import ConversationContext

MAX_RECENT_TOPICS = 5

# ---------------------
# Keyword Tables
# ---------------------

TASK_KEYWORDS = ["task", "todo", "remind", "deadline", "due", "finish", "complete"]

MAX_TASK_LENGTH = 80

TASK_PATTERN = re.compile(
    r"\b(?:task|todo|remind me to|need to)\s+([^.!?\n]{1,%d})" % MAX_TASK_LENGTH,
    re.IGNORECASE,
)

# Order matters: the first matching set wins.
MOOD_KEYWORDS = {
    "happy": ["happy", "great", "excellent", "wonderful", "excited"],
    "stressed": ["stressed", "worried", "anxious", "overwhelmed", "tired"],
    "neutral": ["okay", "fine", "alright", "normal"],
}

ENERGY_KEYWORDS = {
    "high": ["energetic", "motivated", "ready", "excited"],
    "low": ["tired", "exhausted", "drained", "unmotivated"],
    "medium": ["okay", "fine", "normal"],
}

TOPIC_PATTERNS = [
    re.compile(r"(?:talking about|discussing|learning)\s+(\w+)", re.IGNORECASE),
    re.compile(r"(\w+)\s+(?:is|are)\s+(?:important|interesting|difficult)", re.IGNORECASE),
    re.compile(r"(?:working on|studying|practicing)\s+(\w+)", re.IGNORECASE),
]

MODULE_KEYWORDS = {
    "languagePractice": ["spanish", "french", "language", "translate", "practice"],
    "wellbeing": ["mood", "feeling", "energy", "stress", "tired"],
    "coding": ["code", "programming", "debug", "function", "algorithm"],
}


@dataclass(frozen=True)
class ExtractorTables:
    """Every vocabulary the extractor uses, so tables can be swapped in tests."""

    task_keywords: Sequence[str] = field(default_factory=lambda: list(TASK_KEYWORDS))
    task_pattern: Pattern = TASK_PATTERN
    mood_keywords: Dict[str, List[str]] = field(default_factory=lambda: dict(MOOD_KEYWORDS))
    energy_keywords: Dict[str, List[str]] = field(default_factory=lambda: dict(ENERGY_KEYWORDS))
    topic_patterns: Sequence[Pattern] = field(default_factory=lambda: list(TOPIC_PATTERNS))
    module_keywords: Dict[str, List[str]] = field(default_factory=lambda: dict(MODULE_KEYWORDS))


DEFAULT_TABLES = ExtractorTables()

# ---------------------
# Detection
# ---------------------

def infer_from_keywords(text: str, keyword_map: Dict[str, List[str]]) -> Optional[str]:
    """
    Returns the first category whose keywords appear in the text.
    Plain case-insensitive substring match.
    """
    lower = text.lower()
    for category, keywords in keyword_map.items():
        if any(kw in lower for kw in keywords):
            return category
    return None


def detect_task(message: str, tables: ExtractorTables = DEFAULT_TABLES) -> Optional[str]:
    lower = message.lower()
    if not any(kw in lower for kw in tables.task_keywords):
        return None

    match = tables.task_pattern.search(message)
    if not match:
        return None
    task = match.group(1).strip()
    return task or None


def detect_mood(message: str, tables: ExtractorTables = DEFAULT_TABLES) -> Optional[str]:
    return infer_from_keywords(message, tables.mood_keywords)


def detect_energy(message: str, tables: ExtractorTables = DEFAULT_TABLES) -> Optional[str]:
    return infer_from_keywords(message, tables.energy_keywords)


def extract_topics(message: str, tables: ExtractorTables = DEFAULT_TABLES) -> List[str]:
    topics = []
    for pattern in tables.topic_patterns:
        match = pattern.search(message)
        if match and match.group(1):
            topics.append(match.group(1).lower())
    return topics


def detect_modules(message: str, reply: str, tables: ExtractorTables = DEFAULT_TABLES) -> List[str]:
    lower_message = message.lower()
    lower_reply = reply.lower()
    detected = []
    for module, keywords in tables.module_keywords.items():
        if any(kw in lower_message or kw in lower_reply for kw in keywords):
            detected.append(module)
    return detected


def _dedupe(values: List[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result

# ---------------------
# Context Update
# ---------------------

def update_context(
    context: ConversationContext,
    message: str,
    reply: str,
    tables: ExtractorTables = DEFAULT_TABLES,
) -> ConversationContext:
    """
    Folds one exchange into a copy of the context: task capture, mood, energy,
    topics (last 5 kept) and module activation.
    """
    updated = context.model_copy(deep=True)

    if not context.current_task:
        task = detect_task(message, tables)
        if task:
            updated.current_task = task

    mood = detect_mood(message, tables)
    if mood:
        updated.mood = mood

    energy = detect_energy(message, tables)
    if energy:
        updated.energy = energy

    topics = extract_topics(message, tables)
    if topics:
        updated.recent_topics = (list(context.recent_topics) + topics)[-MAX_RECENT_TOPICS:]

    modules = detect_modules(message, reply, tables)
    if modules:
        updated.active_modules = _dedupe(list(context.active_modules) + modules)

    return updated
