"""Rule tables for reading booking details out of free text.

Each rule maps one regular expression to one booking field. Rules are tried
in table order and the first rule that yields a value for a field wins, so
the behaviour of every pattern can be checked on its own.
"""
import re
from dataclasses import dataclass
from datetime import date, time, timedelta
from typing import Any, Callable

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
MONTHS = (
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
)
MONTH_ABBREVIATIONS = {name[:3]: index for index, name in enumerate(MONTHS, start=1)}

PROCEDURE_DURATIONS = {
    "cleaning": 60,
    "checkup": 30,
    "filling": 45,
    "root canal": 90,
    "crown": 60,
    "extraction": 45,
    "consultation": 30,
    "emergency": 45,
    "whitening": 60,
}
DEFAULT_DURATION_MINUTES = 30

NAME_STOPWORDS = {
    "and",
    "but",
    "i",
    "im",
    "my",
    "the",
    "a",
    "an",
    "at",
    "on",
    "for",
    "calling",
    "looking",
    "trying",
    "here",
    "just",
    "not",
    "free",
    "available",
    "sure",
    "sorry",
    "phone",
    "email",
    "number",
    "today",
    "tomorrow",
    "yes",
    "yeah",
    "no",
    "ok",
    "okay",
    "hi",
    "hello",
    "thanks",
    *WEEKDAYS,
    *MONTHS,
}

FILLER_WORDS = {"um", "uh", "umm", "uhh", "ah", "ahh", "hmm", "hmmm", "mm", "mmm", "er", "erm"}


class DateParseError(ValueError):
    pass


@dataclass(frozen=True)
class Extraction:
    field: str
    value: Any
    explicit: bool = True


@dataclass(frozen=True)
class Rule:
    field: str
    pattern: re.Pattern
    explicit: bool = True
    value: Callable[[re.Match], Any] | None = None

    def apply(self, text: str) -> Extraction | None:
        match = self.pattern.search(text)
        if not match:
            return None
        value = self.value(match) if self.value else match.group(0).strip().lower()
        if value is None:
            return None
        return Extraction(field=self.field, value=value, explicit=self.explicit)


def clean_name(raw: str) -> str | None:
    words = []
    for word in raw.split():
        if word.lower().strip("'") in NAME_STOPWORDS:
            break
        words.append(word)
        if len(words) == 3:
            break
    if not words:
        return None
    return " ".join(word[:1].upper() + word[1:] for word in words)


def _procedure(match: re.Match) -> str:
    value = match.group(1).lower()
    return "checkup" if value in {"check-up", "check up"} else value


_MONTH_PATTERN = "|".join(list(MONTHS) + [abbr for abbr in MONTH_ABBREVIATIONS if abbr != "may"])
_WEEKDAY_PATTERN = "|".join(WEEKDAYS)

EXTRACTION_RULES: tuple[Rule, ...] = (
    Rule(
        "procedure_type",
        re.compile(
            r"\b(root canal|cleaning|check-up|check up|checkup|filling|crown|extraction"
            r"|whitening|consultation)s?\b",
            re.I,
        ),
        value=_procedure,
    ),
    Rule(
        "preferred_date",
        re.compile(rf"\b({_MONTH_PATTERN})\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?\b", re.I),
        value=lambda m: f"{m.group(1).lower()} {int(m.group(2))}",
    ),
    Rule("preferred_date", re.compile(r"\b\d{1,2}/\d{1,2}(?:/\d{2,4})?\b")),
    Rule("preferred_date", re.compile(r"\bday after tomorrow\b", re.I)),
    Rule("preferred_date", re.compile(r"\btoday\b", re.I)),
    Rule("preferred_date", re.compile(r"\btomorrow\b", re.I)),
    Rule(
        "preferred_date",
        re.compile(rf"\b(?:(next|this)\s+)?({_WEEKDAY_PATTERN})\b", re.I),
        value=lambda m: f"next {m.group(2).lower()}"
        if (m.group(1) or "").lower() == "next"
        else m.group(2).lower(),
    ),
    Rule("preferred_date", re.compile(r"\bin \d+ days?\b", re.I)),
    Rule("preferred_date", re.compile(r"\bnext week\b", re.I), explicit=False),
    Rule(
        "preferred_time",
        re.compile(r"\b\d{1,2}(?::\d{2})?\s*(?:am|pm|a\.m\.|p\.m\.)", re.I),
        value=lambda m: re.sub(r"\s+", "", m.group(0).lower()),
    ),
    Rule("preferred_time", re.compile(r"\b(?:half past|quarter past|quarter to) \d{1,2}\b", re.I)),
    Rule("preferred_time", re.compile(r"\b(?:[01]?\d|2[0-3]):[0-5]\d\b")),
    Rule("preferred_time", re.compile(r"\b(?:noon|midday)\b", re.I)),
    Rule(
        "preferred_time",
        re.compile(r"\b(?:early |late )?(?:morning|afternoon|evening)\b", re.I),
        explicit=False,
    ),
    Rule(
        "preferred_time",
        re.compile(r"\bat (\d{1,2})\b(?![:/\d])", re.I),
        explicit=False,
        value=lambda m: m.group(1),
    ),
    Rule(
        "patient_name",
        re.compile(r"\bmy name is ([a-z][a-z'\-]*(?:\s+[a-z][a-z'\-]*){0,2})", re.I),
        value=lambda m: clean_name(m.group(1)),
    ),
    Rule(
        "patient_name",
        re.compile(r"\b(?i:i'm|i am|this is)\s+([A-Z][a-zA-Z'\-]*(?:\s+[A-Z][a-zA-Z'\-]*){0,2})"),
        explicit=False,
        value=lambda m: clean_name(m.group(1)),
    ),
    Rule(
        "patient_phone",
        re.compile(r"(?:\+?1[-.\s]?)?\(?\b\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b"),
        value=lambda m: m.group(0).strip(),
    ),
    Rule(
        "patient_email",
        re.compile(r"\b[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}\b"),
        value=lambda m: m.group(0),
    ),
    Rule(
        "is_emergency",
        re.compile(
            r"\b(?:emergency|urgent|urgently|pain|painful|hurts|asap|bleeding|swollen"
            r"|swelling|knocked out)\b",
            re.I,
        ),
        value=lambda m: True,
    ),
    Rule("action", re.compile(r"\bcancel\b", re.I), value=lambda m: "cancel"),
    Rule(
        "action",
        re.compile(r"\b(?:reschedule|move my appointment)\b", re.I),
        value=lambda m: "reschedule",
    ),
    Rule(
        "action",
        re.compile(r"\b(?:book|schedule|appointment)\b", re.I),
        value=lambda m: "book",
    ),
)

CORRECTION_PATTERNS = (
    re.compile(r"\b(?:actually|wait|sorry|i meant|i mean|change that)\b", re.I),
    re.compile(r"\bno,?\s+not\b", re.I),
    re.compile(r"\bnot (\w+),\s*(\w+)", re.I),
    re.compile(r"\binstead of\b", re.I),
)
_REJECTED_PHRASE = r"(?:on |at )?((?:next )?[\w/]+(?::\d{2})?(?:\s*(?:am|pm))?)"
REJECTION_PATTERNS = (
    re.compile(rf"\bnot {_REJECTED_PHRASE}\s*,?", re.I),
    re.compile(rf"\binstead of {_REJECTED_PHRASE}", re.I),
)

FRUSTRATION_PATTERNS = (
    re.compile(r"\bthis is taking (?:too|so) long\b", re.I),
    re.compile(r"\b(?:forget it|never ?mind|cancel everything)\b", re.I),
    re.compile(r"\bjust (?:book|schedule|give me)\b", re.I),
    re.compile(r"\bwhy is this so (?:hard|complicated|difficult)\b", re.I),
    re.compile(r"\b(?:i give up|frustrated|frustrating|annoying|ridiculous)\b", re.I),
)

AFFIRMATIVE_PATTERN = re.compile(
    r"\b(?:yes|yeah|yep|yup|sure|confirm|confirmed|that works|works for me|perfect"
    r"|sounds good|ok|okay)\b",
    re.I,
)
NEGATIVE_PATTERN = re.compile(
    r"\b(?:no|nope|nah|different|another|other times?|neither|doesn't work|does not work)\b",
    re.I,
)
ORDINALS = {
    "first": 0,
    "1st": 0,
    "one": 0,
    "second": 1,
    "2nd": 1,
    "two": 1,
    "third": 2,
    "3rd": 2,
    "three": 2,
}
ORDINAL_PATTERN = re.compile(
    r"\b(first|1st|one|second|2nd|two|third|3rd|three|last)\b|(?:\b(?:option|number)|#)\s*(\d)\b",
    re.I,
)


def extract_entities(text: str) -> dict[str, Extraction]:
    found: dict[str, Extraction] = {}
    for rule in EXTRACTION_RULES:
        if rule.field in found:
            continue
        extraction = rule.apply(text)
        if extraction is not None:
            found[rule.field] = extraction
    return found


def is_correction(text: str) -> bool:
    return any(pattern.search(text) for pattern in CORRECTION_PATTERNS)


def strip_rejected(text: str) -> tuple[str, list[str]]:
    """Drop "not X" / "instead of X" so that X is not extracted as the new value."""
    rejected = []
    for pattern in REJECTION_PATTERNS:
        rejected.extend(match.group(1).lower() for match in pattern.finditer(text))
        text = pattern.sub(" ", text)
    return text, rejected


def is_frustrated(text: str) -> bool:
    return any(pattern.search(text) for pattern in FRUSTRATION_PATTERNS)


def is_affirmative(text: str) -> bool:
    return bool(AFFIRMATIVE_PATTERN.search(text))


def is_negative(text: str) -> bool:
    return bool(NEGATIVE_PATTERN.search(text))


def is_filler_only(text: str) -> bool:
    words = [word.strip(".,!?") for word in text.lower().split()]
    words = [word for word in words if word]
    return bool(words) and len(words) <= 2 and all(word in FILLER_WORDS for word in words)


def choose_ordinal(text: str, count: int) -> int:
    match = ORDINAL_PATTERN.search(text)
    if not match or count == 0:
        return 0
    if match.group(2):
        index = int(match.group(2)) - 1
    elif match.group(1).lower() == "last":
        index = count - 1
    else:
        index = ORDINALS[match.group(1).lower()]
    return min(max(index, 0), count - 1)


def duration_for(procedure_type: str | None) -> int:
    return PROCEDURE_DURATIONS.get((procedure_type or "").lower(), DEFAULT_DURATION_MINUTES)


def _next_weekday(today: date, weekday: int, force_next_week: bool) -> date:
    days_ahead = weekday - today.weekday()
    if days_ahead <= 0 or force_next_week:
        days_ahead += 7
    return today + timedelta(days=days_ahead)


def resolve_date(phrase: str, today: date) -> date:
    lowered = phrase.lower().strip()
    if lowered in {"today", "now"}:
        return today
    if lowered == "day after tomorrow":
        return today + timedelta(days=2)
    if lowered == "tomorrow":
        return today + timedelta(days=1)
    if lowered == "next week":
        return today + timedelta(days=7)

    in_days = re.fullmatch(r"in (\d+) days?", lowered)
    if in_days:
        return today + timedelta(days=int(in_days.group(1)))

    weekday = re.fullmatch(rf"(next )?({_WEEKDAY_PATTERN})", lowered)
    if weekday:
        return _next_weekday(today, WEEKDAYS.index(weekday.group(2)), bool(weekday.group(1)))

    try:
        numeric = re.fullmatch(r"(\d{1,2})/(\d{1,2})(?:/(\d{2,4}))?", lowered)
        if numeric:
            month, day = int(numeric.group(1)), int(numeric.group(2))
            year_text = numeric.group(3)
            if year_text:
                year = int(year_text) + (2000 if len(year_text) == 2 else 0)
                return date(year, month, day)
            candidate = date(today.year, month, day)
            return candidate if candidate >= today else date(today.year + 1, month, day)

        named = re.fullmatch(r"([a-z]+) (\d{1,2})", lowered)
        if named and named.group(1)[:3] in MONTH_ABBREVIATIONS:
            month = MONTH_ABBREVIATIONS[named.group(1)[:3]]
            day = int(named.group(2))
            candidate = date(today.year, month, day)
            return candidate if candidate >= today else date(today.year + 1, month, day)
    except ValueError as exc:
        raise DateParseError(f"not a calendar date: {phrase!r}") from exc

    raise DateParseError(f"unrecognised date: {phrase!r}")


_PERIODS = {
    "early morning": time(7, 0),
    "late morning": time(11, 0),
    "morning": time(9, 0),
    "early afternoon": time(13, 0),
    "late afternoon": time(16, 0),
    "afternoon": time(14, 0),
    "evening": time(16, 0),
    "noon": time(12, 0),
    "midday": time(12, 0),
}


def resolve_time(phrase: str) -> time:
    lowered = phrase.lower().strip()
    if lowered in _PERIODS:
        return _PERIODS[lowered]

    hour = minute = None
    quarter = re.fullmatch(r"(half past|quarter past|quarter to) (\d{1,2})", lowered)
    clock = re.fullmatch(r"(\d{1,2})(?::(\d{2}))?\s*(am|pm|a\.m\.|p\.m\.)?", lowered)
    if quarter:
        hour = int(quarter.group(2))
        minute = {"half past": 30, "quarter past": 15, "quarter to": 45}[quarter.group(1)]
        if quarter.group(1) == "quarter to":
            hour -= 1
        if hour < 7:
            hour += 12
    elif clock:
        hour = int(clock.group(1))
        minute = int(clock.group(2) or 0)
        meridiem = (clock.group(3) or "").replace(".", "")
        if meridiem == "pm" and hour < 12:
            hour += 12
        elif meridiem == "am" and hour == 12:
            hour = 0
        elif not meridiem and hour < 7:
            # Nobody books a 3 in the morning cleaning.
            hour += 12
    else:
        raise DateParseError(f"unrecognised time: {phrase!r}")

    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise DateParseError(f"not a clock time: {phrase!r}")

    # Snap to the 15 minute scheduling grid.
    minute = round(minute / 15) * 15
    if minute == 60:
        hour, minute = hour + 1, 0
    if hour > 23:
        raise DateParseError(f"not a clock time: {phrase!r}")
    return time(hour, minute)
