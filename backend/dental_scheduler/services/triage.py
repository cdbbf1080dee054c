import logging
from dataclasses import dataclass

from ..config import TriageWeights
from ..schemas import SymptomReport, TriageCategory, TriageProtocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategoryProfile:
    rank: int
    response_time: str
    max_wait_minutes: int
    color: str


CATEGORIES: dict[str, CategoryProfile] = {
    "critical": CategoryProfile(rank=1, response_time="immediate", max_wait_minutes=0, color="red"),
    "urgent": CategoryProfile(rank=2, response_time="30 minutes", max_wait_minutes=30, color="orange"),
    "moderate": CategoryProfile(rank=3, response_time="2 hours", max_wait_minutes=120, color="yellow"),
    "minor": CategoryProfile(rank=4, response_time="24 hours", max_wait_minutes=1440, color="green"),
}

LIFE_THREATENING_KEYWORDS = (
    "unconscious",
    "not breathing",
    "difficulty breathing",
    "chest pain",
    "severe allergic",
    "anaphylaxis",
    "uncontrolled bleeding",
    "severe head injury",
)

EMERGENCY_SERVICES_INSTRUCTIONS = [
    "Call 911 immediately",
    "Do not drive yourself to the hospital",
    "Follow emergency operator instructions",
]

PROTOCOLS: dict[str, TriageProtocol] = {
    "knocked_out_tooth": TriageProtocol(
        name="knocked_out_tooth",
        immediate_actions=[
            "Find the tooth and pick it up by the crown (white part), not the root",
            "If dirty, gently rinse with milk or saline solution (not water)",
            "Try to reinsert the tooth into the socket if possible",
            "If it cannot be reinserted, store it in milk or saliva",
            "Come to the office immediately - time is critical",
        ],
        timeframe="30 minutes for best outcome",
        supplies=["Milk", "Clean gauze", "Small container"],
    ),
    "severe_bleeding": TriageProtocol(
        name="severe_bleeding",
        immediate_actions=[
            "Apply firm, continuous pressure with clean gauze or cloth",
            "Bite down firmly on gauze for 15-20 minutes",
            "Do not rinse or spit - this can worsen bleeding",
            "Keep head elevated",
            "If bleeding persists after 20 minutes, seek immediate care",
        ],
        timeframe="Immediate if uncontrolled",
        supplies=["Clean gauze or cloth", "Ice pack"],
    ),
    "dental_abscess": TriageProtocol(
        name="dental_abscess",
        immediate_actions=[
            "Rinse with warm salt water several times",
            "Take over-the-counter pain medication as directed",
            "Apply cold compress to outside of face",
            "Do not apply heat to the area",
            "Seek treatment today - infection can spread",
        ],
        timeframe="Same day",
        supplies=["Salt water rinse", "Pain medication", "Cold compress"],
    ),
    "broken_tooth": TriageProtocol(
        name="broken_tooth",
        immediate_actions=[
            "Rinse mouth with warm water",
            "Apply cold compress to reduce swelling",
            "Save any broken pieces",
            "Cover sharp edges with dental wax if available",
            "Take pain medication if needed",
        ],
        timeframe="Within 24 hours",
        supplies=["Dental wax", "Cold compress", "Container for tooth pieces"],
    ),
    "severe_pain": TriageProtocol(
        name="severe_pain",
        immediate_actions=[
            "Take recommended dose of pain medication",
            "Apply cold compress to outside of cheek",
            "Rinse with warm salt water",
            "Avoid extremely hot or cold foods",
            "Keep head elevated when lying down",
        ],
        timeframe="Same day if severe",
        supplies=["Pain medication", "Cold compress", "Salt"],
    ),
}


@dataclass(frozen=True)
class Assessment:
    severity: int
    category: TriageCategory
    life_threatening: bool
    protocol: TriageProtocol | None
    instructions: list[str]

    @property
    def profile(self) -> CategoryProfile:
        return CATEGORIES[self.category]


def calculate_severity(symptoms: SymptomReport, weights: TriageWeights | None = None) -> int:
    weights = weights or TriageWeights()
    score = symptoms.pain_level * weights.pain_multiplier

    if symptoms.swelling:
        score += weights.swelling
    if symptoms.bleeding:
        score += weights.bleeding
    if symptoms.fever:
        score += weights.fever
    if not symptoms.can_eat:
        score += weights.cannot_eat
    if symptoms.sleep_disruption:
        score += weights.sleep_disruption
    if not symptoms.medication_helps:
        score += weights.medication_ineffective

    duration = (symptoms.duration or "").strip().lower()
    if duration == "just started":
        score += weights.just_started
    elif duration in {"3+ days", "3 or more days"}:
        # Lingering symptoms suggest an untreated infection.
        score += weights.three_plus_days

    description = symptoms.description.lower()
    for phrase, bonus in weights.keyword_bonuses.items():
        if phrase in description:
            score += bonus

    return max(0, min(score, 100))


def is_life_threatening(symptoms: SymptomReport) -> bool:
    description = symptoms.description.lower()
    return any(keyword in description for keyword in LIFE_THREATENING_KEYWORDS)


def determine_category(severity: int, weights: TriageWeights | None = None) -> TriageCategory:
    weights = weights or TriageWeights()
    if severity >= weights.urgent_threshold:
        return "urgent"
    if severity >= weights.moderate_threshold:
        return "moderate"
    return "minor"


def select_protocol(symptoms: SymptomReport) -> TriageProtocol | None:
    description = symptoms.description.lower()
    if "knocked out" in description:
        return PROTOCOLS["knocked_out_tooth"]
    if symptoms.bleeding and "bleeding" in description:
        return PROTOCOLS["severe_bleeding"]
    if "abscess" in description or "infection" in description:
        return PROTOCOLS["dental_abscess"]
    if "broken tooth" in description or "chipped" in description:
        return PROTOCOLS["broken_tooth"]
    if symptoms.pain_level >= 7:
        return PROTOCOLS["severe_pain"]
    return None


def assess(symptoms: SymptomReport, weights: TriageWeights | None = None) -> Assessment:
    if is_life_threatening(symptoms):
        logger.warning("triage_life_threatening description=%r", symptoms.description)
        return Assessment(
            severity=100,
            category="critical",
            life_threatening=True,
            protocol=None,
            instructions=list(EMERGENCY_SERVICES_INSTRUCTIONS),
        )

    severity = calculate_severity(symptoms, weights)
    protocol = select_protocol(symptoms)
    return Assessment(
        severity=severity,
        category=determine_category(severity, weights),
        life_threatening=False,
        protocol=protocol,
        instructions=list(protocol.immediate_actions) if protocol else [],
    )
