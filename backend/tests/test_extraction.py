from datetime import date, time

import pytest

from dental_scheduler.services.extraction import (
    DateParseError,
    choose_ordinal,
    duration_for,
    extract_entities,
    is_affirmative,
    is_correction,
    is_filler_only,
    is_frustrated,
    is_negative,
    resolve_date,
    resolve_time,
    strip_rejected,
)

MONDAY = date(2026, 10, 19)


def _values(text: str) -> dict:
    return {name: extraction.value for name, extraction in extract_entities(text).items()}


def test_full_booking_sentence():
    values = _values("I need a cleaning next Tuesday at 10am, I'm Jane Doe, 555-123-4567")

    assert values == {
        "procedure_type": "cleaning",
        "preferred_date": "next tuesday",
        "preferred_time": "10am",
        "patient_name": "Jane Doe",
        "patient_phone": "555-123-4567",
    }


@pytest.mark.parametrize(
    "text, procedure",
    [
        ("I'd like a check-up", "checkup"),
        ("need a ROOT CANAL", "root canal"),
        ("two fillings please", "filling"),
        ("teeth whitening", "whitening"),
    ],
)
def test_procedure_vocabulary(text, procedure):
    assert _values(text)["procedure_type"] == procedure


@pytest.mark.parametrize(
    "text, phrase",
    [
        ("how about December 3rd", "december 3"),
        ("maybe dec 3", "dec 3"),
        ("on 11/4 if possible", "11/4"),
        ("the day after tomorrow", "day after tomorrow"),
        ("tomorrow works", "tomorrow"),
        ("this Friday", "friday"),
        ("in 3 days", "in 3 days"),
    ],
)
def test_date_rules(text, phrase):
    assert _values(text)["preferred_date"] == phrase


@pytest.mark.parametrize(
    "text, phrase",
    [
        ("at 2:30 PM", "2:30pm"),
        ("around 9 a.m.", "9a.m."),
        ("half past 3", "half past 3"),
        ("14:45 is fine", "14:45"),
        ("at noon", "noon"),
        ("sometime in the late afternoon", "late afternoon"),
    ],
)
def test_time_rules(text, phrase):
    assert _values(text)["preferred_time"] == phrase


def test_inferred_rules_are_marked():
    extracted = extract_entities("this is Bob, sometime next week in the morning")

    assert extracted["patient_name"].value == "Bob"
    assert not extracted["patient_name"].explicit
    assert not extracted["preferred_date"].explicit
    assert not extracted["preferred_time"].explicit
    assert extract_entities("my name is bob smith")["patient_name"].explicit


def test_name_rules_ignore_ordinary_words():
    assert "patient_name" not in extract_entities("I'm looking for an appointment")
    assert "patient_name" not in extract_entities("this is Tuesday right?")
    assert _values("my name is Ana and I need a filling")["patient_name"] == "Ana"


def test_contact_rules():
    values = _values("reach me at (412) 555-0199 or jane.doe@example.com")
    assert values["patient_phone"] == "(412) 555-0199"
    assert values["patient_email"] == "jane.doe@example.com"


def test_emergency_and_action_rules():
    assert _values("my tooth is killing me, it's an emergency")["is_emergency"] is True
    assert "is_emergency" not in _values("routine cleaning please")
    assert _values("I need to cancel my appointment")["action"] == "cancel"
    assert _values("can I move my appointment?")["action"] == "reschedule"
    assert "action" not in _values("I'd like to change to a filling")


@pytest.mark.parametrize(
    "text, expected",
    [
        ("actually make it Thursday", True),
        ("wait, 3pm instead", True),
        ("no, not 10am", True),
        ("not Tuesday, Wednesday", True),
        ("Thursday instead of Friday", True),
        ("Thursday at 3pm", False),
    ],
)
def test_correction_cues(text, expected):
    assert is_correction(text) is expected


def test_rejected_phrase_is_removed():
    cleaned, rejected = strip_rejected("actually not Tuesday, Wednesday")

    assert rejected == ["tuesday"]
    assert "Tuesday" not in cleaned
    assert _values(cleaned)["preferred_date"] == "wednesday"

    cleaned, rejected = strip_rejected("Thursday instead of Friday")
    assert rejected == ["friday"]
    assert _values(cleaned)["preferred_date"] == "thursday"


def test_reply_classifiers():
    assert is_frustrated("ugh, forget it")
    assert is_frustrated("This is taking too long")
    assert not is_frustrated("Tuesday is fine")
    assert is_affirmative("Yes please")
    assert is_affirmative("that works for me")
    assert not is_affirmative("Tuesday")
    assert is_negative("no, something different")
    assert not is_negative("I know the address")
    assert is_filler_only("um")
    assert is_filler_only("Hmm...")
    assert not is_filler_only("um yes")


@pytest.mark.parametrize(
    "text, index",
    [("the second one", 1), ("first", 0), ("option 2", 1), ("the last one", 2), ("yes", 0), ("third", 1)],
)
def test_choose_ordinal(text, index):
    count = 2 if text == "third" else 3
    assert choose_ordinal(text, count) == index


def test_duration_table():
    assert duration_for("root canal") == 90
    assert duration_for("cleaning") == 60
    assert duration_for("Filling") == 45
    assert duration_for(None) == 30
    assert duration_for("tooth polish") == 30


@pytest.mark.parametrize(
    "phrase, expected",
    [
        ("today", date(2026, 10, 19)),
        ("tomorrow", date(2026, 10, 20)),
        ("day after tomorrow", date(2026, 10, 21)),
        ("wednesday", date(2026, 10, 21)),
        ("monday", date(2026, 10, 26)),
        ("next tuesday", date(2026, 10, 27)),
        ("next week", date(2026, 10, 26)),
        ("in 10 days", date(2026, 10, 29)),
        ("december 3", date(2026, 12, 3)),
        ("jan 5", date(2027, 1, 5)),
        ("11/4", date(2026, 11, 4)),
        ("3/1/27", date(2027, 3, 1)),
    ],
)
def test_resolve_date(phrase, expected):
    assert resolve_date(phrase, MONDAY) == expected


@pytest.mark.parametrize("phrase", ["february 30", "13/45", "someday", "smarch 3"])
def test_malformed_dates(phrase):
    with pytest.raises(DateParseError):
        resolve_date(phrase, MONDAY)


@pytest.mark.parametrize(
    "phrase, expected",
    [
        ("10am", time(10, 0)),
        ("2:30pm", time(14, 30)),
        ("12pm", time(12, 0)),
        ("9a.m.", time(9, 0)),
        ("14:45", time(14, 45)),
        ("3", time(15, 0)),
        ("half past 3", time(15, 30)),
        ("quarter to 11", time(10, 45)),
        ("noon", time(12, 0)),
        ("morning", time(9, 0)),
        ("late afternoon", time(16, 0)),
        ("10:08am", time(10, 15)),
        ("10:53am", time(11, 0)),
    ],
)
def test_resolve_time(phrase, expected):
    assert resolve_time(phrase) == expected


@pytest.mark.parametrize("phrase", ["25:00", "10:75", "teatime"])
def test_malformed_times(phrase):
    with pytest.raises(DateParseError):
        resolve_time(phrase)
