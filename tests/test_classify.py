from __future__ import annotations

from datetime import date

import pytest

from backend.models import Confidence, FundingType, TriState
from runner.process.classify import (
    classify_funding,
    extract_application_url,
    extract_context_deadline,
    extract_deadline,
    extract_international_eligibility,
    extract_start_term,
    infer_institution,
    infer_publisher,
    is_deadline_passed,
    is_phd_text,
    normalize_deadline,
)


@pytest.mark.parametrize(
    "text,label,funding_type",
    [
        ("A monthly stipend is provided. This position is fully funded.", "Fully funded", FundingType.FUNDED),
        ("Scholarship covers fees; salary top-up available", "Scholarship / stipend", FundingType.FUNDED),
        ("Competitive salary and benefits", "Salary", FundingType.SALARIED),
        ("The project is partially funded by industry", "Partially funded", FundingType.PARTIALLY_FUNDED),
        ("Candidates with NSERC awards are encouraged", "External funding accepted", FundingType.EXTERNAL_FUNDING_OK),
        ("Self-funded students may apply", "Self-funded possible", FundingType.SELF_FUNDED_OK),
    ],
)
def test_classify_funding_first_rule_wins(text: str, label: str, funding_type: FundingType) -> None:
    funding = classify_funding(text)
    assert funding.label == label
    assert funding.funding_type == funding_type
    assert funding.confidence == Confidence.MEDIUM
    assert funding.evidence


def test_classify_funding_unknown() -> None:
    funding = classify_funding("Join our lab to study graphene.")
    assert funding.funding_type == FundingType.UNKNOWN
    assert funding.confidence == Confidence.LOW


def test_extract_deadline_iso_is_high_confidence() -> None:
    deadline = extract_deadline("Applications reviewed until 2026-03-15 or until filled")
    assert deadline.value == date(2026, 3, 15)
    assert deadline.confidence == Confidence.HIGH
    assert deadline.evidence == "Deadline 2026-03-15"


def test_extract_deadline_context_is_medium() -> None:
    deadline = extract_deadline("Application deadline: March 3rd, 2026. Interviews follow.")
    assert deadline.value == date(2026, 3, 3)
    assert deadline.confidence == Confidence.MEDIUM


def test_extract_deadline_day_first() -> None:
    assert extract_deadline("Closing date 12 January 2027").value == date(2027, 1, 12)


def test_extract_deadline_context_without_date() -> None:
    deadline = extract_deadline("Deadline: open until filled")
    assert deadline.value is None
    assert deadline.confidence == Confidence.LOW
    assert deadline.evidence.startswith("Deadline")


def test_extract_context_deadline_ignores_bare_dates() -> None:
    assert extract_context_deadline("Posted 2025-01-10. Fully funded studentship.").value is None
    deadline = extract_context_deadline("Posted 2025-01-10. Apply by 2026-02-01.")
    assert deadline.value == date(2026, 2, 1)
    assert deadline.confidence == Confidence.MEDIUM


def test_extract_deadline_nothing() -> None:
    assert extract_deadline("no dates here") == extract_deadline("")


def test_is_deadline_passed_ignores_low_confidence() -> None:
    today = date(2026, 6, 1)
    assert is_deadline_passed(date(2026, 5, 1), Confidence.MEDIUM, today)
    assert not is_deadline_passed(date(2026, 5, 1), Confidence.LOW, today)
    assert not is_deadline_passed(date(2026, 6, 1), Confidence.HIGH, today)
    assert not is_deadline_passed(None, Confidence.HIGH, today)


def test_normalize_deadline() -> None:
    assert normalize_deadline("2026-01-31") == date(2026, 1, 31)
    assert normalize_deadline("Jan 31, 2026") == date(2026, 1, 31)
    assert normalize_deadline("soon") is None
    assert normalize_deadline(None) is None


def test_is_phd_text() -> None:
    assert is_phd_text("Fully funded Ph.D. position")
    assert is_phd_text("Doctoral researcher in physics")
    assert not is_phd_text("Senior React developer")


def test_international_eligibility() -> None:
    assert extract_international_eligibility("International applicants are welcome.").allowed == TriState.YES
    assert extract_international_eligibility("UK home students only").allowed == TriState.NO
    unknown = extract_international_eligibility("Bring a laptop")
    assert unknown.allowed == TriState.UNKNOWN
    assert unknown.confidence == Confidence.LOW


def test_start_term() -> None:
    assert extract_start_term("Start date: fall 2026") == "Fall 2026"
    assert extract_start_term("Start ASAP") is None


def test_application_url_prefers_apply_link() -> None:
    html = '<a href="/about">About</a><a href="/apply/42">Apply now</a>'
    assert extract_application_url(html, "https://uni.edu/phd/42") == "https://uni.edu/apply/42"
    assert extract_application_url('<a href="/about">About</a>', "https://uni.edu/") == "https://uni.edu/about"
    assert extract_application_url("<p>none</p>", "https://uni.edu/") is None


def test_infer_institution_and_publisher() -> None:
    assert infer_institution("https://www.mcgill.ca/gps/funding") == "MCGILL"
    assert infer_institution("not a url") == "TBA"
    assert infer_publisher("https://weworkremotely.com/categories/remote-programming-jobs.rss") == "We Work Remotely"
    assert infer_publisher("https://www.timeshighereducation.com/unijobs/listings/rss/") == "Various Universities"
    assert infer_publisher("TAVILY_PHD") == "Unknown"
