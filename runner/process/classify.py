import re
from dataclasses import dataclass
from datetime import date
from urllib.parse import urlparse

from backend.models import Confidence, FundingType, TriState
from runner.ingest.content import extract_anchors, host_of, take_words

EVIDENCE_WORDS = 20

PHD_PATTERN = re.compile(r"phd|ph\.d|doctoral|doctorate")

_MONTHS = {
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
}
_MONTHS.update({name[:3]: num for name, num in list(_MONTHS.items())})
_MONTH_RE = r"(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"

ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
MONTH_FIRST_RE = re.compile(_MONTH_RE + r"\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})\b", re.I)
DAY_FIRST_RE = re.compile(r"\b(\d{1,2})(?:st|nd|rd|th)?\s+(?:of\s+)?" + _MONTH_RE + r"\.?,?\s+(\d{4})\b", re.I)
DEADLINE_CONTEXT_RE = re.compile(
    r"(deadline|closing date|apply by|applications close|application deadline)[^\n]{0,160}",
    re.I,
)
START_TERM_RE = re.compile(r"\b(Fall|Winter|Spring|Summer)\s+(20\d{2})\b", re.I)

APPLICATION_PLACEHOLDER = "See full description for details."


@dataclass(frozen=True)
class FundingRule:
    pattern: re.Pattern
    label: str
    funding_type: FundingType


# evaluated top to bottom; the first rule that matches anywhere in the text wins
FUNDING_RULES = [
    FundingRule(
        re.compile(r"fully[- ]funded|full funding|tuition waiver", re.I),
        "Fully funded",
        FundingType.FUNDED,
    ),
    FundingRule(
        re.compile(r"scholarship|stipend|studentship|bursary", re.I),
        "Scholarship / stipend",
        FundingType.FUNDED,
    ),
    FundingRule(
        re.compile(r"salary|\bpaid\b|per annum|compensation", re.I),
        "Salary",
        FundingType.SALARIED,
    ),
    FundingRule(
        re.compile(r"partially funded|partial funding", re.I),
        "Partially funded",
        FundingType.PARTIALLY_FUNDED,
    ),
    FundingRule(
        re.compile(r"external funding|bring your own funding|tri-council|nserc|sshrc|cihr|csc scholarship holders", re.I),
        "External funding accepted",
        FundingType.EXTERNAL_FUNDING_OK,
    ),
    FundingRule(
        re.compile(r"self[- ]funded", re.I),
        "Self-funded possible",
        FundingType.SELF_FUNDED_OK,
    ),
]


@dataclass(frozen=True)
class Funding:
    label: str
    funding_type: FundingType
    confidence: Confidence
    evidence: str | None = None


@dataclass(frozen=True)
class Deadline:
    value: date | None
    confidence: Confidence
    evidence: str | None = None


@dataclass(frozen=True)
class Eligibility:
    allowed: TriState
    confidence: Confidence
    evidence: str | None = None


UNKNOWN_FUNDING = Funding("Unknown", FundingType.UNKNOWN, Confidence.LOW)


def _context(text: str, match: re.Match, words: int = EVIDENCE_WORDS) -> str:
    start = max(0, match.start() - 60)
    snippet = text[start : match.end() + 100]
    return take_words(snippet, words)


def classify_funding(text: str) -> Funding:
    text = text or ""
    for rule in FUNDING_RULES:
        m = rule.pattern.search(text)
        if m:
            return Funding(rule.label, rule.funding_type, Confidence.MEDIUM, _context(text, m))
    return UNKNOWN_FUNDING


def is_phd_text(text: str) -> bool:
    return bool(PHD_PATTERN.search((text or "").lower()))


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_date(text: str) -> date | None:
    """First ISO, "Month D, YYYY" or "D Month YYYY" date in text."""
    text = text or ""
    m = ISO_DATE_RE.search(text)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    m = MONTH_FIRST_RE.search(text)
    if m:
        month = _MONTHS.get(m.group(1).lower()[:3])
        return _safe_date(int(m.group(3)), month, int(m.group(2))) if month else None
    m = DAY_FIRST_RE.search(text)
    if m:
        month = _MONTHS.get(m.group(2).lower()[:3])
        return _safe_date(int(m.group(3)), month, int(m.group(1))) if month else None
    return None


def extract_deadline(text: str) -> Deadline:
    """Deadline from a full opportunity page, where any ISO date is taken as the deadline."""
    text = text or ""
    m = ISO_DATE_RE.search(text)
    if m:
        parsed = _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        if parsed:
            return Deadline(parsed, Confidence.HIGH, f"Deadline {parsed.isoformat()}")
    return extract_context_deadline(text)


def extract_context_deadline(text: str) -> Deadline:
    """Only a date following a deadline phrase counts."""
    ctx = DEADLINE_CONTEXT_RE.search(text or "")
    if not ctx:
        return Deadline(None, Confidence.LOW)
    snippet = ctx.group(0)
    parsed = parse_date(snippet)
    if parsed is None:
        return Deadline(None, Confidence.LOW, take_words(snippet, EVIDENCE_WORDS))
    return Deadline(parsed, Confidence.MEDIUM, take_words(snippet, EVIDENCE_WORDS))


def normalize_deadline(raw) -> date | None:
    if not raw:
        return None
    if isinstance(raw, date):
        return raw
    return parse_date(str(raw).strip())


def is_deadline_passed(deadline: date | None, confidence: Confidence, today: date) -> bool:
    if deadline is None or confidence == Confidence.LOW:
        return False
    return deadline < today


INTL_YES_RE = re.compile(
    r"international (?:applicants|students|candidates) (?:are )?(?:welcome|eligible|encouraged)|"
    r"open to (?:all nationalities|international (?:applicants|students|candidates))",
    re.I,
)
INTL_NO_RE = re.compile(
    r"(?:citizens|permanent residents|home students) only|"
    r"must be eligible to work in|must be a (?:citizen|permanent resident)|"
    r"restricted to (?:citizens|home students)",
    re.I,
)


def extract_international_eligibility(text: str) -> Eligibility:
    text = text or ""
    m = INTL_YES_RE.search(text)
    if m:
        return Eligibility(TriState.YES, Confidence.MEDIUM, _context(text, m))
    m = INTL_NO_RE.search(text)
    if m:
        return Eligibility(TriState.NO, Confidence.MEDIUM, _context(text, m))
    return Eligibility(TriState.UNKNOWN, Confidence.LOW)


def extract_start_term(text: str) -> str | None:
    m = START_TERM_RE.search(text or "")
    if not m:
        return None
    return f"{m.group(1).capitalize()} {m.group(2)}"


def extract_application_url(html: str, base_url: str) -> str | None:
    anchors = extract_anchors(html, base_url)
    for href, text in anchors:
        low = text.lower()
        if "apply" in low or "application" in low:
            return href
    return anchors[0][0] if anchors else None


def infer_institution(url: str) -> str:
    host = host_of(url)
    if not host:
        return "TBA"
    parts = host.split(".")
    return parts[0].upper() if len(parts) >= 2 else host.upper()


def infer_publisher(source: str) -> str:
    host = host_of(source) or ""
    if "weworkremotely.com" in host:
        return "We Work Remotely"
    if "timeshighereducation.com" in host or "findaphd.com" in host:
        return "Various Universities"
    if urlparse(source or "").scheme in ("http", "https"):
        return infer_institution(source)
    return "Unknown"
