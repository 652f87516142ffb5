from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from backend.errors import MalformedRecordError


class ProgramType(str, Enum):
    PHD = "PHD"
    INTERNSHIP = "INTERNSHIP"
    VISITING_RESEARCH = "VISITING_RESEARCH"
    JOB = "JOB"


class FundingType(str, Enum):
    FUNDED = "FUNDED"
    PARTIALLY_FUNDED = "PARTIALLY_FUNDED"
    EXTERNAL_FUNDING_OK = "EXTERNAL_FUNDING_OK"
    SELF_FUNDED_OK = "SELF_FUNDED_OK"
    SALARIED = "SALARIED"
    UNKNOWN = "UNKNOWN"


class TriState(str, Enum):
    YES = "YES"
    NO = "NO"
    UNKNOWN = "UNKNOWN"


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class OpportunityStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    BLOCKED = "BLOCKED"
    NEEDS_REVIEW = "NEEDS_REVIEW"


class SourceStrategy(str, Enum):
    SEED = "SEED"
    CURATED = "CURATED"
    OPPORTUNISTIC = "OPPORTUNISTIC"


class SourceKind(str, Enum):
    FEED = "FEED"
    CRAWL = "CRAWL"


class FetchAction(str, Enum):
    DISCOVER = "DISCOVER"
    VERIFY = "VERIFY"


class FetchStatus(str, Enum):
    OK = "OK"
    NOT_MODIFIED = "NOT_MODIFIED"
    BLOCKED = "BLOCKED"
    ERROR = "ERROR"


def parse_program_type(raw: str | None) -> ProgramType | None:
    if not raw:
        return None
    try:
        return ProgramType(raw.strip().upper())
    except ValueError:
        return None


class Source(BaseModel):
    """Configured origin with its crawl policy. Read-only to the pipeline."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str | None = None
    key: str
    program_type: ProgramType
    strategy: SourceStrategy = SourceStrategy.CURATED
    kind: SourceKind = SourceKind.CRAWL
    base_url: str = Field(min_length=1)
    allow_paths: list[str] = Field(default_factory=list)
    block_paths: list[str] = Field(default_factory=list)
    max_depth: int = Field(default=1, ge=0)
    max_requests_per_run: int = Field(default=20, ge=0)
    min_delay_ms: int = Field(default=750, ge=0)
    respect_robots: bool = True
    extractor: str = "anchors"
    active: bool = True

    @classmethod
    def from_row(cls, row: dict) -> "Source":
        try:
            return cls.model_validate(row)
        except ValidationError as e:
            raise MalformedRecordError(
                "opportunity_sources", row.get("id"), _first_error(e)
            ) from e


class Opportunity(BaseModel):
    """Validated view of an `opportunities` row."""

    model_config = ConfigDict(extra="ignore")

    id: str
    program_type: ProgramType
    canonical_url: str = Field(min_length=1)
    source_url: str | None = None
    application_url: str | None = None
    title_clean: str | None = None
    content_hash: str | None = None
    etag: str | None = None
    page_last_modified: str | None = None
    deadline_date: date | None = None
    deadline_confidence: Confidence = Confidence.LOW
    last_verified_at: datetime | None = None
    freshness_score: int = Field(default=0, ge=0, le=100)
    verify_failures: int = Field(default=0, ge=0)
    status: OpportunityStatus = OpportunityStatus.ACTIVE
    status_reason: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> "Opportunity":
        try:
            return cls.model_validate(row)
        except ValidationError as e:
            raise MalformedRecordError(
                "opportunities", str(row.get("id")), _first_error(e)
            ) from e


def _first_error(err: ValidationError) -> str:
    errors = err.errors()
    if not errors:
        return str(err)
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    return f"{loc}: {first.get('msg')}"


@dataclass
class FeedItem:
    title: str
    link: str
    description: str
    published_at: datetime | None
    source: str
    inferred_type: ProgramType
    source_url: str | None = None
    html: str | None = None
    etag: str | None = None
    last_modified: str | None = None


@dataclass
class FetchResult:
    status: FetchStatus
    fetched_url: str
    canonical_url: str
    http_status: int | None = None
    elapsed_ms: int = 0
    response_bytes: int | None = None
    etag: str | None = None
    last_modified: str | None = None
    body_text: str | None = None
    blocked_reason: str | None = None
    error_message: str | None = None


@dataclass
class FetchLog:
    action: FetchAction
    status: FetchStatus
    fetched_url: str
    program_type: ProgramType | None = None
    source_id: str | None = None
    canonical_url: str | None = None
    http_status: int | None = None
    elapsed_ms: int | None = None
    response_bytes: int | None = None
    etag: str | None = None
    page_last_modified: str | None = None
    content_hash: str | None = None
    blocked_reason: str | None = None
    error_message: str | None = None

    def to_row(self) -> dict:
        row = asdict(self)
        for key, value in row.items():
            if isinstance(value, Enum):
                row[key] = value.value
        return row


@dataclass
class RunReport:
    """What a discover/hunt run hands back to its trigger."""

    results: list[dict] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)
    stats: dict = field(default_factory=dict)

    def add_result(self, link: str, status: str) -> None:
        self.results.append({"link": link, "status": status})

    def add_skip(self, link: str, reason: str, detail: str | None = None) -> None:
        entry = {"link": link, "reason": reason}
        if detail:
            entry["detail"] = detail[:500]
        self.skipped.append(entry)

    def as_dict(self) -> dict:
        return {"results": self.results, "skipped": self.skipped, "stats": self.stats}
