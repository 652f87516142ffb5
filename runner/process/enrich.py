import sys
from dataclasses import dataclass, field
from datetime import date

from pydantic import BaseModel, ConfigDict, ValidationError

from backend.errors import EnrichmentError
from backend.llm.base import EXTRACTION_SCHEMA, LLMError, LLMTimeout, LLMUnavailable, extract_json
from backend.models import Confidence, FeedItem, ProgramType
from runner.ingest.content import (
    MAX_HASH_CHARS,
    compute_content_hash,
    extract_h1,
    extract_text,
    take_words,
)
from runner.process.classify import (
    APPLICATION_PLACEHOLDER,
    Deadline,
    Eligibility,
    Funding,
    classify_funding,
    extract_application_url,
    extract_context_deadline,
    extract_deadline,
    extract_international_eligibility,
    extract_start_term,
    infer_institution,
    is_phd_text,
    normalize_deadline,
)

NUTSHELL_WORDS = 15
MAX_PROMPT_DESCRIPTION = 6000

PROMPT_TEMPLATE = """You are enriching job and PhD opportunity posts for a database.
Return a JSON object with fields: city (string or null), country (string or null), isPhD (boolean), deadline (ISO8601 date string or null), requirements (array of short requirement strings).

Text:
Title: {title}
Description: {description}"""


class ExtractionResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    city: str | None = None
    country: str | None = None
    isPhD: bool
    deadline: str | None = None
    requirements: list[str] | None = None


@dataclass
class Enrichment:
    is_phd: bool
    city: str | None = None
    country: str | None = None
    deadline: date | None = None
    requirements: list[str] = field(default_factory=lambda: [APPLICATION_PLACEHOLDER])
    via: str = "fallback"


@dataclass
class PageExtract:
    """Deterministic fields read from a fetched opportunity page."""

    content_hash: str
    title_clean: str
    nutshell: str
    institution: str
    deadline: Deadline
    funding: Funding
    eligibility: Eligibility
    start_term: str | None
    application_url: str | None
    etag: str | None = None
    page_last_modified: str | None = None


def build_prompt(item: FeedItem) -> str:
    return PROMPT_TEMPLATE.format(
        title=item.title,
        description=(item.description or "")[:MAX_PROMPT_DESCRIPTION],
    )


def enrich_with_ai(item: FeedItem, llm) -> Enrichment:
    try:
        raw = llm.generate_json(build_prompt(item), EXTRACTION_SCHEMA)
    except (LLMUnavailable, LLMTimeout, LLMError) as e:
        raise EnrichmentError(f"{type(e).__name__}: {e}") from e
    try:
        parsed = ExtractionResult.model_validate(extract_json(raw))
    except (ValueError, ValidationError) as e:
        raise EnrichmentError(f"schema_error: {str(e)[:200]}") from e

    requirements = [r.strip() for r in parsed.requirements or [] if r and r.strip()]
    return Enrichment(
        is_phd=parsed.isPhD,
        city=(parsed.city or "").strip() or None,
        country=(parsed.country or "").strip() or None,
        deadline=normalize_deadline(parsed.deadline),
        requirements=requirements or [APPLICATION_PLACEHOLDER],
        via="ai",
    )


def fallback_enrichment(item: FeedItem) -> Enrichment:
    text = f"{item.title}\n{item.description}".lower()
    return Enrichment(is_phd=is_phd_text(text))


def enrich_item(item: FeedItem, llm=None) -> Enrichment:
    if llm is None:
        return fallback_enrichment(item)
    try:
        return enrich_with_ai(item, llm)
    except EnrichmentError as e:
        print(f"ENRICH_FALLBACK link={item.link} reason={str(e)[:200]}", file=sys.stderr)
        return fallback_enrichment(item)


def final_program_type(item: FeedItem, enrichment: Enrichment) -> ProgramType:
    return ProgramType.PHD if enrichment.is_phd else item.inferred_type


def build_from_html(
    html: str,
    canonical_url: str,
    etag: str | None = None,
    last_modified: str | None = None,
) -> PageExtract:
    h1 = extract_h1(html)
    text = extract_text(html)
    core = f"{h1 or ''}\n{text}".strip()
    return PageExtract(
        content_hash=compute_content_hash(core[:MAX_HASH_CHARS]),
        title_clean=(h1 or "").strip() or take_words(text, 10) or "Opportunity",
        nutshell=take_words(text, NUTSHELL_WORDS) or "See source for details.",
        institution=infer_institution(canonical_url),
        deadline=extract_deadline(text),
        funding=classify_funding(text),
        eligibility=extract_international_eligibility(text),
        start_term=extract_start_term(text),
        application_url=extract_application_url(html, canonical_url),
        etag=etag,
        page_last_modified=last_modified,
    )


def resolve_deadline(enrichment: Enrichment, text: str) -> Deadline:
    if enrichment.deadline is not None:
        return Deadline(enrichment.deadline, Confidence.MEDIUM, "Extracted by model")
    return extract_context_deadline(text)
