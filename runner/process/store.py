from datetime import date, datetime, timezone

from backend.errors import WriteError
from backend.models import Confidence, FeedItem, RunReport
from runner.ingest.content import take_words
from runner.process.classify import (
    classify_funding,
    extract_international_eligibility,
    extract_start_term,
    infer_publisher,
    is_deadline_passed,
)
from runner.process.enrich import (
    NUTSHELL_WORDS,
    Enrichment,
    build_from_html,
    enrich_item,
    final_program_type,
    resolve_deadline,
)

# owned by the reaper and verifier; ingestion payloads never carry them
LIFECYCLE_COLUMNS = ("status", "status_reason", "verify_failures")


def build_payload(item: FeedItem, enrichment: Enrichment, now: datetime | None = None) -> dict:
    now = now or datetime.now(timezone.utc)
    text = f"{item.title}\n{item.description}"
    deadline = resolve_deadline(enrichment, text)
    funding = classify_funding(text)
    eligibility = extract_international_eligibility(text)
    posted_at = item.published_at or now

    payload = {
        "program_type": final_program_type(item, enrichment).value,
        "canonical_url": item.link,
        "source_url": item.source_url or item.source,
        "source_key": item.source,
        "application_url": item.link,
        "title_clean": item.title,
        "nutshell": take_words(item.description, NUTSHELL_WORDS) or None,
        "description": item.description,
        "requirements": enrichment.requirements,
        "city": enrichment.city,
        "country": enrichment.country,
        "institution_name": infer_publisher(item.source),
        "funding_type": funding.funding_type.value,
        "funding_label": funding.label,
        "funding_confidence": funding.confidence.value,
        "funding_evidence": funding.evidence,
        "international_allowed": eligibility.allowed.value,
        "eligibility_confidence": eligibility.confidence.value,
        "eligibility_evidence": eligibility.evidence,
        "start_term": extract_start_term(text),
        "deadline_date": deadline.value.isoformat() if deadline.value else None,
        "deadline_confidence": deadline.confidence.value,
        "deadline_evidence": deadline.evidence,
        "posted_at": posted_at.isoformat(),
        "last_verified_at": now.isoformat(),
        "freshness_score": 100,
    }

    if item.html:
        page = build_from_html(item.html, item.link, item.etag, item.last_modified)
        payload.update(
            {
                "title_clean": page.title_clean,
                "nutshell": page.nutshell,
                "institution_name": page.institution,
                "funding_type": page.funding.funding_type.value,
                "funding_label": page.funding.label,
                "funding_confidence": page.funding.confidence.value,
                "funding_evidence": page.funding.evidence,
                "international_allowed": page.eligibility.allowed.value,
                "eligibility_confidence": page.eligibility.confidence.value,
                "eligibility_evidence": page.eligibility.evidence,
                "start_term": page.start_term,
                "application_url": page.application_url or item.link,
                "content_hash": page.content_hash,
                "etag": page.etag,
                "page_last_modified": page.page_last_modified,
            }
        )
        if enrichment.deadline is None:
            payload["deadline_date"] = page.deadline.value.isoformat() if page.deadline.value else None
            payload["deadline_confidence"] = page.deadline.confidence.value
            payload["deadline_evidence"] = page.deadline.evidence

    return payload


def payload_deadline_passed(payload: dict, today: date) -> bool:
    raw = payload.get("deadline_date")
    if not raw:
        return False
    return is_deadline_passed(date.fromisoformat(raw), Confidence(payload["deadline_confidence"]), today)


def ingest_item(item: FeedItem, store, llm, report: RunReport, today: date | None = None) -> None:
    """Enrich one new item and upsert it. Outcomes land in the report; nothing is raised."""
    today = today or datetime.now(timezone.utc).date()
    enrichment = enrich_item(item, llm)
    payload = build_payload(item, enrichment)
    if payload_deadline_passed(payload, today):
        report.add_skip(item.link, "expired_deadline", payload.get("deadline_date"))
        return
    try:
        store.upsert_opportunity(payload)
    except WriteError as e:
        report.add_skip(item.link, "upsert_error", str(e))
        return
    print(
        f"INGEST_WRITE link={item.link} type={payload['program_type']} via={enrichment.via}"
    )
    report.add_result(item.link, "created")
