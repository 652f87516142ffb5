import math
from datetime import date, datetime, timezone

from backend.models import FetchStatus, Opportunity, OpportunityStatus
from runner.process.classify import is_deadline_passed
from runner.process.enrich import PageExtract

FRESHNESS_DECAY_PER_HOUR = 5


def freshness_from_hours(hours: float) -> int:
    if math.isinf(hours):
        return 0
    score = 100 - int(hours * FRESHNESS_DECAY_PER_HOUR)
    return max(0, min(100, score))


def hours_since(then: datetime | None, now: datetime) -> float:
    if then is None:
        return float("inf")
    if then.tzinfo is None:
        then = then.replace(tzinfo=timezone.utc)
    return max(0.0, (now - then).total_seconds() / 3600.0)


def verified_fields(row: Opportunity, now: datetime) -> dict:
    """Page reachable and unchanged."""
    fields = {
        "last_verified_at": now.isoformat(),
        "freshness_score": 100,
        "verify_failures": 0,
    }
    if row.status in (OpportunityStatus.NEEDS_REVIEW, OpportunityStatus.BLOCKED):
        fields["status"] = OpportunityStatus.ACTIVE.value
        fields["status_reason"] = "reverified"
    return fields


def changed_fields(row: Opportunity, page: PageExtract, now: datetime, today: date) -> dict:
    fields = verified_fields(row, now)
    fields.update(
        {
            "title_clean": page.title_clean,
            "nutshell": page.nutshell,
            "funding_type": page.funding.funding_type.value,
            "funding_label": page.funding.label,
            "funding_confidence": page.funding.confidence.value,
            "funding_evidence": page.funding.evidence,
            "international_allowed": page.eligibility.allowed.value,
            "eligibility_confidence": page.eligibility.confidence.value,
            "eligibility_evidence": page.eligibility.evidence,
            "deadline_date": page.deadline.value.isoformat() if page.deadline.value else None,
            "deadline_confidence": page.deadline.confidence.value,
            "deadline_evidence": page.deadline.evidence,
            "start_term": page.start_term,
            "content_hash": page.content_hash,
            "etag": page.etag,
            "page_last_modified": page.page_last_modified,
        }
    )
    if page.application_url:
        fields["application_url"] = page.application_url
    if is_deadline_passed(page.deadline.value, page.deadline.confidence, today):
        fields["status"] = OpportunityStatus.EXPIRED.value
        fields["status_reason"] = "deadline_passed"
    elif row.status != OpportunityStatus.ACTIVE:
        fields["status"] = OpportunityStatus.ACTIVE.value
        fields["status_reason"] = "reverified"
    return fields


def failure_fields(row: Opportunity, status: FetchStatus, now: datetime, threshold: int) -> dict:
    """
    One more consecutive failure. At the threshold the row leaves ACTIVE:
    BLOCKED when the last attempt was refused, NEEDS_REVIEW when it errored.
    """
    failures = row.verify_failures + 1
    fields = {
        "verify_failures": failures,
        "freshness_score": freshness_from_hours(hours_since(row.last_verified_at, now)),
    }
    if failures >= threshold:
        if status == FetchStatus.BLOCKED:
            target = OpportunityStatus.BLOCKED
        else:
            target = OpportunityStatus.NEEDS_REVIEW
        if row.status != target:
            fields["status"] = target.value
            fields["status_reason"] = f"verify_failed_{failures}x"
    return fields
