"""Attempt service - reporting over the publish attempt log"""
from datetime import timedelta
from typing import Any, Dict

from igbridge.db.repositories import PublishAttemptRecord, PublishAttemptRepository
from igbridge.utils.timeutils import isoformat, utcnow

# Summary key for each attempt status
STATUS_SUMMARY_KEYS = {
    "success": "success",
    "failed": "failed",
    "rate_limited": "rateLimited",
    "token_expired": "tokenExpired",
    "container_error": "containerError",
    "publish_error": "publishError",
}


def attempt_to_dict(attempt: PublishAttemptRecord) -> Dict[str, Any]:
    return {
        "id": attempt.id,
        "facebookPageId": attempt.facebook_page_id,
        "status": attempt.status,
        "stage": attempt.stage,
        "errorCode": attempt.error_code,
        "errorMessage": attempt.error_message,
        "quotaUsage": attempt.quota_usage,
        "quotaTotal": attempt.quota_total,
        "imageUrl": attempt.image_url,
        "containerId": attempt.container_id,
        "mediaId": attempt.media_id,
        "createdAt": isoformat(attempt.created_at),
    }


def list_attempts(attempts: PublishAttemptRepository, license_id: int,
                  limit: int = 50, offset: int = 0) -> Dict[str, Any]:
    items = attempts.list_by_license(license_id, limit=limit, offset=offset)
    return {
        "items": [attempt_to_dict(a) for a in items],
        "total": attempts.count(license_id=license_id),
        "limit": limit,
        "offset": offset,
    }


def attempt_stats(attempts: PublishAttemptRepository, license_id: int, hours: int = 24) -> Dict[str, Any]:
    """Per-status counts for one license over the last ``hours``"""
    summary = {key: 0 for key in STATUS_SUMMARY_KEYS.values()}
    summary["total"] = 0
    summary["maxQuotaUsage"] = 0

    for row in attempts.status_counts(license_id, utcnow() - timedelta(hours=hours)):
        count = int(row["count"])
        summary["total"] += count
        if row.get("max_quota_usage"):
            summary["maxQuotaUsage"] = max(summary["maxQuotaUsage"], row["max_quota_usage"])
        key = STATUS_SUMMARY_KEYS.get(row["status"])
        if key:
            summary[key] = count

    success_rate = round(summary["success"] / summary["total"] * 100) if summary["total"] else 0
    return {"period": f"{hours}h", **summary, "successRate": success_rate}


def error_trends(attempts: PublishAttemptRepository, hours: int = 24, limit: int = 20) -> Dict[str, Any]:
    rows = attempts.error_trends(utcnow() - timedelta(hours=hours), limit=limit)
    return {
        "period": f"{hours}h",
        "errors": [
            {
                "errorCode": row["error_code"],
                "errorMessage": row["error_message"],
                "count": int(row["count"]),
                "lastOccurred": isoformat(row["last_occurred"]),
            }
            for row in rows
        ],
    }
