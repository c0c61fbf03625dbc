"""Subscription-tier usage gate for audio uploads.

An over-limit result is a normal negative decision, not an exception.
Only a failure to read profiles or jobs raises ``UsageLookupError``.
"""

import logging
import math
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from app.config import Settings
from app.db.supabase_client import run_blocking
from app.jobs.models import JobStatus, utcnow

logger = logging.getLogger(__name__)

UNLIMITED = -1
MB_PER_MINUTE = 0.75
MIN_ESTIMATE_MINUTES = 1
MAX_ESTIMATE_MINUTES = 480


@dataclass(frozen=True)
class TierLimits:
    max_file_minutes: int
    monthly_minutes: int
    monthly_files: int
    max_file_mb: int
    monthly_mb: int


TIER_LIMITS: Dict[str, TierLimits] = {
    "free": TierLimits(
        max_file_minutes=120, monthly_minutes=180, monthly_files=2,
        max_file_mb=1000, monthly_mb=10000,
    ),
    "student": TierLimits(
        max_file_minutes=240, monthly_minutes=1500, monthly_files=UNLIMITED,
        max_file_mb=2000, monthly_mb=20000,
    ),
}
DEFAULT_TIER = "free"
PAID_TIER = "student"


class UsageLookupError(Exception):
    """Usage or profile data could not be read."""


@dataclass
class UsageDecision:
    can_process: bool
    message: str
    user_tier: str
    estimated_duration_minutes: int
    current_usage_minutes: int
    monthly_limit_minutes: int
    current_usage_mb: float
    monthly_limit_mb: int
    files_this_month: int
    file_limit: int
    remaining_minutes: int
    limit: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def estimate_duration_minutes(
    file_size_mb: float, client_duration_minutes: Optional[float] = None
) -> int:
    """Client duration wins; otherwise estimate from size at 0.75 MB/minute."""
    if client_duration_minutes and client_duration_minutes > 0:
        return int(math.ceil(client_duration_minutes))
    estimate = int(math.ceil((file_size_mb or 0) / MB_PER_MINUTE))
    return max(MIN_ESTIMATE_MINUTES, min(MAX_ESTIMATE_MINUTES, estimate))


def _hm(minutes: float) -> str:
    minutes = int(minutes)
    return f"{minutes // 60}h {minutes % 60}m"


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=utcnow().tzinfo)
    return parsed


def effective_tier(profile: Optional[Dict[str, Any]], now: datetime) -> str:
    """Stored tier, except a paid period that has not ended yet still counts as paid."""
    if not profile:
        return DEFAULT_TIER
    period_end = _parse_timestamp(profile.get("subscription_period_end"))
    if period_end is not None and period_end > now:
        return PAID_TIER
    tier = (profile.get("subscription_tier") or DEFAULT_TIER).lower()
    return tier if tier in TIER_LIMITS else DEFAULT_TIER


class UsageLimiter:
    def __init__(self, client, store, settings: Settings):
        self._client = client
        self._store = store
        self._timeout = settings.database_timeout_seconds
        self._settings = settings

    async def _fetch_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        def _select():
            return (
                self._client.table("profiles")
                .select("subscription_tier, subscription_status, subscription_period_end")
                .eq("id", user_id)
                .limit(1)
                .execute()
            )

        response = await run_blocking(_select, timeout=self._timeout)
        return response.data[0] if response.data else None

    async def _fetch_month_jobs(self, user_id: str, since: datetime):
        def _select():
            return (
                self._client.table("jobs")
                .select("job_id, status, audio_file_path, duration_minutes, file_size_mb")
                .eq("user_id", user_id)
                .gte("created_at", since.isoformat())
                .execute()
            )

        response = await run_blocking(_select, timeout=self._timeout)
        return response.data or []

    async def check(
        self,
        user_id: str,
        file_size_mb: float,
        duration_minutes: Optional[float] = None,
    ) -> UsageDecision:
        """Decide whether ``user_id`` may process a file of this size/duration.

        Raises:
            UsageLookupError: if profile or usage data cannot be read.
        """
        now = utcnow()
        estimated = estimate_duration_minutes(file_size_mb, duration_minutes)
        try:
            profile = await self._fetch_profile(user_id)
            jobs = await self._fetch_month_jobs(user_id, _month_start(now))
        except Exception as e:
            raise UsageLookupError(f"Usage validation failed: {e}") from e

        tier = effective_tier(profile, now)
        limits = TIER_LIMITS[tier]

        counted = [
            job for job in jobs
            if job.get("status") == JobStatus.COMPLETED.value and job.get("audio_file_path")
        ]
        used_minutes = int(sum(job.get("duration_minutes") or 0 for job in counted))
        used_mb = float(sum(job.get("file_size_mb") or 0 for job in counted))
        files = len(counted)

        decision = UsageDecision(
            can_process=False,
            message="",
            user_tier=tier,
            estimated_duration_minutes=estimated,
            current_usage_minutes=used_minutes,
            monthly_limit_minutes=limits.monthly_minutes,
            current_usage_mb=used_mb,
            monthly_limit_mb=limits.monthly_mb,
            files_this_month=files,
            file_limit=limits.monthly_files,
            remaining_minutes=max(0, limits.monthly_minutes - used_minutes),
        )

        if estimated > limits.max_file_minutes:
            decision.limit = "file_duration"
            decision.message = (
                f"Your audio is {_hm(estimated)} long, but {tier} plan allows max "
                f"{limits.max_file_minutes // 60}h per file. Try splitting into shorter recordings."
            )
        elif file_size_mb > limits.max_file_mb:
            decision.limit = "file_size"
            decision.message = (
                f"This file is {file_size_mb:.0f}MB, but {tier} plan allows max "
                f"{limits.max_file_mb}MB per file."
            )
        elif used_minutes + estimated > limits.monthly_minutes:
            decision.limit = "monthly_minutes"
            decision.message = (
                f"This {_hm(estimated)} audio would exceed your monthly limit. "
                f"You've used {_hm(used_minutes)} of {math.ceil(limits.monthly_minutes / 60)}h. "
                "Your limit resets next month."
            )
        elif used_mb + file_size_mb > limits.monthly_mb:
            decision.limit = "monthly_size"
            decision.message = (
                f"This upload would exceed your monthly limit of {limits.monthly_mb}MB. "
                "Your limit resets next month."
            )
        elif limits.monthly_files != UNLIMITED and files >= limits.monthly_files:
            decision.limit = "file_count"
            decision.message = (
                f"You've reached your monthly limit of {limits.monthly_files} uploads on the "
                f"{tier} plan. Your limit resets next month."
            )
        else:
            decision.can_process = True
            decision.message = f"Within limits - {_hm(decision.remaining_minutes)} remaining this month"

        logger.info(
            "Usage check for %s: tier=%s estimate=%dm used=%dm files=%d -> %s",
            user_id, tier, estimated, used_minutes, files,
            "ok" if decision.can_process else decision.limit,
        )
        return decision

    async def track_usage(
        self, job_id: str, user_id: str, duration_minutes: float, file_size_mb: float
    ) -> None:
        """Record the processed duration and size on the owner's completed job."""
        await self._store.update(
            job_id,
            user_id,
            {
                "duration_minutes": int(math.ceil(duration_minutes)),
                "file_size_mb": int(round(file_size_mb)),
            },
            expected_status=JobStatus.COMPLETED,
        )
