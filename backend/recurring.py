# recurring.py — Recurring problem detection
"""
Finds clusters of issues that keep coming back at the same place.

Issues from the last ``window_months`` calendar months are grouped by
(category, block ?? area ?? "unknown"). A group is a recurring problem when
it has at least 3 issues and at least 2 of them were reported in the last
30 days. Severity follows the recent count: >= 5 HIGH, 3-4 MEDIUM, else LOW.

Computing groups and alerting the committee are separate operations:
``compute_recurring_problems`` has no side effects, ``notify_committee``
only sends, and ``detect_recurring_problems`` does both (scheduler and the
manual trigger). The dashboard only ever computes.
"""

import calendar
import logging
import math
import re
from collections import Counter, OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

import config
from dispatch import DeliveryResult, NotificationDispatcher
from domain import IssueSnapshot, Location
from geocoding import GeocodingResolver, compose_address
from models import IssueStatus, UserRole, utcnow
from store import RecordStore, UserDirectory
from telemetry import get_tracer, start_span

logger = logging.getLogger("residency-desk.recurring")

HIGH = "HIGH"
MEDIUM = "MEDIUM"
LOW = "LOW"
SEVERITY_RANK = {HIGH: 0, MEDIUM: 1, LOW: 2}

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


# ============================================================
# VALUE TYPES
# ============================================================

@dataclass(frozen=True)
class RecurringProblemGroup:
    category: str
    location: Location
    issue_count: int
    recent_issue_count: int
    unresolved_count: int
    total_cost: float
    average_cost: float
    avg_resolution_days: int
    common_keywords: Tuple[str, ...]
    severity_level: str
    first_reported: datetime
    last_reported: datetime
    sample: Tuple[IssueSnapshot, ...]

    @property
    def label(self) -> str:
        return self.location.label

    @property
    def key(self) -> Tuple[str, str]:
        return (self.category, self.label)

    @property
    def id(self) -> str:
        return f"{self.category}_{self.label}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "location": {
                "block_number": self.location.block_number,
                "area": self.location.area,
                "lat": self.location.latitude,
                "lng": self.location.longitude,
            },
            "issue_count": self.issue_count,
            "recent_issue_count": self.recent_issue_count,
            "unresolved_count": self.unresolved_count,
            "total_cost": self.total_cost,
            "average_cost": self.average_cost,
            "avg_resolution_days": self.avg_resolution_days,
            "common_keywords": list(self.common_keywords),
            "severity_level": self.severity_level,
            "first_reported": self.first_reported.isoformat(),
            "last_reported": self.last_reported.isoformat(),
            "sample": [
                {
                    "id": issue.id,
                    "title": issue.title,
                    "status": issue.status.value,
                    "created_at": issue.created_at.isoformat(),
                }
                for issue in self.sample
            ],
        }


class AlertLedger:
    """Remembers which groups were alerted on which UTC day, per process."""

    def __init__(self):
        self._sent: Set[Tuple[Tuple[str, str], date]] = set()

    def claim(self, key: Tuple[str, str], day: date) -> bool:
        """True the first time a group is seen for a day; False afterwards.

        Entries from earlier days are dropped once a later day is claimed.
        """
        entry = (key, day)
        if entry in self._sent:
            return False
        self._sent = {seen for seen in self._sent if seen[1] >= day}
        self._sent.add(entry)
        return True

    def __len__(self) -> int:
        return len(self._sent)

    def clear(self) -> None:
        self._sent.clear()


# Shared by detectors built per request
DEFAULT_LEDGER = AlertLedger()


# ============================================================
# PURE HELPERS
# ============================================================

def subtract_months(moment: datetime, months: int) -> datetime:
    """Same wall-clock time ``months`` calendar months earlier, day clamped."""
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def severity_for(recent_count: int) -> str:
    if recent_count >= 5:
        return HIGH
    if recent_count >= 3:
        return MEDIUM
    return LOW


def extract_keywords(titles: Iterable[str], limit: int = config.RECURRING_TOP_KEYWORDS) -> List[str]:
    counts: Counter = Counter()
    for title in titles:
        normalized = _NON_ALNUM.sub("", (title or "").lower())
        counts.update(word for word in normalized.split() if len(word) > 3)
    # sorted() is stable, so ties keep first-appearance order
    frequent = sorted(
        ((word, n) for word, n in counts.items() if n >= 2),
        key=lambda item: -item[1],
    )
    return [word for word, _ in frequent[:limit]]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def average_resolution_days(issues: Iterable[IssueSnapshot]) -> int:
    durations = [
        (issue.resolved_at - issue.created_at).total_seconds()
        for issue in issues
        if issue.status == IssueStatus.RESOLVED and issue.resolved_at is not None
    ]
    if not durations:
        return 0
    return _round_half_up(sum(durations) / len(durations) / 86400)


def _group_location(members: List[IssueSnapshot]) -> Location:
    first = members[0].location
    coords = next((m.location for m in members if m.location.has_coordinates), None)
    return Location(
        block_number=first.block_number,
        area=first.area,
        latitude=coords.latitude if coords else None,
        longitude=coords.longitude if coords else None,
    )


def build_groups(
    issues: Iterable[IssueSnapshot],
    now: datetime,
    min_group_size: int = config.RECURRING_MIN_GROUP_SIZE,
    recent_days: int = config.RECURRING_RECENT_DAYS,
    min_recent: int = config.RECURRING_MIN_RECENT,
    sample_size: int = config.RECURRING_SAMPLE_SIZE,
) -> List[RecurringProblemGroup]:
    """Group issues and keep the ones that qualify as recurring problems."""
    buckets: "OrderedDict[Tuple[str, str], List[IssueSnapshot]]" = OrderedDict()
    for issue in sorted(issues, key=lambda i: (i.created_at, i.id)):
        buckets.setdefault((issue.category, issue.location.label), []).append(issue)

    recent_cutoff = now - timedelta(days=recent_days)
    groups = []
    for (category, _label), members in buckets.items():
        if len(members) < min_group_size:
            continue
        recent = [m for m in members if m.created_at >= recent_cutoff]
        if len(recent) < min_recent:
            continue

        total_cost = float(sum(m.cost or 0 for m in members))
        newest_first = sorted(members, key=lambda m: (m.created_at, m.id), reverse=True)
        groups.append(RecurringProblemGroup(
            category=category,
            location=_group_location(members),
            issue_count=len(members),
            recent_issue_count=len(recent),
            unresolved_count=sum(1 for m in members if m.status != IssueStatus.RESOLVED),
            total_cost=total_cost,
            average_cost=total_cost / len(members),
            avg_resolution_days=average_resolution_days(members),
            common_keywords=tuple(extract_keywords(m.title for m in members)),
            severity_level=severity_for(len(recent)),
            first_reported=members[0].created_at,
            last_reported=members[-1].created_at,
            sample=tuple(newest_first[:sample_size]),
        ))
    return groups


def sort_for_display(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Severity first (HIGH..LOW), then most recently reported."""
    by_recency = sorted(records, key=lambda r: r["last_reported"], reverse=True)
    return sorted(by_recency, key=lambda r: SEVERITY_RANK.get(r["severity_level"], 99))


# ============================================================
# DETECTOR
# ============================================================

class RecurringProblemDetector:
    def __init__(
        self,
        store: RecordStore,
        users: UserDirectory,
        dispatcher: NotificationDispatcher,
        geocoder: GeocodingResolver,
        clock: Callable = utcnow,
        ledger: Optional[AlertLedger] = DEFAULT_LEDGER,
    ):
        self.store = store
        self.users = users
        self.dispatcher = dispatcher
        self.geocoder = geocoder
        self.clock = clock
        self.ledger = ledger
        self.last_deliveries: List[DeliveryResult] = []
        self.tracer = get_tracer("residency-desk.recurring")

    async def compute_recurring_problems(
        self, window_months: int = config.RECURRING_WINDOW_MONTHS
    ) -> List[RecurringProblemGroup]:
        now = self.clock()
        with start_span(self.tracer, "recurring.compute", window_months=window_months):
            issues = await self.store.find_issues_since(subtract_months(now, window_months))
            groups = build_groups(issues, now)
        logger.info(f"Recurring scan: {len(issues)} issues, {len(groups)} recurring problems")
        return groups

    async def notify_committee(self, groups: List[RecurringProblemGroup]) -> List[DeliveryResult]:
        if not groups:
            return []
        committee = await self.users.find_users_by_role(UserRole.COMMITTEE)
        if not committee:
            logger.warning("No committee members found for recurring alerts")
            return []

        today = self.clock().date()
        results: List[DeliveryResult] = []
        for group in groups:
            if self.ledger is not None and not self.ledger.claim(group.key, today):
                logger.info(f"Recurring alert for {group.id} already sent today")
                continue
            readable = await self._readable_address(group.location)
            data = {
                "group_id": group.id,
                "category": group.category,
                "location_label": group.label,
                "readable_address": readable,
                "severity_level": group.severity_level,
                "issue_count": group.issue_count,
                "recent_issue_count": group.recent_issue_count,
                "unresolved_count": group.unresolved_count,
                "total_cost": group.total_cost,
                "average_cost": group.average_cost,
                "avg_resolution_days": group.avg_resolution_days,
                "keywords": ", ".join(group.common_keywords) or "none",
            }
            for member in committee:
                for channel in self.dispatcher.channels:
                    try:
                        result = await self.dispatcher.send(channel, member, "recurring_problem_alert", data)
                    except Exception as e:
                        logger.warning(f"Recurring alert to {member.id} via {channel} raised: {e}")
                        result = DeliveryResult(member.id, channel, "recurring_problem_alert", False, str(e)[:200])
                    if result.success:
                        logger.info(f"Recurring alert sent to {member.id} via {channel} for {group.id}")
                    elif not result.skipped:
                        logger.warning(f"Recurring alert to {member.id} via {channel} failed: {result.error}")
                    results.append(result)
        return results

    async def detect_recurring_problems(
        self, window_months: int = config.RECURRING_WINDOW_MONTHS, notify: bool = True
    ) -> List[RecurringProblemGroup]:
        """Compute groups and, when ``notify`` is set, alert the committee.

        Per-recipient outcomes of the last run are kept on ``last_deliveries``.
        """
        with start_span(self.tracer, "recurring.detect", notify=notify):
            groups = await self.compute_recurring_problems(window_months)
            self.last_deliveries = await self.notify_committee(groups) if notify else []
        return groups

    async def get_recurring_problems_for_dashboard(
        self, window_months: int = config.RECURRING_WINDOW_MONTHS
    ) -> Dict[str, Any]:
        groups = await self.compute_recurring_problems(window_months)
        records = []
        for group in groups:
            location = group.to_dict()["location"]
            location["readable_address"] = await self._readable_address(group.location)
            records.append({
                "id": group.id,
                "category": group.category,
                "location": location,
                "issue_count": group.issue_count,
                "recent_issue_count": group.recent_issue_count,
                "total_cost": group.total_cost,
                "severity_level": group.severity_level,
                "last_reported": group.last_reported,
                "unresolved_count": group.unresolved_count,
            })
        records = sort_for_display(records)
        for record in records:
            record["last_reported"] = record["last_reported"].isoformat()
        return {
            "recurring_problems": records,
            "total_count": len(records),
            "high_severity_count": sum(1 for r in records if r["severity_level"] == HIGH),
            "medium_severity_count": sum(1 for r in records if r["severity_level"] == MEDIUM),
            "low_severity_count": sum(1 for r in records if r["severity_level"] == LOW),
        }

    async def _readable_address(self, location: Location) -> str:
        try:
            return await self.geocoder.readable_address(location)
        except Exception as e:
            logger.warning(f"Readable address lookup failed: {e}")
            return compose_address(location)
