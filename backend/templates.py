# templates.py — Notification templates
# Each template renders a short in-app title/body and a plain-text email
# subject/body from the same data dict. Missing keys render as blanks.

from typing import Any, Dict, NamedTuple

from models import NotificationPriority


class RenderedMessage(NamedTuple):
    title: str
    body: str
    priority: NotificationPriority


class _Blank(dict):
    def __missing__(self, key):
        return ""


TEMPLATES: Dict[str, Dict[str, Any]] = {
    "issue_reported": {
        "title": "New Issue Reported: {title}",
        "body": "{reporter_name} reported a {priority} priority {category} issue at {location_label}.",
        "priority": NotificationPriority.HIGH,
    },
    "assignment_created": {
        "title": "New Assignment: {title}",
        "body": "You have been assigned a {priority} priority {category} issue by {assigned_by_name}.",
        "priority": NotificationPriority.HIGH,
    },
    "assignment_accepted": {
        "title": "Assignment Accepted: {title}",
        "body": "{technician_name} has accepted the assignment.",
        "priority": NotificationPriority.NORMAL,
    },
    "assignment_rejected": {
        "title": "Assignment Rejected: {title}",
        "body": "{technician_name} rejected the assignment: {reason}",
        "priority": NotificationPriority.HIGH,
    },
    "work_started": {
        "title": "Work Started: {title}",
        "body": "{technician_name} has started work on this issue.",
        "priority": NotificationPriority.NORMAL,
    },
    "assignment_completed": {
        "title": "Assignment Completed: {title}",
        "body": "{technician_name} completed the work. Notes: {completion_notes}",
        "priority": NotificationPriority.NORMAL,
    },
    "issue_resolved": {
        "title": "Issue Resolved: {title}",
        "body": "Your reported issue has been resolved. Please rate the work when you can.",
        "priority": NotificationPriority.NORMAL,
    },
    "issue_closed": {
        "title": "Issue Closed: {title}",
        "body": "Your reported issue has been closed by the committee.",
        "priority": NotificationPriority.LOW,
    },
    "recurring_problem_alert": {
        "title": "RECURRING PROBLEM ALERT: {category} in {location_label}",
        "body": (
            "{severity_level} severity. {issue_count} issues reported at {readable_address}, "
            "{recent_issue_count} in the last 30 days, {unresolved_count} unresolved. "
            "Total cost {total_cost:.0f}, average {average_cost:.0f}. "
            "Average resolution {avg_resolution_days} days. Keywords: {keywords}."
        ),
        "priority": NotificationPriority.URGENT,
    },
}


def render(template: str, data: Dict[str, Any]) -> RenderedMessage:
    """Render a template. Unknown template names raise KeyError."""
    entry = TEMPLATES[template]
    values = _Blank(data)
    return RenderedMessage(
        title=entry["title"].format_map(values),
        body=entry["body"].format_map(values),
        priority=entry["priority"],
    )
