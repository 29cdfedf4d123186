# taskengine/executor/reports.py
"""
Report aggregation for report_generation tasks.

Pure functions over already-loaded rows; the handler does the querying.
"""

import json
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

REPORT_TYPES = ("task_summary", "execution_stats", "webhook_activity")

RECENT_ITEMS = 10


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _rate(part: int, total: int) -> float:
    return round(part / total * 100, 2) if total else 0.0


def build_task_summary(tasks: Iterable[Any], start: datetime, end: datetime) -> Dict[str, Any]:
    tasks = list(tasks)
    by_status = dict(Counter(t.status for t in tasks))
    by_type = dict(Counter(t.task_type for t in tasks))

    return {
        "period": {"startDate": _iso(start), "endDate": _iso(end)},
        "totalTasks": len(tasks),
        "byStatus": by_status,
        "byType": by_type,
        "completionRate": _rate(by_status.get("completed", 0), len(tasks)),
    }


def build_execution_stats(executions: Iterable[Any]) -> Dict[str, Any]:
    """Executions are expected newest first"""
    executions = list(executions)
    successful = sum(1 for e in executions if e.status == "success")
    failed = sum(1 for e in executions if e.status == "failed")
    total_duration = sum(e.duration or 0 for e in executions)

    return {
        "totalExecutions": len(executions),
        "successful": successful,
        "failed": failed,
        "successRate": _rate(successful, len(executions)),
        "averageDuration": round(total_duration / len(executions)) if executions else 0,
        "recentExecutions": [
            {
                "taskId": e.task_id,
                "status": e.status,
                "duration": e.duration,
                "startedAt": _iso(e.started_at),
            }
            for e in executions[:RECENT_ITEMS]
        ],
    }


def build_webhook_activity(messages: Iterable[Any]) -> Dict[str, Any]:
    messages = list(messages)
    by_webhook = {str(k): v for k, v in Counter(m.webhook_id for m in messages).items()}

    return {
        "totalMessages": len(messages),
        "byWebhook": by_webhook,
        "recentMessages": [
            {
                "webhookId": m.webhook_id,
                "senderIdentifier": m.sender_identifier,
                "messageType": m.message_type,
                "receivedAt": _iso(m.received_at),
            }
            for m in messages[:RECENT_ITEMS]
        ],
    }


def format_report_summary(report_type: str, data: Dict[str, Any]) -> str:
    """Human-readable summary used for report notifications"""
    if report_type == "task_summary":
        return (
            f"Total Tasks: {data['totalTasks']}\n"
            f"Completion Rate: {data['completionRate']}%\n"
            f"By Status: {json.dumps(data['byStatus'], indent=2)}"
        )
    if report_type == "execution_stats":
        return (
            f"Total Executions: {data['totalExecutions']}\n"
            f"Success Rate: {data['successRate']}%\n"
            f"Avg Duration: {data['averageDuration']}ms"
        )
    if report_type == "webhook_activity":
        return (
            f"Total Messages: {data['totalMessages']}\n"
            f"By Webhook: {json.dumps(data['byWebhook'], indent=2)}"
        )
    return json.dumps(data, indent=2, default=str)


def report_title(report_type: str, start: Optional[datetime] = None, end: Optional[datetime] = None) -> str:
    if report_type == "task_summary":
        return f"Task Summary Report ({start:%Y-%m-%d} - {end:%Y-%m-%d})"
    if report_type == "execution_stats":
        return "Execution Statistics Report"
    return "Webhook Activity Report"


__all__: List[str] = [
    "REPORT_TYPES",
    "build_task_summary",
    "build_execution_stats",
    "build_webhook_activity",
    "format_report_summary",
    "report_title",
]
