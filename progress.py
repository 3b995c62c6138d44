"""
Progress aggregation over a project's task set.
"""
from typing import Callable, Iterable

from live import Subscription
import tasks as task_model

# "assigned" tasks have not been started yet.
BUCKETS = {
    "assigned": "notStarted",
    "not_started": "notStarted",
    "in_progress": "inProgress",
    "completed": "completed",
}


def percentage(completed: int, total: int) -> int:
    if total == 0:
        return 0
    # round half up, like Math.round on the client
    return (200 * completed + total) // (2 * total)


def compute_progress(tasks: Iterable[dict]) -> dict:
    stats = {"total": 0, "notStarted": 0, "inProgress": 0, "completed": 0}
    for task in tasks:
        bucket = BUCKETS.get(task.get("status"))
        if bucket is None:
            continue
        stats["total"] += 1
        stats[bucket] += 1
    stats["percentage"] = percentage(stats["completed"], stats["total"])
    return stats


def watch_progress(project_id: str, on_progress: Callable[[dict], None]) -> Subscription:
    return task_model.watch_project_tasks(project_id, lambda snapshot: on_progress(compute_progress(snapshot)))
