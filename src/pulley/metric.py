from __future__ import annotations

from typing import List, Protocol

from prometheus_client import Counter, Gauge, Histogram, Info

from pulley.events import BranchEvent, PREvent, Status


def _exponential_buckets(start: float, factor: float, count: int) -> List[float]:
    return [start * factor**i for i in range(count)]


request_counter = Counter(
    "pulley_num_req", "Total number of requests", labelnames=["path"]
)
webhook_counter = Counter(
    "pulley_num_webhook", "Total number of webhooks", labelnames=["event"]
)
webhook_skipped_counter = Counter(
    "pulley_num_webhook_skipped",
    "Total number of webhooks that did not produce an update",
    labelnames=["event", "reason"],
)

queue_size = Gauge("pulley_queue_size", "Number of updates waiting to be processed")
live_shas = Gauge("pulley_live_shas", "Number of commit SHAs currently tracked")

error_counter = Counter(
    "pulley_error_counter", "Total number of errors", labelnames=["context"]
)

build_info = Info("pulley_build", "Version information of the running pulley")

pr_events = Counter(
    "github_pull_request_events",
    "The number of Pull Request events",
    labelnames=["repository", "event"],
)
branch_events = Counter(
    "github_branch_events",
    "The number branch creations, rebases, and deletions",
    labelnames=["repository", "event"],
)
status_checks = Counter(
    "github_status_checks",
    "The number of status checks",
    labelnames=["repository", "state"],
)
missed_pendings = Counter(
    "github_ci_missed_pending",
    "The number of times there was a success/failure/error without corresponding pending status",
    labelnames=["repository"],
)

# 1s up to 8192s
ci_noticed_duration = Histogram(
    "github_ci_noticed_duration_seconds",
    "The time it takes for a CI to send the first 'pending' status check, measured from opening the PR",
    labelnames=["repository"],
    buckets=_exponential_buckets(1, 2, 14),
)
pr_validated_duration = Histogram(
    "github_pull_request_validated_duration_seconds",
    "The time it takes for a CI to build a PR, measured from opening the PR until the required status check is finished, per status",
    labelnames=["repository", "status"],
    buckets=_exponential_buckets(1, 2, 14),
)
# 1min up to ~6 days
pr_merged_duration = Histogram(
    "github_pull_request_merged_duration_seconds",
    "The time it takes for a PR to be merged, measured from opening the PR",
    labelnames=["repository"],
    buckets=_exponential_buckets(60, 2, 14),
)
# 1s up to 512s
build_duration = Histogram(
    "github_ci_build_duration_seconds",
    "The time it takes for a build",
    labelnames=["repository", "build", "status"],
    buckets=_exponential_buckets(1, 2, 10),
)


class Publisher(Protocol):
    def register_pr_event(self, repository: str, event: PREvent) -> None:
        ...

    def register_branch_event(self, repository: str, event: BranchEvent) -> None:
        ...

    def register_status_check(self, repository: str, state: Status) -> None:
        ...

    def register_missed_pending(self, repository: str) -> None:
        ...

    def register_start(self, repository: str, duration_seconds: float) -> None:
        ...

    def register_validation(
        self, repository: str, status: Status, duration_seconds: float
    ) -> None:
        ...

    def register_merge(self, repository: str, duration_seconds: float) -> None:
        ...

    def register_build_done(
        self, repository: str, build: str, status: Status, duration_seconds: float
    ) -> None:
        ...


class PrometheusPublisher:
    """Publishes processor observations to the default prometheus registry."""

    def register_pr_event(self, repository: str, event: PREvent) -> None:
        pr_events.labels(repository=repository, event=str(event)).inc()

    def register_branch_event(self, repository: str, event: BranchEvent) -> None:
        branch_events.labels(repository=repository, event=str(event)).inc()

    def register_status_check(self, repository: str, state: Status) -> None:
        status_checks.labels(repository=repository, state=str(state)).inc()

    def register_missed_pending(self, repository: str) -> None:
        missed_pendings.labels(repository=repository).inc()

    def register_start(self, repository: str, duration_seconds: float) -> None:
        ci_noticed_duration.labels(repository=repository).observe(duration_seconds)

    def register_validation(
        self, repository: str, status: Status, duration_seconds: float
    ) -> None:
        pr_validated_duration.labels(
            repository=repository, status=str(status)
        ).observe(duration_seconds)

    def register_merge(self, repository: str, duration_seconds: float) -> None:
        pr_merged_duration.labels(repository=repository).observe(duration_seconds)

    def register_build_done(
        self, repository: str, build: str, status: Status, duration_seconds: float
    ) -> None:
        build_duration.labels(
            repository=repository, build=build, status=str(status)
        ).observe(duration_seconds)
