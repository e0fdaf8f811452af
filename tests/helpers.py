from datetime import datetime, timedelta, timezone

T0 = datetime(2026, 2, 16, 10, 0, tzinfo=timezone.utc)
REPO = "knl/pulley"


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


class FakePublisher:
    def __init__(self):
        self.calls = []

    def register_pr_event(self, repository, event):
        self.calls.append(("pr_event", repository, event))

    def register_branch_event(self, repository, event):
        self.calls.append(("branch_event", repository, event))

    def register_status_check(self, repository, state):
        self.calls.append(("status_check", repository, state))

    def register_missed_pending(self, repository):
        self.calls.append(("missed_pending", repository))

    def register_start(self, repository, duration_seconds):
        self.calls.append(("start", repository, duration_seconds))

    def register_validation(self, repository, status, duration_seconds):
        self.calls.append(("validation", repository, status, duration_seconds))

    def register_merge(self, repository, duration_seconds):
        self.calls.append(("merge", repository, duration_seconds))

    def register_build_done(self, repository, build, status, duration_seconds):
        self.calls.append(("build_done", repository, build, status, duration_seconds))

    def of(self, kind):
        return [call[1:] for call in self.calls if call[0] == kind]
