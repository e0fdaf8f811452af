from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Iterable, Tuple


@dataclass(frozen=True)
class ContextRule:
    repo: re.Pattern[str]
    context: re.Pattern[str]

    @classmethod
    def compile(cls, repo: str, context: str) -> "ContextRule":
        return cls(repo=re.compile(repo), context=re.compile(context))

    def __str__(self) -> str:
        return f"repo={self.repo.pattern!r} context={self.context.pattern!r}"


DEFAULT_RULES: Tuple[ContextRule, ...] = (ContextRule.compile(".*", ":all-jobs$"),)


class ContextMatcher:
    """Decides whether a status context is the required check of a repository.

    Rules are tried in order. The first rule whose repository pattern matches
    decides the outcome, later rules are never consulted, even if they would
    match the context.
    """

    rules: Tuple[ContextRule, ...]

    def __init__(self, rules: Iterable[ContextRule] = DEFAULT_RULES):
        self.rules = tuple(rules)

    def __call__(self, repo: str, context: str) -> bool:
        for rule in self.rules:
            if rule.repo.search(repo):
                return rule.context.search(context) is not None
        return False

    def __repr__(self) -> str:
        return f"ContextMatcher({', '.join(str(r) for r in self.rules)})"
