import base64
import binascii
import functools
import logging
import os
import re
from typing import Dict, List, Mapping, Optional, Tuple

import dotenv
import pydantic

from pulley.context import DEFAULT_RULES, ContextMatcher, ContextRule

dotenv.load_dotenv()

REPO_REGEX_PREFIX = "PULLEY_STRATEGY_AGGREGATE_REPO_REGEX_"
CONTEXT_REGEX_PREFIX = "PULLEY_STRATEGY_AGGREGATE_CONTEXT_REGEX_"

TIMING_STRATEGIES = ("aggregate",)

_TRUE = ("1", "t", "T", "TRUE", "true", "True")
_FALSE = ("0", "f", "F", "FALSE", "false", "False")


class ConfigError(ValueError):
    pass


class Settings(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(frozen=True, arbitrary_types_allowed=True)

    HOST: str = "localhost"
    PORT: int = 1701
    WEBHOOK_PATH: str = ""
    WEBHOOK_TOKEN: str = ""
    METRICS_PATH: str = "metrics"
    TRACK_BUILD_TIMES: bool = False
    TIMING_STRATEGY: str = "aggregate"
    CONTEXT_RULES: Tuple[ContextRule, ...] = DEFAULT_RULES
    QUEUE_SIZE: int = 100
    LOG_LEVEL: int = logging.INFO
    TELEGRAM_TOKEN: Optional[str] = None
    TELEGRAM_CHAT_ID: Optional[str] = None

    def context_matcher(self) -> ContextMatcher:
        return ContextMatcher(self.CONTEXT_RULES)

    def describe(self) -> str:
        if self.WEBHOOK_TOKEN:
            token = f"{self.WEBHOOK_TOKEN[:4]}..."
        else:
            token = "<empty>"
        lines = [
            "pulley is starting with the following configuration:",
            f"  Host:            {self.HOST}",
            f"  Port:            {self.PORT}",
            f"  MetricsPath:     /{self.METRICS_PATH}",
            f"  WebhookPath:     /{self.WEBHOOK_PATH}",
            f"  WebhookToken:    {token}",
            f"  TrackBuildTimes: {self.TRACK_BUILD_TIMES}",
            f"  QueueSize:       {self.QUEUE_SIZE}",
            f"  Strategy:        {self.TIMING_STRATEGY}",
            "  Aggregate Strategy configuration:",
        ]
        for rule in self.CONTEXT_RULES:
            lines.append(f"   - repo:    {rule.repo.pattern}")
            lines.append(f"     context: {rule.context.pattern}")
        return "\n".join(lines)


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    return default


def _parse_int(environ: Mapping[str, str], key: str, default: int) -> int:
    value = environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got '{value}'")


def _decode_token(value: str) -> str:
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except binascii.Error as e:
        raise ConfigError(
            f"could not decode the webhook secret token from PULLEY_WEBHOOK_TOKEN, {e}"
        )
    except UnicodeDecodeError:
        raise ConfigError(
            "the webhook secret in PULLEY_WEBHOOK_TOKEN must be UTF-8 text"
        )


def _compile(pattern: str, key: str) -> "re.Pattern[str]":
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigError(
            f"could not compile the regex '{pattern}' passed via {key}, {e}"
        )


def parse_context_rules(environ: Mapping[str, str]) -> List[ContextRule]:
    """Collect the numbered repo/context regex pairs, ordered by their number."""
    rules: Dict[int, ContextRule] = {}
    for key, value in environ.items():
        if not key.startswith(REPO_REGEX_PREFIX):
            continue

        suffix = key[len(REPO_REGEX_PREFIX) :]
        if not suffix.isdigit():
            raise ConfigError(
                f"environment variable '{key}' is not properly formatted, "
                "doesn't end with a positive integer"
            )
        entry_id = int(suffix)

        context_key = f"{CONTEXT_REGEX_PREFIX}{entry_id}"
        context = environ.get(context_key, "")
        if context == "":
            raise ConfigError(f"variable '{context_key}' empty or unset")

        rules[entry_id] = ContextRule(
            repo=_compile(value, key), context=_compile(context, context_key)
        )

    return [rules[k] for k in sorted(rules)]


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    if environ is None:
        environ = os.environ

    values = {}

    for key in ("HOST", "WEBHOOK_PATH", "METRICS_PATH"):
        if (value := environ.get(f"PULLEY_{key}")) is not None:
            values[key] = value

    values["PORT"] = _parse_int(environ, "PULLEY_PORT", 1701)
    values["QUEUE_SIZE"] = _parse_int(environ, "PULLEY_QUEUE_SIZE", 100)
    if values["QUEUE_SIZE"] < 1:
        raise ConfigError("PULLEY_QUEUE_SIZE must be at least 1")

    values["WEBHOOK_TOKEN"] = _decode_token(environ.get("PULLEY_WEBHOOK_TOKEN", ""))
    values["TRACK_BUILD_TIMES"] = _parse_bool(
        environ.get("PULLEY_TRACK_BUILD_TIMES"), default=False
    )

    strategy = environ.get("PULLEY_PR_TIMING_STRATEGY", "aggregate")
    if strategy not in TIMING_STRATEGIES:
        raise ConfigError(
            f"could not translate '{strategy}' into an appropriate strategy "
            f"(allowed values: {list(TIMING_STRATEGIES)})"
        )
    values["TIMING_STRATEGY"] = strategy

    if rules := parse_context_rules(environ):
        values["CONTEXT_RULES"] = tuple(rules)

    level = environ.get("PULLEY_LOG_LEVEL", "INFO")
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        raise ConfigError(f"unknown log level '{level}'")
    values["LOG_LEVEL"] = log_level

    values["TELEGRAM_TOKEN"] = environ.get("TELEGRAM_TOKEN")
    values["TELEGRAM_CHAT_ID"] = environ.get("TELEGRAM_CHAT_ID")

    return Settings(**values)


@functools.lru_cache(maxsize=None)
def get_settings() -> Settings:
    return load_settings()
