"""Runtime configuration derived from environment variables.

Every setting has a default so the API, the standalone worker and the test
suite can run without a populated environment. ``Settings.from_env`` is the
single place where variables are parsed; components receive the resulting
object (or the relevant slice of it) through their constructors.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field


def _to_bool(value: str | None, default: bool = False) -> bool:
    """Parse a truthy string value into ``bool``."""

    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _to_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _to_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


def _to_list(value: str | None) -> tuple[str, ...] | None:
    if value is None or not value.strip():
        return None
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(slots=True)
class BreakerSettings:
    """Thresholds for one circuit breaker instance."""

    failure_threshold: int
    success_threshold: int
    reset_timeout: float
    call_timeout: float | None
    half_open_max_calls: int = 1

    @classmethod
    def from_env(
        cls, prefix: str, defaults: BreakerSettings, env: Mapping[str, str]
    ) -> BreakerSettings:
        raw_timeout = env.get(f"{prefix}_CALL_TIMEOUT")
        call_timeout = defaults.call_timeout
        if raw_timeout is not None:
            # 0 disables the per-call timeout
            call_timeout = _to_float(raw_timeout, 0.0) or None
        return cls(
            failure_threshold=_to_int(
                env.get(f"{prefix}_FAILURE_THRESHOLD"), defaults.failure_threshold
            ),
            success_threshold=_to_int(
                env.get(f"{prefix}_SUCCESS_THRESHOLD"), defaults.success_threshold
            ),
            reset_timeout=_to_float(
                env.get(f"{prefix}_RESET_TIMEOUT"), defaults.reset_timeout
            ),
            call_timeout=call_timeout,
            half_open_max_calls=_to_int(
                env.get(f"{prefix}_HALF_OPEN_MAX_CALLS"), defaults.half_open_max_calls
            ),
        )


GENERATION_BREAKER_DEFAULTS = BreakerSettings(3, 2, 30.0, 30.0)
DELIVERY_BREAKER_DEFAULTS = BreakerSettings(5, 3, 60.0, 15.0)
RETRIEVAL_BREAKER_DEFAULTS = BreakerSettings(5, 2, 120.0, 10.0)


@dataclass(slots=True)
class Settings:
    """Configuration shared by the API process and the worker."""

    database_url: str | None = None
    redis_url: str | None = None
    app_env: str = "development"

    # Worker pool and queue
    run_workers: bool = True
    worker_concurrency: int = 10
    job_max_attempts: int = 3
    job_backoff_seconds: float = 2.0
    job_visibility_timeout: float = 60.0
    queue_poll_interval: float = 1.0
    queue_namespace: str = "autoreply"

    # Deduplication and idempotency windows (seconds)
    dedup_message_ttl: int = 6 * 60 * 60
    dedup_content_ttl: int = 3
    dedup_content_prefix: int = 100
    reply_grace_seconds: int = 120

    # Pipeline behaviour
    tool_max_iterations: int = 5
    history_limit: int = 10
    confidence_threshold: float = 0.5
    escalation_mode: str = "transition"
    auto_end_threshold: int = 0
    enabled_tools: tuple[str, ...] | None = None

    # Circuit breakers
    enable_circuit_breaker: bool = True
    generation_breaker: BreakerSettings = field(
        default_factory=lambda: GENERATION_BREAKER_DEFAULTS
    )
    delivery_breaker: BreakerSettings = field(
        default_factory=lambda: DELIVERY_BREAKER_DEFAULTS
    )
    retrieval_breaker: BreakerSettings = field(
        default_factory=lambda: RETRIEVAL_BREAKER_DEFAULTS
    )

    # Generation providers
    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    fallback_llm_provider: str = "ollama"
    fallback_llm_model: str = "llama3.1"
    enable_llm_fallback: bool = False

    # Delivery gateway
    gateway_url: str = "http://localhost:8080"
    gateway_api_key: str | None = None

    # Webhook boundary
    webhook_secret: str | None = None
    webhook_rate_limit: str = "100/minute"
    meta_verify_token: str | None = None

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``env`` (defaults to ``os.environ``)."""

        env = os.environ if env is None else env
        escalation_mode = (env.get("ESCALATION_MODE") or "transition").strip().lower()
        if escalation_mode not in {"transition", "log_only"}:
            raise ValueError(
                f"ESCALATION_MODE must be 'transition' or 'log_only', got {escalation_mode!r}"
            )
        return cls(
            database_url=env.get("DATABASE_URL") or None,
            redis_url=env.get("REDIS_URL") or None,
            app_env=env.get("APP_ENV", "development"),
            run_workers=_to_bool(env.get("RUN_WORKERS"), True),
            worker_concurrency=_to_int(env.get("WORKER_CONCURRENCY"), 10),
            job_max_attempts=_to_int(env.get("JOB_MAX_ATTEMPTS"), 3),
            job_backoff_seconds=_to_float(env.get("JOB_BACKOFF_SECONDS"), 2.0),
            job_visibility_timeout=_to_float(env.get("JOB_VISIBILITY_TIMEOUT"), 60.0),
            queue_poll_interval=_to_float(env.get("QUEUE_POLL_INTERVAL"), 1.0),
            queue_namespace=env.get("QUEUE_NAMESPACE", "autoreply"),
            dedup_message_ttl=_to_int(env.get("DEDUP_MESSAGE_TTL"), 6 * 60 * 60),
            dedup_content_ttl=_to_int(env.get("DEDUP_CONTENT_TTL"), 3),
            dedup_content_prefix=_to_int(env.get("DEDUP_CONTENT_PREFIX"), 100),
            reply_grace_seconds=_to_int(env.get("REPLY_GRACE_SECONDS"), 120),
            tool_max_iterations=_to_int(env.get("TOOL_MAX_ITERATIONS"), 5),
            history_limit=_to_int(env.get("HISTORY_LIMIT"), 10),
            confidence_threshold=_to_float(env.get("CONFIDENCE_THRESHOLD"), 0.5),
            escalation_mode=escalation_mode,
            auto_end_threshold=_to_int(env.get("AUTO_END_THRESHOLD"), 0),
            enabled_tools=_to_list(env.get("ENABLED_TOOLS")),
            enable_circuit_breaker=_to_bool(env.get("ENABLE_CIRCUIT_BREAKER"), True),
            generation_breaker=BreakerSettings.from_env(
                "LLM_BREAKER", GENERATION_BREAKER_DEFAULTS, env
            ),
            delivery_breaker=BreakerSettings.from_env(
                "DELIVERY_BREAKER", DELIVERY_BREAKER_DEFAULTS, env
            ),
            retrieval_breaker=BreakerSettings.from_env(
                "RETRIEVAL_BREAKER", RETRIEVAL_BREAKER_DEFAULTS, env
            ),
            llm_provider=env.get("DEFAULT_LLM_PROVIDER", "openai").lower(),
            llm_model=env.get("DEFAULT_LLM_MODEL", "gpt-4o-mini"),
            fallback_llm_provider=env.get("FALLBACK_LLM_PROVIDER", "ollama").lower(),
            fallback_llm_model=env.get("FALLBACK_LLM_MODEL", "llama3.1"),
            enable_llm_fallback=_to_bool(env.get("ENABLE_LLM_FALLBACK")),
            gateway_url=env.get("EVOLUTION_API_URL", "http://localhost:8080"),
            gateway_api_key=env.get("EVOLUTION_API_KEY") or None,
            webhook_secret=env.get("WEBHOOK_SECRET") or None,
            webhook_rate_limit=env.get("WEBHOOK_RATE_LIMIT", "100/minute"),
            meta_verify_token=env.get("META_VERIFY_TOKEN") or None,
        )
