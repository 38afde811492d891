"""Session boundary decisions.

Evaluated on every inbound activity batch. Checks run in priority order
and the first match wins: hard limits (no session, project switch,
context ceiling) before soft heuristics (inactivity, day rollover).
"""

import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from app.context.models import (
    DEFAULT_ENGINE_CONFIG,
    ContextEngineConfig,
    Session,
    SessionStatus,
    SessionTrigger,
    TriggerDecision,
    TriggerType,
)

SESSION_ID_NAMESPACE = uuid.UUID("6f1c8b8e-3d55-4d8e-9a53-2f4b1d0c7e21")


def _as_utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc) if value.tzinfo else value.replace(tzinfo=timezone.utc)


def generate_session_id(trigger: SessionTrigger, project_id: str) -> str:
    """
    Deterministic session id for a trigger.

    The same (trigger type, timestamp, project) always yields the same id,
    so a duplicated trigger maps onto the session it already created.
    """
    timestamp = _as_utc(trigger.timestamp)
    key = f"{trigger.type.value}|{timestamp.isoformat()}|{project_id}"
    digest = uuid.uuid5(SESSION_ID_NAMESPACE, key).hex[:12]
    return f"session-{timestamp:%Y-%m-%d}-{trigger.type.value}-{digest}"


def _create(
    trigger_type: TriggerType, reason: str, now: datetime, project_id: str
) -> TriggerDecision:
    trigger = SessionTrigger(type=trigger_type, reason=reason, timestamp=now)
    return TriggerDecision(
        should_create=True,
        trigger=trigger,
        session_id=generate_session_id(trigger, project_id),
    )


def evaluate_session_trigger(
    active_session: Session | None,
    last_event_time: datetime | None,
    estimated_context_tokens: int,
    project_id: str,
    now: datetime | None = None,
    config: ContextEngineConfig | None = None,
) -> TriggerDecision:
    """
    Decide whether to continue the active session or start a new one.

    Args:
        active_session: The project's active session, if any
        last_event_time: Time of the most recent prior activity
        estimated_context_tokens: Estimated context usage of the active session
        project_id: Project the inbound activity belongs to
        now: Decision time (the triggering event's time for replays)
        config: Session thresholds

    Returns:
        TriggerDecision; should_create=False means continue the active session
    """
    config = config or DEFAULT_ENGINE_CONFIG
    now = _as_utc(now or datetime.now(timezone.utc))

    if active_session is None or active_session.status != SessionStatus.ACTIVE:
        return _create(TriggerType.MANUAL, "No active session found", now, project_id)

    if active_session.project_id != project_id:
        return _create(
            TriggerType.PROJECT_SWITCH,
            f"Switched from project {active_session.project_id} to {project_id}",
            now,
            project_id,
        )

    if estimated_context_tokens > config.context_limit_tokens:
        usage_pct = (
            round(estimated_context_tokens / config.context_limit_tokens * 100)
            if config.context_limit_tokens
            else 100
        )
        return _create(
            TriggerType.CONTEXT_LIMIT,
            f"Context usage at {usage_pct}% of limit "
            f"({estimated_context_tokens:,} > {config.context_limit_tokens:,} tokens)",
            now,
            project_id,
        )

    if last_event_time is not None:
        idle = now - _as_utc(last_event_time)
        if idle > timedelta(minutes=config.inactivity_minutes):
            return _create(
                TriggerType.INACTIVITY,
                f"No activity for {round(idle.total_seconds() / 60)} minutes",
                now,
                project_id,
            )

    session_day = _as_utc(active_session.start_time).date()
    if session_day != now.date():
        return _create(
            TriggerType.DAILY,
            f"New day started (was {session_day.isoformat()}, now {now.date().isoformat()})",
            now,
            project_id,
        )

    return TriggerDecision(should_create=False)


def estimate_context_usage(events: Iterable[Any], chars_per_token: int = 4) -> int:
    """Approximate tokens consumed by a batch of raw events (JSON length / 4)."""
    total_chars = sum(len(json.dumps(event, default=str)) for event in events)
    return round(total_chars / chars_per_token)


def session_stats(session: Session, now: datetime | None = None) -> dict[str, float]:
    """Duration and event rate for a session (open sessions measured to now)."""
    end = _as_utc(session.end_time or now or datetime.now(timezone.utc))
    duration_minutes = max(0.0, (end - _as_utc(session.start_time)).total_seconds() / 60)
    events_per_minute = (
        session.usage.total_events / duration_minutes if duration_minutes > 0 else 0.0
    )
    return {
        "duration_minutes": round(duration_minutes, 1),
        "events_per_minute": round(events_per_minute, 2),
        "context_usage_estimate": session.usage.context_usage_estimate,
    }
