from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, List, Optional
from loguru import logger

from .models import (
    ActionContext,
    ActionEvent,
    ActionTransition,
    CandidateStatus,
    DelayEvidence,
    EventType,
    ExecutionRecord,
    ProbabilityAction,
    ReminderCandidate,
    ReminderCooldown,
    ReminderDecision,
    ReminderStyle,
    Routine,
    RoutineReminder,
    SignalProfile,
    SignalState,
    UserReminderPreferences,
    utcnow,
)


def _ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # fixed-width UTC strings so that SQL string comparison orders correctly
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _json(value: Any) -> str | None:
    return json.dumps(value) if value is not None else None


def _load(value: str | None) -> Any:
    return json.loads(value) if value else None


# matches ReminderCandidate.is_routine
_ROUTINE_SOURCE = "coalesce(lower(json_extract(custom_data,'$.source')),'')='routine'"


class PatternStorage:
    """SQLite storage for events, transitions, routines and reminder candidates."""

    def __init__(self, db_path: str = "patterner_data.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        # one connection shared by the worker threads
        self._lock = threading.RLock()
        self._ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    @contextmanager
    def _cursor(self):
        with self._lock:
            conn = self._get_conn()
            cur = conn.cursor()
            try:
                yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                cur.close()

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _ensure_schema(self):
        with self._lock, self._get_conn() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                    id TEXT PRIMARY KEY,
                    person_id TEXT NOT NULL,
                    action_type TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    ts TEXT NOT NULL,
                    context TEXT,
                    custom_data TEXT,
                    signal_states TEXT,
                    user_prompt TEXT,
                    probability_value REAL,
                    probability_action TEXT,
                    created_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transitions (
                    id TEXT PRIMARY KEY,
                    person_id TEXT NOT NULL,
                    from_action TEXT NOT NULL,
                    to_action TEXT NOT NULL,
                    context_bucket TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    occurrence_count INTEGER NOT NULL,
                    average_delay_seconds REAL,
                    last_observed TEXT,
                    created_at TEXT,
                    updated_at TEXT,
                    UNIQUE(person_id, from_action, to_action, context_bucket)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS routines (
                    id TEXT PRIMARY KEY,
                    person_id TEXT NOT NULL,
                    intent_type TEXT NOT NULL,
                    window_minutes INTEGER NOT NULL,
                    last_intent_at TEXT,
                    window_start TEXT,
                    window_end TEXT,
                    active_bucket TEXT,
                    created_at TEXT,
                    UNIQUE(person_id, intent_type)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS routine_reminders (
                    id TEXT PRIMARY KEY,
                    routine_id TEXT NOT NULL,
                    person_id TEXT NOT NULL,
                    suggested_action TEXT NOT NULL,
                    bucket TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    observation_count INTEGER NOT NULL,
                    last_observed TEXT,
                    custom_data TEXT,
                    state_signals TEXT,
                    signal_profile TEXT,
                    signal_profile_updated_at TEXT,
                    signal_profile_samples INTEGER DEFAULT 0,
                    user_prompts TEXT,
                    is_safe_to_auto_execute INTEGER DEFAULT 0,
                    delay_ema REAL,
                    delay_variance REAL,
                    median_delay REAL,
                    delay_evidence TEXT,
                    delay_sample_count INTEGER DEFAULT 0,
                    evidence_count INTEGER DEFAULT 0,
                    created_at TEXT,
                    UNIQUE(routine_id, bucket, suggested_action),
                    FOREIGN KEY(routine_id) REFERENCES routines(id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS candidates (
                    id TEXT PRIMARY KEY,
                    person_id TEXT NOT NULL,
                    suggested_action TEXT NOT NULL,
                    check_at TEXT NOT NULL,
                    style TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    transition_id TEXT,
                    occurrence TEXT,
                    source_event_id TEXT,
                    custom_data TEXT,
                    signal_profile TEXT,
                    status TEXT NOT NULL,
                    decision TEXT,
                    executed_at TEXT,
                    created_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS preferences (
                    person_id TEXT PRIMARY KEY,
                    id TEXT NOT NULL,
                    default_style TEXT NOT NULL,
                    daily_limit INTEGER NOT NULL,
                    minimum_interval_seconds REAL NOT NULL,
                    enabled INTEGER NOT NULL,
                    allow_auto_execute INTEGER NOT NULL,
                    updated_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cooldowns (
                    id TEXT PRIMARY KEY,
                    person_id TEXT NOT NULL,
                    action_type TEXT NOT NULL,
                    suppressed_until TEXT NOT NULL,
                    reason TEXT,
                    created_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS execution_records (
                    id TEXT PRIMARY KEY,
                    candidate_id TEXT NOT NULL,
                    person_id TEXT NOT NULL,
                    suggested_action TEXT NOT NULL,
                    executed INTEGER NOT NULL,
                    should_speak INTEGER NOT NULL,
                    reason TEXT,
                    execution_action TEXT,
                    recorded_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_person_ts ON events(person_id, ts)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_candidates_due ON candidates(status, check_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_records_person ON execution_records(person_id, recorded_at)")

    # --- Events ---
    def add_event(self, event: ActionEvent):
        ctx = event.context
        with self._cursor() as cur:
            cur.execute(
                "INSERT OR REPLACE INTO events (id, person_id, action_type, event_type, ts, context, custom_data, signal_states, user_prompt, probability_value, probability_action, created_at) VALUES (?,?,?,?,?,?,?,?,?,?,?,?)",
                (
                    event.id,
                    event.person_id,
                    event.action_type,
                    event.event_type.value,
                    _ts(event.timestamp_utc),
                    json.dumps({
                        'time_bucket': ctx.time_bucket,
                        'day_type': ctx.day_type,
                        'location': ctx.location,
                        'present_people': ctx.present_people,
                        'state_signals': ctx.state_signals,
                    }),
                    _json(event.custom_data),
                    _json([s.__dict__ for s in event.signal_states] if event.signal_states else None),
                    event.user_prompt,
                    event.probability_value,
                    event.probability_action.value if event.probability_action else None,
                    _ts(event.created_at_utc),
                ),
            )

    def get_previous_event(self, person_id: str, before: datetime, exclude_id: str | None = None) -> Optional[ActionEvent]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM events WHERE person_id=? AND ts<=? AND id!=? ORDER BY ts DESC LIMIT 1",
                (person_id, _ts(before), exclude_id or ""),
            )
            r = cur.fetchone()
        return self._row_to_event(r) if r else None

    def delete_events_before(self, cutoff: datetime) -> int:
        with self._cursor() as cur:
            cur.execute("DELETE FROM events WHERE ts<?", (_ts(cutoff),))
            return cur.rowcount

    @staticmethod
    def _row_to_event(r: sqlite3.Row) -> ActionEvent:
        ctx = _load(r["context"]) or {}
        states = _load(r["signal_states"])
        return ActionEvent(
            id=r["id"],
            person_id=r["person_id"],
            action_type=r["action_type"],
            event_type=EventType(r["event_type"]),
            timestamp_utc=_dt(r["ts"]),
            context=ActionContext(
                time_bucket=ctx.get('time_bucket', 'unknown'),
                day_type=ctx.get('day_type', 'unknown'),
                location=ctx.get('location'),
                present_people=ctx.get('present_people') or [],
                state_signals=ctx.get('state_signals') or {},
            ),
            custom_data=_load(r["custom_data"]),
            signal_states=[SignalState(**s) for s in states] if states else None,
            user_prompt=r["user_prompt"],
            probability_value=r["probability_value"],
            probability_action=ProbabilityAction(r["probability_action"]) if r["probability_action"] else None,
            created_at_utc=_dt(r["created_at"]) or utcnow(),
        )

    # --- Transitions ---
    def upsert_transition(self, t: ActionTransition):
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO transitions (id, person_id, from_action, to_action, context_bucket, confidence, occurrence_count, average_delay_seconds, last_observed, created_at, updated_at)
                VALUES (?,?,?,?,?,?,?,?,?,?,?)
                ON CONFLICT(id) DO UPDATE SET confidence=excluded.confidence, occurrence_count=excluded.occurrence_count, average_delay_seconds=excluded.average_delay_seconds, last_observed=excluded.last_observed, updated_at=excluded.updated_at
                """,
                (
                    t.id,
                    t.person_id,
                    t.from_action,
                    t.to_action,
                    t.context_bucket,
                    t.confidence,
                    t.occurrence_count,
                    t.average_delay.total_seconds() if t.average_delay is not None else None,
                    _ts(t.last_observed_utc),
                    _ts(t.created_at_utc),
                    _ts(t.updated_at_utc),
                ),
            )

    def get_transition(self, person_id: str, from_action: str, to_action: str, context_bucket: str) -> Optional[ActionTransition]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM transitions WHERE person_id=? AND from_action=? AND to_action=? AND context_bucket=?",
                (person_id, from_action, to_action, context_bucket),
            )
            r = cur.fetchone()
        return self._row_to_transition(r) if r else None

    def get_transition_by_id(self, transition_id: str) -> Optional[ActionTransition]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM transitions WHERE id=?", (transition_id,))
            r = cur.fetchone()
        return self._row_to_transition(r) if r else None

    def transitions_from(self, person_id: str, from_action: str) -> List[ActionTransition]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM transitions WHERE person_id=? AND from_action=? ORDER BY confidence DESC",
                (person_id, from_action),
            )
            rows = cur.fetchall()
        return [self._row_to_transition(r) for r in rows]

    def transitions_with_confidence(self) -> List[ActionTransition]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM transitions WHERE confidence > 0")
            rows = cur.fetchall()
        return [self._row_to_transition(r) for r in rows]

    @staticmethod
    def _row_to_transition(r: sqlite3.Row) -> ActionTransition:
        delay = r["average_delay_seconds"]
        return ActionTransition(
            id=r["id"],
            person_id=r["person_id"],
            from_action=r["from_action"],
            to_action=r["to_action"],
            context_bucket=r["context_bucket"],
            confidence=r["confidence"],
            occurrence_count=r["occurrence_count"],
            average_delay=timedelta(seconds=delay) if delay is not None else None,
            last_observed_utc=_dt(r["last_observed"]) or utcnow(),
            created_at_utc=_dt(r["created_at"]) or utcnow(),
            updated_at_utc=_dt(r["updated_at"]) or utcnow(),
        )

    # --- Routines ---
    def upsert_routine(self, routine: Routine):
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO routines (id, person_id, intent_type, window_minutes, last_intent_at, window_start, window_end, active_bucket, created_at)
                VALUES (?,?,?,?,?,?,?,?,?)
                ON CONFLICT(id) DO UPDATE SET window_minutes=excluded.window_minutes, last_intent_at=excluded.last_intent_at, window_start=excluded.window_start, window_end=excluded.window_end, active_bucket=excluded.active_bucket
                """,
                (
                    routine.id,
                    routine.person_id,
                    routine.intent_type,
                    routine.observation_window_minutes,
                    _ts(routine.last_intent_occurred_at_utc),
                    _ts(routine.observation_window_start_utc),
                    _ts(routine.observation_window_ends_at_utc),
                    routine.active_time_context_bucket,
                    _ts(routine.created_at_utc),
                ),
            )

    def get_routine(self, person_id: str, intent_type: str) -> Optional[Routine]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM routines WHERE person_id=? AND intent_type=?", (person_id, intent_type))
            r = cur.fetchone()
        return self._row_to_routine(r) if r else None

    def routines_for_person(self, person_id: str) -> List[Routine]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM routines WHERE person_id=?", (person_id,))
            rows = cur.fetchall()
        return [self._row_to_routine(r) for r in rows]

    def active_routines(self, person_id: str) -> List[Routine]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM routines WHERE person_id=? AND window_start IS NOT NULL AND window_end IS NOT NULL",
                (person_id,),
            )
            rows = cur.fetchall()
        return [self._row_to_routine(r) for r in rows]

    def expired_routines(self, now: datetime) -> List[Routine]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM routines WHERE window_end IS NOT NULL AND window_end<?", (_ts(now),))
            rows = cur.fetchall()
        return [self._row_to_routine(r) for r in rows]

    @staticmethod
    def _row_to_routine(r: sqlite3.Row) -> Routine:
        return Routine(
            id=r["id"],
            person_id=r["person_id"],
            intent_type=r["intent_type"],
            observation_window_minutes=r["window_minutes"],
            last_intent_occurred_at_utc=_dt(r["last_intent_at"]),
            observation_window_start_utc=_dt(r["window_start"]),
            observation_window_ends_at_utc=_dt(r["window_end"]),
            active_time_context_bucket=r["active_bucket"],
            created_at_utc=_dt(r["created_at"]) or utcnow(),
        )

    # --- Routine reminders ---
    def upsert_routine_reminder(self, rr: RoutineReminder):
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO routine_reminders (id, routine_id, person_id, suggested_action, bucket, confidence, observation_count, last_observed, custom_data, state_signals, signal_profile, signal_profile_updated_at, signal_profile_samples, user_prompts, is_safe_to_auto_execute, delay_ema, delay_variance, median_delay, delay_evidence, delay_sample_count, evidence_count, created_at)
                VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
                ON CONFLICT(id) DO UPDATE SET confidence=excluded.confidence, observation_count=excluded.observation_count, last_observed=excluded.last_observed, custom_data=excluded.custom_data, state_signals=excluded.state_signals, signal_profile=excluded.signal_profile, signal_profile_updated_at=excluded.signal_profile_updated_at, signal_profile_samples=excluded.signal_profile_samples, user_prompts=excluded.user_prompts, is_safe_to_auto_execute=excluded.is_safe_to_auto_execute, delay_ema=excluded.delay_ema, delay_variance=excluded.delay_variance, median_delay=excluded.median_delay, delay_evidence=excluded.delay_evidence, delay_sample_count=excluded.delay_sample_count, evidence_count=excluded.evidence_count
                """,
                (
                    rr.id,
                    rr.routine_id,
                    rr.person_id,
                    rr.suggested_action,
                    rr.time_context_bucket,
                    rr.confidence,
                    rr.observation_count,
                    _ts(rr.last_observed_at_utc),
                    _json(rr.custom_data),
                    _json(rr.state_signals),
                    _json(rr.signal_profile.to_dict() if rr.signal_profile else None),
                    _ts(rr.signal_profile_updated_at_utc),
                    rr.signal_profile_samples_count,
                    json.dumps(rr.user_prompts),
                    1 if rr.is_safe_to_auto_execute else 0,
                    rr.delay_ema_seconds,
                    rr.delay_ema_variance,
                    rr.median_delay_approx_seconds,
                    json.dumps([
                        {'delay_seconds': e.delay_seconds, 'observed_at': _ts(e.observed_at_utc), 'is_outlier': e.is_outlier}
                        for e in rr.delay_evidence
                    ]),
                    rr.delay_sample_count,
                    rr.evidence_count,
                    _ts(rr.created_at_utc),
                ),
            )

    def get_routine_reminder(self, routine_id: str, bucket: str, suggested_action: str) -> Optional[RoutineReminder]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM routine_reminders WHERE routine_id=? AND bucket=? AND suggested_action=?",
                (routine_id, bucket, suggested_action),
            )
            r = cur.fetchone()
        return self._row_to_routine_reminder(r) if r else None

    def get_routine_reminder_by_id(self, reminder_id: str) -> Optional[RoutineReminder]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM routine_reminders WHERE id=?", (reminder_id,))
            r = cur.fetchone()
        return self._row_to_routine_reminder(r) if r else None

    def reminders_for_routine(self, routine_id: str, bucket: str | None = None) -> List[RoutineReminder]:
        q = "SELECT * FROM routine_reminders WHERE routine_id=?"
        params: tuple[Any, ...] = (routine_id,)
        if bucket is not None:
            q += " AND bucket=?"
            params = (routine_id, bucket)
        with self._cursor() as cur:
            cur.execute(q + " ORDER BY created_at", params)
            rows = cur.fetchall()
        return [self._row_to_routine_reminder(r) for r in rows]

    @staticmethod
    def _row_to_routine_reminder(r: sqlite3.Row) -> RoutineReminder:
        evidence = _load(r["delay_evidence"]) or []
        return RoutineReminder(
            id=r["id"],
            routine_id=r["routine_id"],
            person_id=r["person_id"],
            suggested_action=r["suggested_action"],
            time_context_bucket=r["bucket"],
            confidence=r["confidence"],
            observation_count=r["observation_count"],
            last_observed_at_utc=_dt(r["last_observed"]),
            custom_data=_load(r["custom_data"]),
            state_signals=_load(r["state_signals"]),
            signal_profile=SignalProfile.from_dict(_load(r["signal_profile"])),
            signal_profile_updated_at_utc=_dt(r["signal_profile_updated_at"]),
            signal_profile_samples_count=r["signal_profile_samples"] or 0,
            user_prompts=_load(r["user_prompts"]) or [],
            is_safe_to_auto_execute=bool(r["is_safe_to_auto_execute"]),
            delay_ema_seconds=r["delay_ema"],
            delay_ema_variance=r["delay_variance"],
            median_delay_approx_seconds=r["median_delay"],
            delay_evidence=[
                DelayEvidence(e['delay_seconds'], _dt(e['observed_at']), bool(e.get('is_outlier')))
                for e in evidence
            ],
            delay_sample_count=r["delay_sample_count"] or 0,
            evidence_count=r["evidence_count"] or 0,
            created_at_utc=_dt(r["created_at"]) or utcnow(),
        )

    # --- Candidates ---
    def upsert_candidate(self, c: ReminderCandidate):
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO candidates (id, person_id, suggested_action, check_at, style, confidence, transition_id, occurrence, source_event_id, custom_data, signal_profile, status, decision, executed_at, created_at)
                VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
                ON CONFLICT(id) DO UPDATE SET check_at=excluded.check_at, style=excluded.style, confidence=excluded.confidence, occurrence=excluded.occurrence, custom_data=excluded.custom_data, signal_profile=excluded.signal_profile, status=excluded.status, decision=excluded.decision, executed_at=excluded.executed_at
                """,
                (
                    c.id,
                    c.person_id,
                    c.suggested_action,
                    _ts(c.check_at_utc),
                    c.style.value,
                    c.confidence,
                    c.transition_id,
                    c.occurrence,
                    c.source_event_id,
                    _json(c.custom_data),
                    _json(c.signal_profile.to_dict() if c.signal_profile else None),
                    c.status.value,
                    _json(c.decision.to_dict() if c.decision else None),
                    _ts(c.executed_at_utc),
                    _ts(c.created_at_utc),
                ),
            )

    def get_candidate(self, candidate_id: str) -> Optional[ReminderCandidate]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM candidates WHERE id=?", (candidate_id,))
            r = cur.fetchone()
        return self._row_to_candidate(r) if r else None

    def due_candidates(self, now: datetime, limit: int, min_confidence: float = 0.0) -> List[ReminderCandidate]:
        # admission is decided before LIMIT so low-confidence rows cannot fill every batch
        with self._cursor() as cur:
            cur.execute(
                f"SELECT * FROM candidates WHERE status=? AND check_at<=? AND (confidence>=? OR {_ROUTINE_SOURCE}) "
                "ORDER BY check_at LIMIT ?",
                (CandidateStatus.SCHEDULED.value, _ts(now), min_confidence, limit),
            )
            rows = cur.fetchall()
        return [self._row_to_candidate(r) for r in rows]

    def find_scheduled_candidate(self, person_id: str, suggested_action: str) -> Optional[ReminderCandidate]:
        """Earliest scheduled non-routine candidate for (person, action)."""
        with self._cursor() as cur:
            cur.execute(
                f"SELECT * FROM candidates WHERE person_id=? AND suggested_action=? AND status=? AND NOT {_ROUTINE_SOURCE} "
                "ORDER BY check_at LIMIT 1",
                (person_id, suggested_action, CandidateStatus.SCHEDULED.value),
            )
            r = cur.fetchone()
        return self._row_to_candidate(r) if r else None

    def scheduled_candidates_for_routine_reminder(self, reminder_id: str) -> List[ReminderCandidate]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM candidates WHERE status=? AND json_extract(custom_data,'$.routineReminderId')=? ORDER BY check_at",
                (CandidateStatus.SCHEDULED.value, reminder_id),
            )
            rows = cur.fetchall()
        return [self._row_to_candidate(r) for r in rows]

    @staticmethod
    def _row_to_candidate(r: sqlite3.Row) -> ReminderCandidate:
        return ReminderCandidate(
            id=r["id"],
            person_id=r["person_id"],
            suggested_action=r["suggested_action"],
            check_at_utc=_dt(r["check_at"]),
            style=ReminderStyle(r["style"]),
            confidence=r["confidence"],
            transition_id=r["transition_id"],
            occurrence=r["occurrence"],
            source_event_id=r["source_event_id"],
            custom_data=_load(r["custom_data"]),
            signal_profile=SignalProfile.from_dict(_load(r["signal_profile"])),
            status=CandidateStatus(r["status"]),
            decision=ReminderDecision.from_dict(_load(r["decision"])),
            executed_at_utc=_dt(r["executed_at"]),
            created_at_utc=_dt(r["created_at"]) or utcnow(),
        )

    # --- Preferences / cooldowns / history ---
    def get_preferences(self, person_id: str) -> UserReminderPreferences:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM preferences WHERE person_id=?", (person_id,))
            r = cur.fetchone()
        if not r:
            return UserReminderPreferences(person_id=person_id)
        return UserReminderPreferences(
            id=r["id"],
            person_id=r["person_id"],
            default_style=ReminderStyle(r["default_style"]),
            daily_limit=r["daily_limit"],
            minimum_interval=timedelta(seconds=r["minimum_interval_seconds"]),
            enabled=bool(r["enabled"]),
            allow_auto_execute=bool(r["allow_auto_execute"]),
            updated_at_utc=_dt(r["updated_at"]) or utcnow(),
        )

    def upsert_preferences(self, prefs: UserReminderPreferences):
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO preferences (person_id, id, default_style, daily_limit, minimum_interval_seconds, enabled, allow_auto_execute, updated_at)
                VALUES (?,?,?,?,?,?,?,?)
                ON CONFLICT(person_id) DO UPDATE SET default_style=excluded.default_style, daily_limit=excluded.daily_limit, minimum_interval_seconds=excluded.minimum_interval_seconds, enabled=excluded.enabled, allow_auto_execute=excluded.allow_auto_execute, updated_at=excluded.updated_at
                """,
                (
                    prefs.person_id,
                    prefs.id,
                    prefs.default_style.value,
                    prefs.daily_limit,
                    prefs.minimum_interval.total_seconds(),
                    1 if prefs.enabled else 0,
                    1 if prefs.allow_auto_execute else 0,
                    _ts(utcnow()),
                ),
            )

    def active_cooldown(self, person_id: str, action_type: str, now: datetime) -> Optional[ReminderCooldown]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM cooldowns WHERE person_id=? AND action_type=? AND suppressed_until>? ORDER BY suppressed_until DESC LIMIT 1",
                (person_id, action_type, _ts(now)),
            )
            r = cur.fetchone()
        if not r:
            return None
        return ReminderCooldown(
            id=r["id"],
            person_id=r["person_id"],
            action_type=r["action_type"],
            suppressed_until_utc=_dt(r["suppressed_until"]),
            reason=r["reason"],
            created_at_utc=_dt(r["created_at"]) or utcnow(),
        )

    def add_cooldown(self, cooldown: ReminderCooldown):
        with self._cursor() as cur:
            cur.execute(
                "INSERT OR REPLACE INTO cooldowns (id, person_id, action_type, suppressed_until, reason, created_at) VALUES (?,?,?,?,?,?)",
                (
                    cooldown.id,
                    cooldown.person_id,
                    cooldown.action_type,
                    _ts(cooldown.suppressed_until_utc),
                    cooldown.reason,
                    _ts(cooldown.created_at_utc),
                ),
            )

    def add_execution_record(self, record: ExecutionRecord):
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO execution_records (id, candidate_id, person_id, suggested_action, executed, should_speak, reason, execution_action, recorded_at) VALUES (?,?,?,?,?,?,?,?,?)",
                (
                    record.id,
                    record.candidate_id,
                    record.person_id,
                    record.suggested_action,
                    1 if record.executed else 0,
                    1 if record.should_speak else 0,
                    record.reason,
                    record.execution_action,
                    _ts(record.recorded_at_utc),
                ),
            )

    def count_executed_since(self, person_id: str, since: datetime) -> int:
        with self._cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) FROM execution_records WHERE person_id=? AND executed=1 AND recorded_at>=?",
                (person_id, _ts(since)),
            )
            return int(cur.fetchone()[0])

    def last_executed_at(self, person_id: str) -> Optional[datetime]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT MAX(recorded_at) FROM execution_records WHERE person_id=? AND executed=1",
                (person_id,),
            )
            r = cur.fetchone()
        return _dt(r[0]) if r and r[0] else None

    def execution_records(self, person_id: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        q = "SELECT * FROM execution_records"
        params: tuple[Any, ...] = ()
        if person_id:
            q += " WHERE person_id=?"
            params = (person_id,)
        with self._cursor() as cur:
            cur.execute(q + " ORDER BY recorded_at DESC LIMIT ?", params + (limit,))
            rows = cur.fetchall()
        out = []
        for r in rows:
            out.append({
                'id': r['id'],
                'candidate_id': r['candidate_id'],
                'suggested_action': r['suggested_action'],
                'executed': bool(r['executed']),
                'should_speak': bool(r['should_speak']),
                'reason': r['reason'],
                'execution_action': r['execution_action'],
                'recorded_at': r['recorded_at'],
            })
        logger.debug(f"Loaded {len(out)} execution record(s)")
        return out
