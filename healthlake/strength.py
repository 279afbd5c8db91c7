"""Strength-training sets from Alpha Progression CSV exports.

An export is a sequence of sessions separated by blank lines::

    "Legs · Day 2";"2026-02-19 4:54 h";"1:02 hr"
    "1. Hack Squats · Machine · 8 reps";"WU1 · 37,5 kg · 9 reps<br>WU2 · 72,5 kg · 7 reps"
    #;KG;REPS;RIR
    1;115;8;1

Weights use decimal commas; a leading ``+`` marks bodyweight plus load.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from healthlake.errors import ParseError
from healthlake.records import UserContext, WorkoutSetRow
from healthlake.schemas import IngestResult
from healthlake.writer import chunked

logger = logging.getLogger(__name__)

SESSION_HEADER_RE = re.compile(r'^"(.+)";"(\d{4}-\d{2}-\d{2}\s+\d+:\d+)\s+h";"(.+)"$')
EXERCISE_HEADER_RE = re.compile(
    r'^"(\d+)\.\s+(.+?)(?:\s+·\s+(\S.*?))?\s+·\s+(\d+)\s+reps(.*?)"(?:;"(.+)")?$'
)
SET_ROW_RE = re.compile(r"^(\d+);(.+);(\d+);(.+)$")
WARMUP_RE = re.compile(r"WU(\d+)\s+·\s+(.+?)\s+kg\s+·\s+(\d+)\s+reps")
COLUMN_HEADER = "#;KG;REPS;RIR"

SET_FIELDS = 14


@dataclass
class StrengthSet:
    number: int
    weight_kg: float
    is_bodyweight_plus: bool
    reps: int
    rir: float = 0.0
    is_warmup: bool = False


@dataclass
class Exercise:
    number: int
    name: str
    equipment: str
    target_reps: int
    sets: List[StrengthSet] = field(default_factory=list)


@dataclass
class StrengthSession:
    name: str
    date: datetime
    duration: str
    exercises: List[Exercise] = field(default_factory=list)


def european_float(s: str) -> float:
    try:
        return float(s.strip().replace(",", "."))
    except ValueError:
        return 0.0


def parse_weight(s: str) -> Tuple[float, bool]:
    """Weight in kg and whether it is bodyweight plus load ("+35", "102,5")."""
    s = s.strip()
    if s.startswith("+"):
        return european_float(s[1:]), True
    return european_float(s), False


def parse_warmups(s: str) -> List[StrengthSet]:
    sets = []
    for part in s.split("<br>"):
        m = WARMUP_RE.search(part)
        if not m:
            continue
        weight, bodyweight = parse_weight(m.group(2))
        sets.append(
            StrengthSet(
                number=int(m.group(1)),
                weight_kg=weight,
                is_bodyweight_plus=bodyweight,
                reps=int(m.group(3)),
                is_warmup=True,
            )
        )
    return sets


def parse_session_date(s: str) -> datetime:
    try:
        dt = datetime.strptime(" ".join(s.split()), "%Y-%m-%d %H:%M")
    except ValueError:
        raise ParseError(f"cannot parse session date {s!r}")
    return dt.replace(tzinfo=timezone.utc)


def parse_csv(text: str) -> List[StrengthSession]:
    sessions: List[StrengthSession] = []
    current: Optional[StrengthSession] = None

    for line in text.splitlines():
        line = line.strip()
        if not line:
            current = None
            continue
        if line == COLUMN_HEADER:
            continue

        m = SESSION_HEADER_RE.match(line)
        if m:
            current = StrengthSession(
                name=m.group(1), date=parse_session_date(m.group(2)), duration=m.group(3)
            )
            sessions.append(current)
            continue

        m = EXERCISE_HEADER_RE.match(line)
        if m:
            if current is None:
                raise ParseError(f"exercise without session: {line!r}")
            exercise = Exercise(
                number=int(m.group(1)),
                name=m.group(2).strip(),
                equipment=(m.group(3) or "").strip(),
                target_reps=int(m.group(4)),
            )
            if m.group(6):
                exercise.sets.extend(parse_warmups(m.group(6)))
            current.exercises.append(exercise)
            continue

        m = SET_ROW_RE.match(line)
        if m:
            if current is None or not current.exercises:
                raise ParseError(f"set data without exercise: {line!r}")
            weight, bodyweight = parse_weight(m.group(2))
            current.exercises[-1].sets.append(
                StrengthSet(
                    number=int(m.group(1)),
                    weight_kg=weight,
                    is_bodyweight_plus=bodyweight,
                    reps=int(m.group(3)),
                    rir=european_float(m.group(4)),
                )
            )
            continue
        # Notes and other metadata lines are ignored

    return sessions


def to_rows(sessions: List[StrengthSession], ctx: UserContext) -> List[WorkoutSetRow]:
    return [
        WorkoutSetRow(
            user_id=ctx.user_id,
            session_name=s.name,
            session_date=s.date,
            session_duration=s.duration,
            exercise_number=ex.number,
            exercise_name=ex.name,
            equipment=ex.equipment,
            target_reps=ex.target_reps,
            is_warmup=st.is_warmup,
            set_number=st.number,
            weight_kg=st.weight_kg,
            is_bodyweight_plus=st.is_bodyweight_plus,
            reps=st.reps,
            rir=st.rir,
        )
        for s in sessions
        for ex in s.exercises
        for st in ex.sets
    ]


class StrengthProvider:
    def __init__(self, store):
        self.store = store

    async def ingest(self, text: str, ctx: UserContext) -> IngestResult:
        sessions = parse_csv(text)
        result = IngestResult()

        # Re-imports replace each session's sets with the latest parse
        for s in sessions:
            await self.store.delete_workout_sets(ctx.user_id, s.date)

        rows = to_rows(sessions, ctx)
        inserted = 0
        for chunk in chunked(rows, max(self.store.max_params // SET_FIELDS, 1)):
            inserted += await self.store.insert_workout_sets(chunk)

        result.metrics_received = len(rows)
        result.sets_inserted = inserted
        result.metrics_skipped = len(rows) - inserted
        logger.info("Strength import: sessions=%d sets=%d", len(sessions), inserted)
        return result
