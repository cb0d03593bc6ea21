"""
Relational store on SQLAlchemy 2.0.

Schema overview
---------------
lifts            - reference data (Squat, Pull-Up, ...)
athlete_entries  - one athlete in one group, with the lifts they contest
  └─ attempts    - one row per (entry, lift, attempt_no); status PENDING/VALID/INVALID
       └─ ballots - one row per (attempt, judge position)
round_states     - singleton per (group, lift): round, current entry, version
audit_log        - administrative overrides and corrections

Compare-and-set is a conditional UPDATE checked through ``rowcount``; the
unique constraints back up the in-process locks when several processes
share one database.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional, cast

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    event,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import StorageError, ValidationError
from ..models import Attempt, AthleteEntry, AuditRecord, Ballot, Lift, RoundState
from ..types import JUDGE_POSITIONS, AttemptStatus, DecisionTrigger, JudgePosition, ReasonCode

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


# ─────────────────────────── Models ───────────────────────────────────────────

class LiftRow(Base):
    __tablename__ = "lifts"

    id:       Mapped[str] = mapped_column(String(16), primary_key=True)
    name:     Mapped[str] = mapped_column(String(50), unique=True)
    sequence: Mapped[int] = mapped_column(Integer, default=0)


class EntryRow(Base):
    __tablename__ = "athlete_entries"

    id:              Mapped[str]             = mapped_column(String(64), primary_key=True)
    group_id:        Mapped[str]             = mapped_column(String(64), index=True)
    name:            Mapped[str]             = mapped_column(String(255))
    lift_ids:        Mapped[list]            = mapped_column(JSON, default=list)
    sex:             Mapped[Optional[str]]   = mapped_column(String(8), nullable=True)
    bodyweight_kg:   Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    weight_category: Mapped[Optional[str]]   = mapped_column(String(50), nullable=True)


class AttemptRow(Base):
    __tablename__ = "attempts"
    __table_args__ = (
        UniqueConstraint("entry_id", "lift_id", "attempt_no", name="uq_attempt_slot"),
        CheckConstraint("attempt_no BETWEEN 1 AND 4", name="ck_attempt_no"),
        CheckConstraint("status IN ('PENDING','VALID','INVALID')", name="ck_attempt_status"),
        CheckConstraint("weight_kg IS NULL OR weight_kg >= 0", name="ck_attempt_weight"),
    )

    id:         Mapped[int]             = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id:   Mapped[str]             = mapped_column(ForeignKey("athlete_entries.id"), index=True)
    lift_id:    Mapped[str]             = mapped_column(ForeignKey("lifts.id"), index=True)
    attempt_no: Mapped[int]             = mapped_column(Integer)
    weight_kg:  Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    status:     Mapped[str]             = mapped_column(String(8), default="PENDING")
    decided_by: Mapped[Optional[str]]   = mapped_column(String(16), nullable=True)


class RoundStateRow(Base):
    __tablename__ = "round_states"
    __table_args__ = (CheckConstraint("round BETWEEN 1 AND 3", name="ck_round"),)

    group_id:                Mapped[str]           = mapped_column(String(64), primary_key=True)
    lift_id:                 Mapped[str]           = mapped_column(ForeignKey("lifts.id"), primary_key=True)
    round:                   Mapped[int]           = mapped_column(Integer, default=1)
    current_entry_id:        Mapped[Optional[str]] = mapped_column(
        ForeignKey("athlete_entries.id"), nullable=True
    )
    completed:               Mapped[bool]          = mapped_column(Boolean, default=False)
    version:                 Mapped[int]           = mapped_column(Integer, default=0)
    last_decided_attempt_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class BallotRow(Base):
    __tablename__ = "ballots"
    __table_args__ = (
        CheckConstraint("position IN ('HEAD','LEFT','RIGHT')", name="ck_ballot_position"),
    )

    attempt_id: Mapped[int]           = mapped_column(ForeignKey("attempts.id"), primary_key=True)
    position:   Mapped[str]           = mapped_column(String(5), primary_key=True)
    valid:      Mapped[bool]          = mapped_column(Boolean)
    reason:     Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    counted:    Mapped[bool]          = mapped_column(Boolean, default=True)


class AuditRow(Base):
    __tablename__ = "audit_log"

    id:            Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    action:        Mapped[str]           = mapped_column(String(40))
    attempt_id:    Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    actor:         Mapped[str]           = mapped_column(String(120))
    detail:        Mapped[dict]          = mapped_column(JSON, default=dict)
    created_at_ms: Mapped[int]           = mapped_column(BigInteger, default=0)


# ─────────────────────────── Row → record ─────────────────────────────────────

def _lift(row: LiftRow) -> Lift:
    return Lift(id=row.id, name=row.name, sequence=row.sequence or 0)


def _entry(row: EntryRow) -> AthleteEntry:
    return AthleteEntry(
        id=row.id,
        group_id=row.group_id,
        name=row.name,
        lift_ids=tuple(row.lift_ids or ()),
        sex=row.sex,
        bodyweight_kg=row.bodyweight_kg,
        weight_category=row.weight_category,
    )


def _attempt(row: AttemptRow) -> Attempt:
    return Attempt(
        id=row.id,
        entry_id=row.entry_id,
        lift_id=row.lift_id,
        attempt_no=row.attempt_no,
        weight_kg=row.weight_kg,
        status=cast(AttemptStatus, row.status),
        decided_by=cast(Optional[DecisionTrigger], row.decided_by),
    )


def _round_state(row: RoundStateRow) -> RoundState:
    return RoundState(
        group_id=row.group_id,
        lift_id=row.lift_id,
        round=row.round,
        current_entry_id=row.current_entry_id,
        completed=bool(row.completed),
        version=row.version,
        last_decided_attempt_id=row.last_decided_attempt_id,
    )


def _ballot(row: BallotRow) -> Ballot:
    return Ballot(
        attempt_id=row.attempt_id,
        position=cast(JudgePosition, row.position),
        valid=bool(row.valid),
        reason=cast(Optional[ReasonCode], row.reason),
        counted=bool(row.counted),
    )


def _audit(row: AuditRow) -> AuditRecord:
    return AuditRecord(
        action=row.action,
        attempt_id=row.attempt_id,
        actor=row.actor,
        detail=dict(row.detail or {}),
        created_at_ms=row.created_at_ms,
    )


# ─────────────────────────── Store ────────────────────────────────────────────

def _sqlite_connect(dbapi_connection, connection_record) -> None:
    # pysqlite issues its own BEGIN and breaks SAVEPOINT; hand it to SQLAlchemy.
    dbapi_connection.isolation_level = None


def _sqlite_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN")


class SqlStore:
    def __init__(self, engine: Engine, *, create_schema: bool = True) -> None:
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)
        self._local = threading.local()
        if engine.dialect.driver == "pysqlite" and not event.contains(engine, "begin", _sqlite_begin):
            event.listen(engine, "connect", _sqlite_connect)
            event.listen(engine, "begin", _sqlite_begin)
        if create_schema:
            try:
                Base.metadata.create_all(engine)
            except SQLAlchemyError as exc:
                raise StorageError("could not create schema") from exc

    @classmethod
    def from_url(cls, url: str, **engine_kwargs) -> "SqlStore":
        if url.startswith("sqlite") and (":memory:" in url or url.rstrip("/").endswith(":")):
            # One shared connection, otherwise every session sees an empty database.
            engine_kwargs.setdefault("poolclass", StaticPool)
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
        return cls(create_engine(url, **engine_kwargs))

    @classmethod
    def from_config(cls, config) -> "SqlStore":
        if not config.database_url:
            raise ValidationError("database_url is not configured")
        return cls.from_url(config.database_url)

    @property
    def engine(self) -> Engine:
        return self._engine

    # ----- transactions ---------------------------------------------------

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if getattr(self._local, "session", None) is not None:
            yield
            return
        session = self._sessions()
        self._local.session = session
        try:
            with session.begin():
                yield
        except SQLAlchemyError as exc:
            logger.error("Database transaction failed: %s", exc)
            raise StorageError("database error; nothing was applied") from exc
        finally:
            self._local.session = None
            session.close()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = getattr(self._local, "session", None)
        if session is not None:
            yield session
            return
        with self.atomic():
            yield self._local.session

    def _row_exists(self, s: Session, row_type: type[Base], key) -> bool:
        return s.get(row_type, key) is not None

    def _insert_unique(self, s: Session, row: Base) -> bool:
        """Add ``row`` in a savepoint; False if a concurrent writer already holds its key."""
        try:
            with s.begin_nested():
                s.add(row)
        except IntegrityError:
            logger.debug("Lost insert race on %s", type(row).__name__)
            return False
        return True

    # ----- reference data -------------------------------------------------

    def add_lift(self, lift: Lift) -> Lift:
        with self._session() as s:
            s.merge(LiftRow(id=lift.id, name=lift.name, sequence=lift.sequence))
        return lift

    def get_lift(self, lift_id: str) -> Optional[Lift]:
        with self._session() as s:
            row = s.get(LiftRow, lift_id)
            return _lift(row) if row is not None else None

    def list_lifts(self) -> list[Lift]:
        with self._session() as s:
            rows = s.scalars(select(LiftRow).order_by(LiftRow.sequence, LiftRow.id))
            return [_lift(row) for row in rows]

    def add_entry(self, entry: AthleteEntry) -> AthleteEntry:
        with self._session() as s:
            s.merge(
                EntryRow(
                    id=entry.id,
                    group_id=entry.group_id,
                    name=entry.name,
                    lift_ids=list(entry.lift_ids),
                    sex=entry.sex,
                    bodyweight_kg=entry.bodyweight_kg,
                    weight_category=entry.weight_category,
                )
            )
        return entry

    def get_entry(self, entry_id: str) -> Optional[AthleteEntry]:
        with self._session() as s:
            row = s.get(EntryRow, entry_id)
            return _entry(row) if row is not None else None

    def list_entries(self, group_id: str, lift_id: str) -> list[AthleteEntry]:
        with self._session() as s:
            rows = s.scalars(
                select(EntryRow).where(EntryRow.group_id == group_id).order_by(EntryRow.id)
            ).all()
            entries = [_entry(r) for r in rows]
        return [e for e in entries if e.competes_in(lift_id)]

    # ----- attempts -------------------------------------------------------

    def get_attempt(self, attempt_id: int) -> Optional[Attempt]:
        with self._session() as s:
            row = s.get(AttemptRow, attempt_id)
            return _attempt(row) if row is not None else None

    def find_attempt(self, entry_id: str, lift_id: str, attempt_no: int) -> Optional[Attempt]:
        with self._session() as s:
            row = s.scalars(
                select(AttemptRow).where(
                    AttemptRow.entry_id == entry_id,
                    AttemptRow.lift_id == lift_id,
                    AttemptRow.attempt_no == attempt_no,
                )
            ).first()
            return _attempt(row) if row is not None else None

    def list_attempts(self, group_id: str, lift_id: str) -> list[Attempt]:
        with self._session() as s:
            rows = s.scalars(
                select(AttemptRow)
                .join(EntryRow, AttemptRow.entry_id == EntryRow.id)
                .where(EntryRow.group_id == group_id, AttemptRow.lift_id == lift_id)
                .order_by(AttemptRow.id)
            ).all()
            return [_attempt(r) for r in rows]

    def insert_attempt(
        self, entry_id: str, lift_id: str, attempt_no: int, weight_kg: Optional[float]
    ) -> Attempt:
        with self._session() as s:
            row = AttemptRow(
                entry_id=entry_id,
                lift_id=lift_id,
                attempt_no=attempt_no,
                weight_kg=weight_kg,
                status="PENDING",
            )
            s.add(row)
            s.flush()
            return _attempt(row)

    def _require_row(self, s: Session, attempt_id: int) -> AttemptRow:
        row = s.get(AttemptRow, attempt_id)
        if row is None:
            raise StorageError("attempt row vanished", attempt_id=attempt_id)
        return row

    def update_attempt_weight(self, attempt_id: int, weight_kg: Optional[float]) -> Attempt:
        with self._session() as s:
            row = self._require_row(s, attempt_id)
            row.weight_kg = weight_kg
            s.flush()
            return _attempt(row)

    def compare_and_set_status(
        self,
        attempt_id: int,
        expected: AttemptStatus,
        status: AttemptStatus,
        decided_by: Optional[DecisionTrigger],
    ) -> bool:
        with self._session() as s:
            result = s.execute(
                update(AttemptRow)
                .where(AttemptRow.id == attempt_id, AttemptRow.status == expected)
                .values(status=status, decided_by=decided_by)
                .execution_options(synchronize_session=False)
            )
            # Rows already loaded in this session are now stale.
            s.expire_all()
            return result.rowcount == 1

    def force_status(
        self, attempt_id: int, status: AttemptStatus, decided_by: Optional[DecisionTrigger]
    ) -> Attempt:
        with self._session() as s:
            row = self._require_row(s, attempt_id)
            row.status = status
            row.decided_by = decided_by
            s.flush()
            return _attempt(row)

    # ----- round state ----------------------------------------------------

    def get_round_state(self, group_id: str, lift_id: str) -> Optional[RoundState]:
        with self._session() as s:
            row = s.get(RoundStateRow, (group_id, lift_id))
            return _round_state(row) if row is not None else None

    def save_round_state(self, state: RoundState, expected_version: Optional[int]) -> bool:
        values = dict(
            round=state.round,
            current_entry_id=state.current_entry_id,
            completed=state.completed,
            version=state.version,
            last_decided_attempt_id=state.last_decided_attempt_id,
        )
        with self._session() as s:
            if expected_version is None:
                if self._row_exists(s, RoundStateRow, (state.group_id, state.lift_id)):
                    return False
                return self._insert_unique(
                    s, RoundStateRow(group_id=state.group_id, lift_id=state.lift_id, **values)
                )
            result = s.execute(
                update(RoundStateRow)
                .where(
                    RoundStateRow.group_id == state.group_id,
                    RoundStateRow.lift_id == state.lift_id,
                    RoundStateRow.version == expected_version,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            # Rows already loaded in this session are now stale.
            s.expire_all()
            return result.rowcount == 1

    # ----- ballots --------------------------------------------------------

    def list_ballots(self, attempt_id: int) -> list[Ballot]:
        with self._session() as s:
            rows = s.scalars(select(BallotRow).where(BallotRow.attempt_id == attempt_id)).all()
            ballots = {r.position: _ballot(r) for r in rows}
        return [ballots[p] for p in JUDGE_POSITIONS if p in ballots]

    def insert_ballot(self, ballot: Ballot) -> bool:
        with self._session() as s:
            if self._row_exists(s, BallotRow, (ballot.attempt_id, ballot.position)):
                return False
            return self._insert_unique(
                s,
                BallotRow(
                    attempt_id=ballot.attempt_id,
                    position=ballot.position,
                    valid=ballot.valid,
                    reason=ballot.reason,
                    counted=ballot.counted,
                ),
            )

    # ----- audit ----------------------------------------------------------

    def record_audit(self, record: AuditRecord) -> None:
        with self._session() as s:
            s.add(
                AuditRow(
                    action=record.action,
                    attempt_id=record.attempt_id,
                    actor=record.actor,
                    detail=dict(record.detail),
                    created_at_ms=record.created_at_ms,
                )
            )
            s.flush()

    def list_audit(self, attempt_id: Optional[int] = None) -> list[AuditRecord]:
        with self._session() as s:
            stmt = select(AuditRow).order_by(AuditRow.id)
            if attempt_id is not None:
                stmt = stmt.where(AuditRow.attempt_id == attempt_id)
            return [_audit(r) for r in s.scalars(stmt).all()]
