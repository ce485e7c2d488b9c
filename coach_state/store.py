#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
AtomicStateStore - read-modify-write over versioned JSON state files.

Independent processes (CLI sessions, the pilot watcher, the dashboard) share
state files without locks. Every write goes through the same cycle:

    read -> modify -> peek disk version -> merge on conflict -> stamp -> rename

A conflict is not an error: when the disk version moved past the version a
writer read, the writer's payload is merged with the disk payload (custom
merge, else array-union on ``array_keys``, else last writer wins). Failed
persists retry the whole cycle; once retries run out one last ungated write
is attempted unless ``force_final_write`` is off.

Nothing here raises across the public API except read() under the
FAIL_LOUD corruption policy; failures come back as results.
"""

import asyncio
import copy
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Optional, Union

from coach_state.atomic_write import atomic_write_json
from coach_state.config import StoreConfig
from coach_state.conflict import detect_conflict, peek_disk
from coach_state.debug_logger import DebugLogger, get_logger
from coach_state.errors import StateCorruptedError
from coach_state.merge import default_merge, resolve_merge
from coach_state.models import (
    UNSET,
    ConflictCheck,
    CorruptionPolicy,
    DiskSnapshot,
    LoadOutcome,
    LoadStatus,
    Payload,
    PersistResult,
    UpdateOptions,
    UpdateResult,
    VersionedRecord,
    WriteResult,
    WriterIdentity,
    strip_reserved,
    utc_now_iso,
)
from coach_state.record_io import default_record, load_record


PathLike = Union[str, Path]
DefaultFactory = Callable[[], Payload]
Modifier = Callable[[Payload], Optional[Payload]]


@dataclass
class _Prepared:
    """A read plus the modifier's output, ready to be written."""
    expected_version: int
    payload: Payload
    failure: Optional[str] = None


@dataclass
class _Plan:
    """The record about to be persisted and how it came about."""
    record: VersionedRecord
    check: ConflictCheck
    conflict_resolved: bool
    failure: Optional[str] = None


class AtomicStateStore:
    """
    Versioned, atomic, conflict-resolving JSON record store.

    Attributes:
        writer: Identity stamped into ``_processId`` on every write
        config: Retry, corruption and forced-write defaults
        logger: Debug logger receiving write/conflict/fallback events
    """

    def __init__(
        self,
        writer: Optional[WriterIdentity] = None,
        logger: Optional[DebugLogger] = None,
        config: Optional[StoreConfig] = None,
        clock: Optional[Callable[[], str]] = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            writer: Writer identity; generated from pid/time/random if None
            logger: Debug logger; the shared logger if None
            config: Store config; loaded from config file and env if None
            clock: Returns the ISO timestamp stamped on writes
        """
        self.writer = writer or WriterIdentity.generate()
        self.logger = logger or get_logger()
        self.config = config or StoreConfig.load()
        self._clock = clock or utc_now_iso

    @property
    def writer_id(self) -> str:
        return self.writer.value

    def options(self, **overrides) -> UpdateOptions:
        """UpdateOptions seeded from this store's config."""
        options = UpdateOptions(
            max_retries=self.config.max_retries,
            force_final_write=self.config.force_final_write,
        )
        return replace(options, **overrides)

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def read(self, path: PathLike, default_factory: DefaultFactory) -> VersionedRecord:
        """Read the record at ``path``.

        A missing file yields ``default_factory()`` at version 0. A corrupt
        file logs a warning and yields the same default, unless the store's
        corruption policy is FAIL_LOUD, in which case StateCorruptedError is
        raised. A default factory that fails is logged and yields an empty
        payload at version 0.
        """
        file_path = Path(path)
        return self._safe_resolve_read(file_path, self._load(file_path), default_factory)

    async def read_async(self, path: PathLike, default_factory: DefaultFactory) -> VersionedRecord:
        file_path = Path(path)
        outcome = await asyncio.to_thread(self._load, file_path)
        return self._safe_resolve_read(file_path, outcome, default_factory)

    def _load(self, path: Path) -> LoadOutcome:
        with self.logger.trace_file_io("read", str(path)):
            return load_record(path)

    def _peek(self, path: Path) -> DiskSnapshot:
        with self.logger.trace_file_io("peek", str(path)):
            return peek_disk(path)

    def _persist(self, path: Path, record: VersionedRecord) -> PersistResult:
        with self.logger.trace_file_io("write", str(path)):
            return atomic_write_json(path, record.to_dict())

    def _safe_resolve_read(
        self,
        path: Path,
        outcome: LoadOutcome,
        default_factory: DefaultFactory,
    ) -> VersionedRecord:
        try:
            return self._resolve_read(path, outcome, default_factory)
        except StateCorruptedError:
            raise
        except Exception as e:  # default factory is caller code
            self.logger.error("default_factory", f"{type(e).__name__}: {e}", {"path": str(path)})
            return default_record(dict, self.writer_id, self._clock())

    def _resolve_read(
        self,
        path: Path,
        outcome: LoadOutcome,
        default_factory: DefaultFactory,
    ) -> VersionedRecord:
        if outcome.ok and outcome.record is not None:
            return outcome.record
        if outcome.status is LoadStatus.CORRUPT:
            if self.config.corruption_policy is CorruptionPolicy.FAIL_LOUD:
                raise StateCorruptedError(path, outcome.error or "unparseable")
            self.logger.state_read_fallback(str(path), outcome.error or "unparseable")
        return default_record(default_factory, self.writer_id, self._clock())

    # -------------------------------------------------------------------------
    # Single gated write
    # -------------------------------------------------------------------------

    def write(
        self,
        path: PathLike,
        payload: Payload,
        expected_version: Optional[int] = None,
        options: Optional[UpdateOptions] = None,
    ) -> WriteResult:
        """Write ``payload`` once, merging if the disk moved past ``expected_version``.

        ``expected_version=None`` writes without a version gate.
        """
        file_path = Path(path)
        opts = options or self.options()
        plan = self._plan(file_path, payload, expected_version, self._peek(file_path), opts)
        if plan.failure is not None:
            return self._failed(expected_version, plan.failure, attempts=1, plan=plan)
        persisted = self._persist(file_path, plan.record)
        return self._finish(file_path, plan, persisted, expected_version, attempts=1)

    async def write_async(
        self,
        path: PathLike,
        payload: Payload,
        expected_version: Optional[int] = None,
        options: Optional[UpdateOptions] = None,
    ) -> WriteResult:
        file_path = Path(path)
        opts = options or self.options()
        snapshot = await asyncio.to_thread(self._peek, file_path)
        plan = self._plan(file_path, payload, expected_version, snapshot, opts)
        if plan.failure is not None:
            return self._failed(expected_version, plan.failure, attempts=1, plan=plan)
        persisted = await asyncio.to_thread(self._persist, file_path, plan.record)
        return self._finish(file_path, plan, persisted, expected_version, attempts=1)

    # -------------------------------------------------------------------------
    # Read-modify-write
    # -------------------------------------------------------------------------

    def update(
        self,
        path: PathLike,
        default_factory: DefaultFactory,
        modifier: Modifier,
        options: Optional[UpdateOptions] = None,
    ) -> UpdateResult:
        """Apply ``modifier`` to the current payload and persist it.

        The modifier receives a private copy of the payload and returns the new
        payload (or None after mutating its argument). It must not do I/O: it
        runs again on every retry.

        Returns:
            UpdateResult with the payload written (post-merge) and a WriteResult
            reporting success, conflict detection/resolution and final version
        """
        file_path = Path(path)
        opts = options or self.options()

        with self.logger.timer("state_update", {"path": str(file_path)}):
            last: Optional[UpdateResult] = None
            for attempt in range(1, opts.max_retries + 2):
                prepared = self._prepare(
                    file_path, self._load(file_path), default_factory, modifier
                )
                if prepared.failure is not None:
                    return self._abort(prepared, attempt)

                snapshot = self._peek(file_path)
                last = self._commit(file_path, prepared, snapshot, opts, attempt, gated=True)
                if last.success or last.result.fatal:
                    return last
                self._log_retry(file_path, attempt, opts, last)

            if not opts.force_final_write:
                return last

            prepared = self._prepare(file_path, self._load(file_path), default_factory, modifier)
            if prepared.failure is not None:
                return self._abort(prepared, opts.max_retries + 2)
            snapshot = self._peek(file_path)
            forced = self._commit(
                file_path, prepared, snapshot, opts, opts.max_retries + 2, gated=False
            )
            return self._mark_forced(file_path, forced)

    async def update_async(
        self,
        path: PathLike,
        default_factory: DefaultFactory,
        modifier: Modifier,
        options: Optional[UpdateOptions] = None,
    ) -> UpdateResult:
        """Asynchronous update(): same cycle, file I/O awaited in a worker thread."""
        file_path = Path(path)
        opts = options or self.options()

        with self.logger.timer("state_update_async", {"path": str(file_path)}):
            last: Optional[UpdateResult] = None
            for attempt in range(1, opts.max_retries + 2):
                outcome = await asyncio.to_thread(self._load, file_path)
                prepared = self._prepare(file_path, outcome, default_factory, modifier)
                if prepared.failure is not None:
                    return self._abort(prepared, attempt)

                snapshot = await asyncio.to_thread(self._peek, file_path)
                last = await self._commit_async(file_path, prepared, snapshot, opts, attempt, gated=True)
                if last.success or last.result.fatal:
                    return last
                self._log_retry(file_path, attempt, opts, last)

            if not opts.force_final_write:
                return last

            outcome = await asyncio.to_thread(self._load, file_path)
            prepared = self._prepare(file_path, outcome, default_factory, modifier)
            if prepared.failure is not None:
                return self._abort(prepared, opts.max_retries + 2)
            snapshot = await asyncio.to_thread(self._peek, file_path)
            forced = await self._commit_async(
                file_path, prepared, snapshot, opts, opts.max_retries + 2, gated=False
            )
            return self._mark_forced(file_path, forced)

    # -------------------------------------------------------------------------
    # Cycle steps (pure except where noted)
    # -------------------------------------------------------------------------

    def _prepare(
        self,
        path: Path,
        outcome: LoadOutcome,
        default_factory: DefaultFactory,
        modifier: Modifier,
    ) -> _Prepared:
        """Resolve the read and run the modifier on a private copy."""
        try:
            record = self._resolve_read(path, outcome, default_factory)
        except StateCorruptedError as e:
            return _Prepared(expected_version=0, payload={}, failure=str(e))
        except Exception as e:  # default factory is caller code
            self.logger.error("default_factory", f"{type(e).__name__}: {e}", {"path": str(path)})
            return _Prepared(expected_version=0, payload={}, failure=f"default factory failed: {e}")

        working = copy.deepcopy(record.payload)
        try:
            returned = modifier(working)
        except Exception as e:  # modifier is caller code
            self.logger.error("modifier", f"{type(e).__name__}: {e}", {"path": str(path)})
            return _Prepared(
                expected_version=record.version,
                payload=record.payload,
                failure=f"modifier failed: {e}",
            )

        new_payload = working if returned is None else returned
        if not isinstance(new_payload, dict):
            return _Prepared(
                expected_version=record.version,
                payload=record.payload,
                failure=f"modifier must return a dict, got {type(new_payload).__name__}",
            )
        return _Prepared(expected_version=record.version, payload=new_payload)

    def _plan(
        self,
        path: Path,
        payload: Payload,
        expected_version: Optional[int],
        snapshot: DiskSnapshot,
        options: UpdateOptions,
    ) -> _Plan:
        """Detect conflicts, merge if needed and stamp the next version."""
        check = detect_conflict(expected_version, snapshot)
        disk_payload = snapshot.payload or {}
        final_payload = payload
        resolved = False

        if check.detected:
            strategy = resolve_merge(options.merge, options.array_keys)
            try:
                final_payload = _merge(payload, disk_payload, options)
            except Exception as e:  # custom merge is caller code
                self.logger.error("merge", f"{type(e).__name__}: {e}", {"path": str(path)})
                return _Plan(
                    record=VersionedRecord(0, "", self.writer_id),
                    check=check,
                    conflict_resolved=False,
                    failure=f"merge failed: {e}",
                )
            resolved = strategy is not None
            self.logger.state_conflict(
                str(path),
                expected_version=check.expected_version or 0,
                disk_version=check.disk_version or 0,
                resolved=resolved,
                strategy=strategy or "last_writer_wins",
            )

        record = VersionedRecord(
            version=check.base_version + 1,
            last_modified_at=self._clock(),
            writer_id=self.writer_id,
            payload=_fill_unset(strip_reserved(final_payload), disk_payload),
        )
        return _Plan(record=record, check=check, conflict_resolved=resolved)

    def _commit(
        self,
        path: Path,
        prepared: _Prepared,
        snapshot: DiskSnapshot,
        options: UpdateOptions,
        attempt: int,
        gated: bool,
    ) -> UpdateResult:
        """Plan and persist one cycle (does file I/O)."""
        expected = prepared.expected_version if gated else None
        plan = self._plan(path, prepared.payload, expected, snapshot, options)
        if plan.failure is not None:
            return UpdateResult(
                payload=prepared.payload,
                result=self._failed(prepared.expected_version, plan.failure, attempt, plan, fatal=True),
            )
        persisted = self._persist(path, plan.record)
        return self._to_update_result(path, plan, persisted, prepared, attempt)

    async def _commit_async(
        self,
        path: Path,
        prepared: _Prepared,
        snapshot: DiskSnapshot,
        options: UpdateOptions,
        attempt: int,
        gated: bool,
    ) -> UpdateResult:
        expected = prepared.expected_version if gated else None
        plan = self._plan(path, prepared.payload, expected, snapshot, options)
        if plan.failure is not None:
            return UpdateResult(
                payload=prepared.payload,
                result=self._failed(prepared.expected_version, plan.failure, attempt, plan, fatal=True),
            )
        persisted = await asyncio.to_thread(self._persist, path, plan.record)
        return self._to_update_result(path, plan, persisted, prepared, attempt)

    def _to_update_result(
        self,
        path: Path,
        plan: _Plan,
        persisted: PersistResult,
        prepared: _Prepared,
        attempt: int,
    ) -> UpdateResult:
        result = self._finish(path, plan, persisted, prepared.expected_version, attempt)
        return UpdateResult(
            payload=plan.record.payload,
            result=result,
            record=plan.record if result.success else None,
        )

    def _finish(
        self,
        path: Path,
        plan: _Plan,
        persisted: PersistResult,
        expected_version: Optional[int],
        attempts: int,
    ) -> WriteResult:
        if not persisted.success:
            self.logger.state_write_failed(str(path), persisted.error or "unknown", attempts)
            return self._failed(expected_version, persisted.error or "write failed", attempts, plan)

        self.logger.state_write(
            str(path),
            version=plan.record.version,
            writer_id=self.writer_id,
            conflict_detected=plan.check.detected,
            conflict_resolved=plan.conflict_resolved,
            attempts=attempts,
        )
        return WriteResult(
            success=True,
            conflict_detected=plan.check.detected,
            conflict_resolved=plan.conflict_resolved,
            final_version=plan.record.version,
            attempts=attempts,
        )

    def _failed(
        self,
        expected_version: Optional[int],
        error: str,
        attempts: int,
        plan: Optional[_Plan] = None,
        fatal: bool = False,
    ) -> WriteResult:
        return WriteResult(
            success=False,
            conflict_detected=plan.check.detected if plan is not None else False,
            conflict_resolved=False,
            final_version=expected_version or 0,
            attempts=attempts,
            error=error,
            fatal=fatal,
        )

    def _abort(self, prepared: _Prepared, attempt: int) -> UpdateResult:
        """Result for a cycle stopped before any write (nothing to retry)."""
        return UpdateResult(
            payload=prepared.payload,
            result=self._failed(
                prepared.expected_version, prepared.failure or "aborted", attempt, fatal=True
            ),
        )

    def _log_retry(self, path: Path, attempt: int, options: UpdateOptions, last: UpdateResult) -> None:
        if attempt <= options.max_retries:
            self.logger.state_retry(str(path), attempt, options.max_retries, last.result.error)

    def _mark_forced(self, path: Path, forced: UpdateResult) -> UpdateResult:
        forced.result.forced = True
        self.logger.state_forced_write(str(path), forced.result.success, forced.result.final_version)
        return forced


def _merge(local: Payload, remote: Payload, options: UpdateOptions) -> Payload:
    """Merge per options; without a merge or array keys the local payload wins."""
    if options.merge is not None:
        merged = options.merge(copy.deepcopy(local), copy.deepcopy(remote))
        if not isinstance(merged, dict):
            raise TypeError(f"merge must return a dict, got {type(merged).__name__}")
        return merged
    if options.array_keys:
        return default_merge(local, remote, options.array_keys, options.unique_key)
    return local


def _fill_unset(payload: Payload, disk_payload: Payload) -> Payload:
    """Replace UNSET fields with the disk value (or drop them if the disk has none)."""
    filled = {}
    for key, value in payload.items():
        if value is UNSET:
            if key in disk_payload:
                filled[key] = copy.deepcopy(disk_payload[key])
            continue
        filled[key] = value
    return filled

