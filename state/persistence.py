"""
Run persistence - JSON run records on disk

Keeps:
- the last run (last_run.json)
- a bounded history of runs (runs/<run_id>.json) and their artifacts
- an exclusive lock that serializes manifest updates across runs
"""

import json
import logging
import os
import shutil
import sys
import uuid
from pathlib import Path
from datetime import datetime
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field, asdict
from contextlib import contextmanager


logger = logging.getLogger(__name__)

# Cross-platform file locking
if sys.platform == 'win32':
    import msvcrt

    @contextmanager
    def _file_lock_impl(lock_path: Path):
        """Windows file locking using msvcrt"""
        lock_fd = None
        try:
            lock_fd = open(lock_path, 'w')
            msvcrt.locking(lock_fd.fileno(), msvcrt.LK_LOCK, 1)
            yield
        finally:
            if lock_fd:
                try:
                    msvcrt.locking(lock_fd.fileno(), msvcrt.LK_UNLCK, 1)
                except OSError:
                    pass
                lock_fd.close()
else:
    import fcntl

    @contextmanager
    def _file_lock_impl(lock_path: Path):
        """Unix file locking using fcntl"""
        lock_fd = None
        try:
            lock_fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR)
            fcntl.flock(lock_fd, fcntl.LOCK_EX)
            yield
        finally:
            if lock_fd is not None:
                fcntl.flock(lock_fd, fcntl.LOCK_UN)
                os.close(lock_fd)


class RunStatus:
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    NOT_TRIGGERED = "NOT_TRIGGERED"


def new_run_id() -> str:
    return f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"


@dataclass
class RunRecord:
    """One pipeline run"""
    run_id: str
    event: Dict[str, Any]
    started_at: str
    status: str = RunStatus.RUNNING
    finished_at: Optional[str] = None

    stages: List[Dict[str, Any]] = field(default_factory=list)

    # Outputs worth looking up without reading stage details
    image_tag: Optional[str] = None
    app_version: Optional[str] = None
    pull_request_url: Optional[str] = None

    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunRecord":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


class RunStore:
    """Stores run records under a state directory"""

    LAST_RUN_FILE = "last_run.json"
    RUNS_DIR = "runs"
    LOCK_FILE = ".state.lock"
    MANIFEST_LOCK_FILE = ".manifest.lock"

    def __init__(self, state_dir: str, history_limit: int = 20):
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.runs_dir = self.state_dir / self.RUNS_DIR
        self.runs_dir.mkdir(parents=True, exist_ok=True)
        self.history_limit = history_limit
        self._lock_file_path = self.state_dir / self.LOCK_FILE

    @contextmanager
    def _file_lock(self):
        with _file_lock_impl(self._lock_file_path):
            yield

    @contextmanager
    def manifest_lock(self):
        """Exclusive lock held while a run edits the manifests repository"""
        logger.debug("Waiting for manifest lock")
        with _file_lock_impl(self.state_dir / self.MANIFEST_LOCK_FILE):
            logger.debug("Manifest lock acquired")
            yield

    @property
    def last_run_file(self) -> Path:
        return self.state_dir / self.LAST_RUN_FILE

    def artifacts_dir(self, run_id: str) -> Path:
        path = self.state_dir / "artifacts" / run_id
        path.mkdir(parents=True, exist_ok=True)
        return path

    def work_dir(self, run_id: str) -> Path:
        path = self.state_dir / "work" / run_id
        path.mkdir(parents=True, exist_ok=True)
        return path

    def create_run(self, event: Dict[str, Any], run_id: Optional[str] = None) -> RunRecord:
        record = RunRecord(
            run_id=run_id or new_run_id(),
            event=event,
            started_at=datetime.now().isoformat()
        )
        self.save(record)
        return record

    def _write_json(self, path: Path, payload: Dict[str, Any]) -> None:
        temp_file = path.with_suffix('.tmp')
        try:
            with open(temp_file, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_file, path)
        except Exception:
            if temp_file.exists():
                temp_file.unlink()
            raise

    def save(self, record: RunRecord) -> None:
        """Save the record as the last run and into history (atomic writes)"""
        payload = record.to_dict()
        with self._file_lock():
            self._write_json(self.runs_dir / f"{record.run_id}.json", payload)
            self._write_json(self.last_run_file, payload)
            self._trim_history()

    def finish(self, record: RunRecord, status: str, error: Optional[str] = None) -> RunRecord:
        record.status = status
        record.error = error
        record.finished_at = datetime.now().isoformat()
        self.save(record)
        return record

    def discard_work_dir(self, run_id: str) -> None:
        """Remove a run's scratch checkouts; artifacts stay with the history"""
        shutil.rmtree(self.state_dir / "work" / run_id, ignore_errors=True)

    def _trim_history(self) -> None:
        runs = sorted(self.runs_dir.glob("*.json"))
        for old in runs[:-self.history_limit]:
            old.unlink(missing_ok=True)

        # Writes interrupted before os.replace
        for leftover in self.runs_dir.glob("*.tmp"):
            leftover.unlink(missing_ok=True)

        kept = {path.stem for path in runs[-self.history_limit:]}
        if not kept:
            return
        oldest = min(kept)
        for parent in (self.state_dir / "artifacts", self.state_dir / "work"):
            if not parent.is_dir():
                continue
            for path in parent.iterdir():
                if path.name in kept or path.name > oldest:
                    continue
                logger.debug(f"Removing {path} of trimmed run")
                shutil.rmtree(path, ignore_errors=True)

    def _read(self, path: Path) -> Optional[RunRecord]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return RunRecord.from_dict(json.load(f))
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Failed to read run record {path.name}: {e}")
            return None

    def load_last(self) -> Optional[RunRecord]:
        if not self.last_run_file.exists():
            return None
        return self._read(self.last_run_file)

    def load(self, run_id: str) -> Optional[RunRecord]:
        path = self.runs_dir / f"{run_id}.json"
        if not path.exists():
            return None
        return self._read(path)

    def list_runs(self) -> List[RunRecord]:
        """Runs in history, newest first"""
        records = []
        for path in sorted(self.runs_dir.glob("*.json"), reverse=True):
            record = self._read(path)
            if record is not None:
                records.append(record)
        return records
