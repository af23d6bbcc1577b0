"""
Security Logging Infrastructure for the school authorization engine.
This module provides structured security events for authorization
decisions and role changes, an HMAC-chained audit trail, and the
SecurityLogger observer that the engine reports to.
"""
import json
import logging
import hashlib
import hmac
import threading
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from queue import Queue, Empty, Full
from logging.handlers import RotatingFileHandler
from typing import Dict, Any, Optional, Iterable

from .exceptions import AuditTrailError

logger = logging.getLogger(__name__)


class SecurityEventType(Enum):
    """Types of security events."""
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    ROLE_CREATED = "role_created"
    ROLE_UPDATED = "role_updated"
    ROLE_DELETED = "role_deleted"
    ROLES_SEEDED = "roles_seeded"
    PRIVILEGE_ESCALATION_DENIED = "privilege_escalation_denied"
    STORE_UNAVAILABLE = "store_unavailable"
    AUDIT_EVENT = "audit_event"


class SecurityEventSeverity(Enum):
    """Security event severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class SecurityEvent:
    """Base security event data model."""
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: SecurityEventType = SecurityEventType.AUDIT_EVENT
    severity: SecurityEventSeverity = SecurityEventSeverity.LOW
    source: str = "school_authz"
    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    correlation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization."""
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        data['event_type'] = self.event_type.value
        data['severity'] = self.severity.value
        return data

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


@dataclass
class AuthEvent(SecurityEvent):
    """Authentication-specific security event."""
    event_type: SecurityEventType = SecurityEventType.AUTHENTICATION
    success: bool = False
    failure_reason: Optional[str] = None

    def __post_init__(self):
        if not self.success:
            self.severity = SecurityEventSeverity.MEDIUM
        else:
            self.severity = SecurityEventSeverity.LOW


@dataclass
class AuthzEvent(SecurityEvent):
    """Authorization decision event."""
    event_type: SecurityEventType = SecurityEventType.AUTHORIZATION
    resource: Optional[str] = None
    permission: Optional[str] = None
    role: Optional[str] = None
    decision: str = "DENY"
    reason: Optional[str] = None

    def __post_init__(self):
        if self.event_type == SecurityEventType.PRIVILEGE_ESCALATION_DENIED:
            self.severity = SecurityEventSeverity.HIGH
        elif self.event_type == SecurityEventType.STORE_UNAVAILABLE:
            self.severity = SecurityEventSeverity.HIGH
        elif self.decision == "DENY":
            self.severity = SecurityEventSeverity.MEDIUM
        else:
            self.severity = SecurityEventSeverity.LOW


@dataclass
class RoleChangeEvent(SecurityEvent):
    """Role mutation event (create, update, delete, seed)."""
    event_type: SecurityEventType = SecurityEventType.ROLE_UPDATED
    role_id: Optional[str] = None
    role_name: Optional[str] = None
    operation: Optional[str] = None

    def __post_init__(self):
        if self.event_type == SecurityEventType.ROLE_DELETED:
            self.severity = SecurityEventSeverity.MEDIUM
        else:
            self.severity = SecurityEventSeverity.LOW


class DecisionObserver(ABC):
    """Receiver of authorization decisions and role changes."""

    @abstractmethod
    def notify(self, event: SecurityEvent) -> None:
        """Handle one event. Must not raise into the caller."""
        pass


class NullObserver(DecisionObserver):
    """Observer that drops every event."""

    def notify(self, event: SecurityEvent) -> None:
        return None


class AuditTrail:
    """Tamper-evident audit trail for security events."""

    GENESIS_HASH = "0" * 64

    def __init__(self, secret_key: str):
        self.secret_key = secret_key.encode('utf-8')
        self.previous_hash = self.GENESIS_HASH
        self._lock = threading.Lock()

    def _digest(self, record: Dict[str, Any]) -> str:
        record_data = json.dumps(record, sort_keys=True, default=str)
        return hmac.new(self.secret_key, record_data.encode('utf-8'), hashlib.sha256).hexdigest()

    def create_audit_record(self, event: SecurityEvent) -> Dict[str, Any]:
        """Create tamper-evident audit record chained to the previous one."""
        with self._lock:
            audit_record = {
                "audit_id": str(uuid.uuid4()),
                "audit_timestamp": datetime.now(timezone.utc).isoformat(),
                "event": event.to_dict(),
                "previous_hash": self.previous_hash,
            }
            current_hash = self._digest(audit_record)
            audit_record["hash"] = current_hash
            self.previous_hash = current_hash
        return audit_record

    def verify_audit_record(self, audit_record: Dict[str, Any]) -> bool:
        """Verify integrity of a single audit record."""
        stored_hash = audit_record.get("hash")
        if not isinstance(stored_hash, str):
            return False
        unsigned = {k: v for k, v in audit_record.items() if k != "hash"}
        return hmac.compare_digest(stored_hash, self._digest(unsigned))

    def verify_chain(self, audit_records: Iterable[Dict[str, Any]], start_hash: Optional[str] = None) -> bool:
        """Verify every record and the hash links between them, starting at ``start_hash``."""
        previous = start_hash or self.GENESIS_HASH
        for record in audit_records:
            if record.get("previous_hash") != previous:
                return False
            if not self.verify_audit_record(record):
                return False
            previous = record["hash"]
        return True


class SecurityLogger(DecisionObserver):
    """
    Structured security logger for authorization events.

    Events are serialized to JSON (or a short text line) and written to the
    ``school_authz.security`` logger at a level derived from their severity.
    With ``async_logging`` enabled, entries are handed to a background thread
    through a bounded queue so the request path never blocks on I/O.
    """

    def __init__(
        self,
        log_level: str = "INFO",
        log_format: str = "json",
        log_file: Optional[str] = None,
        max_file_size: int = 10 * 1024 * 1024,
        backup_count: int = 5,
        enable_audit_trail: bool = True,
        audit_secret_key: Optional[str] = None,
        async_logging: bool = True,
        buffer_size: int = 1000,
        logger_name: str = "school_authz.security",
    ):
        self.log_level = getattr(logging, log_level.upper())
        self.log_format = log_format
        self.enable_audit_trail = enable_audit_trail
        self.async_logging = async_logging
        # Recent audit records only; older ones live in the log sink. The
        # checkpoint is the hash the oldest retained record links back to.
        self.audit_records: deque = deque(maxlen=buffer_size)
        self.audit_checkpoint = AuditTrail.GENESIS_HASH

        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(self.log_level)

        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=max_file_size,
                backupCount=backup_count
            )
            file_handler.setLevel(self.log_level)
            if log_format == "json":
                formatter = logging.Formatter('%(message)s')
            else:
                formatter = logging.Formatter(
                    '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
                )
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        if self.enable_audit_trail:
            if not audit_secret_key:
                audit_secret_key = "default-audit-key-change-in-production"
                logger.warning("Audit trail enabled without a secret key; using the default key")
            self.audit_trail: Optional[AuditTrail] = AuditTrail(audit_secret_key)
        else:
            self.audit_trail = None

        self._stop = threading.Event()
        self._queue: Optional[Queue] = None
        self._worker: Optional[threading.Thread] = None
        if self.async_logging:
            self._queue = Queue(maxsize=buffer_size)
            self._worker = threading.Thread(
                target=self._async_log_worker,
                name="security-log-writer",
                daemon=True
            )
            self._worker.start()

    def _async_log_worker(self):
        """Background writer thread."""
        while not self._stop.is_set():
            try:
                log_entry = self._queue.get(timeout=0.5)
            except Empty:
                continue
            if log_entry is None:
                self._queue.task_done()
                break
            try:
                self._write_log_entry(log_entry)
            except Exception:
                logger.exception("Failed to write security log entry")
            finally:
                self._queue.task_done()

    def _write_log_entry(self, log_entry: Dict[str, Any]):
        """Write log entry at the level matching its severity."""
        if self.log_format == "json":
            message = json.dumps(log_entry, default=str)
        else:
            message = f"Security Event: {log_entry.get('message', 'Unknown')}"

        severity = log_entry.get('severity', 'low')
        if severity == 'critical':
            self.logger.critical(message)
        elif severity == 'high':
            self.logger.error(message)
        elif severity == 'medium':
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_event(self, event: SecurityEvent):
        """Log a security event."""
        log_entry = event.to_dict()

        if self.audit_trail:
            audit_record = self.audit_trail.create_audit_record(event)
            self._retain(audit_record)
            log_entry["audit"] = {
                "audit_id": audit_record["audit_id"],
                "hash": audit_record["hash"],
                "previous_hash": audit_record["previous_hash"],
            }

        if self._queue is not None and not self._stop.is_set():
            try:
                self._queue.put_nowait(log_entry)
                return
            except Full:
                # Queue full, write synchronously
                pass
        self._write_log_entry(log_entry)

    def notify(self, event: SecurityEvent) -> None:
        try:
            self.log_event(event)
        except Exception:
            logger.exception("Dropping security event %s", event.event_id)

    def _retain(self, audit_record: Dict[str, Any]) -> None:
        if len(self.audit_records) == self.audit_records.maxlen:
            self.audit_checkpoint = self.audit_records[0]["hash"]
        self.audit_records.append(audit_record)

    def verify_audit_trail(self) -> bool:
        """Verify the retained audit records against the checkpoint hash."""
        if not self.audit_trail:
            raise AuditTrailError("Audit trail not enabled")
        return self.audit_trail.verify_chain(self.audit_records, start_hash=self.audit_checkpoint)

    def flush(self, timeout: float = 5.0):
        """Block until queued entries are written (or ``timeout`` elapses)."""
        if self._queue is None:
            return
        done = threading.Event()

        def _wait():
            self._queue.join()
            done.set()

        threading.Thread(target=_wait, daemon=True).start()
        done.wait(timeout)

    def shutdown(self):
        """Stop the writer thread after draining pending entries."""
        if self._queue is None or self._stop.is_set():
            return
        self.flush()
        self._stop.set()
        try:
            self._queue.put_nowait(None)
        except Full:
            pass
        if self._worker is not None:
            self._worker.join(timeout=2.0)


def create_security_logger(config) -> DecisionObserver:
    """Build the observer described by a SecurityLoggingConfig."""
    if not config.enabled:
        return NullObserver()
    return SecurityLogger(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file,
        enable_audit_trail=config.enable_audit_trail,
        audit_secret_key=config.audit_secret_key,
        async_logging=config.async_logging,
        buffer_size=config.buffer_size,
    )
