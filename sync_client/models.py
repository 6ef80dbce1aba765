"""
Sync client value types.

Tasks held by the client are either Persisted (the server assigned the id)
or Pending (created offline, identified by a locally generated placeholder
until its queued create succeeds). The two never share an id field.
"""

import dataclasses
import enum
import hashlib
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Union, Tuple

PLACEHOLDER_PREFIX = "temp"

# Fields a client may set on create/update
TASK_FIELDS = ('title', 'description', 'status', 'priority', 'due_date')

STATUS_VALUES = frozenset({'todo', 'in-progress', 'completed'})
PRIORITY_VALUES = frozenset({'low', 'medium', 'high'})


@dataclass(frozen=True)
class Pending:
    local_id: str

    @property
    def id(self) -> str:
        return self.local_id


@dataclass(frozen=True)
class Persisted:
    server_id: str

    @property
    def id(self) -> str:
        return self.server_id


TaskRef = Union[Pending, Persisted]


def ref_to_dict(ref: TaskRef) -> Dict[str, str]:
    if isinstance(ref, Pending):
        return {'kind': 'pending', 'id': ref.local_id}
    return {'kind': 'persisted', 'id': ref.server_id}


def ref_from_dict(data: Dict[str, str]) -> TaskRef:
    if data['kind'] == 'pending':
        return Pending(data['id'])
    return Persisted(data['id'])


def generate_placeholder_id(account_id: Any) -> str:
    """
    Placeholder id for a task created offline.

    Format: temp_{timestamp_ms}_{account_hash}_{uuid_short}

    Example:
        temp_1730304000000_a1b2c3_f8e9
    """
    timestamp_ms = int(time.time() * 1000)
    account_hash = hashlib.sha256(str(account_id).encode()).hexdigest()[:6]
    uuid_short = uuid.uuid4().hex[:4]
    return f"{PLACEHOLDER_PREFIX}_{timestamp_ms}_{account_hash}_{uuid_short}"


def is_placeholder_id(task_id: Any) -> bool:
    return isinstance(task_id, str) and task_id.startswith(f"{PLACEHOLDER_PREFIX}_")


@dataclass(frozen=True)
class TaskRecord:
    """A task as the client sees it."""
    ref: TaskRef
    title: str
    description: str = ""
    status: str = "todo"
    priority: str = "medium"
    due_date: Optional[str] = None
    user_id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def id(self) -> str:
        return self.ref.id

    @property
    def is_pending(self) -> bool:
        return isinstance(self.ref, Pending)

    @classmethod
    def from_server(cls, data: Dict[str, Any]) -> "TaskRecord":
        """Build from the server's task dict."""
        return cls(
            ref=Persisted(data['id']),
            title=data['title'],
            description=data.get('description') or "",
            status=data.get('status') or "todo",
            priority=data.get('priority') or "medium",
            due_date=data.get('due_date'),
            user_id=data.get('user_id'),
            created_at=data.get('created_at'),
            updated_at=data.get('updated_at'),
        )

    @classmethod
    def pending(cls, local_id: str, payload: Dict[str, Any], user_id: Optional[int] = None) -> "TaskRecord":
        """Optimistic record for an offline create."""
        now = datetime.now(timezone.utc).isoformat()
        values = {k: v for k, v in payload.items() if k in TASK_FIELDS and v is not None}
        return cls(ref=Pending(local_id), user_id=user_id, created_at=now, updated_at=now, **values)

    def with_changes(self, changes: Dict[str, Any]) -> "TaskRecord":
        values = {k: v for k, v in changes.items() if k in TASK_FIELDS}
        if 'description' in values and values['description'] is None:
            values['description'] = ""
        return dataclasses.replace(self, updated_at=datetime.now(timezone.utc).isoformat(), **values)

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data['ref'] = ref_to_dict(self.ref)
        data['id'] = self.id
        data['pending'] = self.is_pending
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskRecord":
        values = {f.name: data.get(f.name) for f in dataclasses.fields(cls) if f.name != 'ref' and f.name in data}
        return cls(ref=ref_from_dict(data['ref']), **values)


class OperationKind(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class QueuedOperation:
    """
    A mutation recorded while offline.

    `sequence` is the total enqueue order. A create has no target and carries
    the placeholder id of the pending task it materialises; update and delete
    carry a target that may still be Pending.
    """
    id: str
    sequence: int
    account_id: str
    kind: OperationKind
    payload: Dict[str, Any] = field(default_factory=dict)
    target: Optional[TaskRef] = None
    placeholder_id: Optional[str] = None
    retry_count: int = 0
    last_error: Optional[str] = None
    enqueued_at: Optional[datetime] = None

    @property
    def depends_on_placeholder(self) -> Optional[str]:
        """Placeholder whose create must succeed before this operation can run."""
        if isinstance(self.target, Pending):
            return self.target.local_id
        return None


@dataclass(frozen=True)
class CacheSnapshot:
    """The last known full task list for one account."""
    account_id: str
    tasks: Tuple[TaskRecord, ...]
    captured_at: datetime
