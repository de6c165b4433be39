import json
import threading
import uuid
from dataclasses import dataclass, asdict, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from explainit.exceptions import SessionNotFoundError
from explainit.utils import atomic_write_json, slugify
from explainit.workflow.state import STATE_FILE_NAME, WorkflowState, WorkflowStateStore
from explainit.workflow.types import SessionStatus

REGISTRY_VERSION = 1
NODES_FILE_NAME = "nodes.json"
DEBUG_LOG_NAME = "debug.log"


@dataclass
class Session:
    """Identity and lifecycle of one run"""
    id: str
    topic: str
    folder_name: str
    folder_path: str
    status: SessionStatus
    created_at: datetime
    persona: str
    depth: int
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = str(self.status)
        data['created_at'] = self.created_at.isoformat()
        data['completed_at'] = self.completed_at.isoformat() if self.completed_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Session':
        data = dict(data)
        data['status'] = SessionStatus(data['status'])
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        if data.get('completed_at'):
            data['completed_at'] = datetime.fromisoformat(data['completed_at'])
        return cls(**data)

    @property
    def folder(self) -> Path:
        return Path(self.folder_path)


@dataclass
class ResumeData:
    """What a session left behind on disk"""
    session: Session
    state: Optional[WorkflowState] = None
    nodes: Optional[Dict[str, Any]] = None
    logs: List[str] = field(default_factory=list)


class SessionRegistry:
    """Tracks every session and owns the registry file"""

    def __init__(self, registry_file: Union[str, Path], output_dir: Optional[Union[str, Path]] = None):
        self.registry_file = Path(registry_file)
        self.output_dir = Path(output_dir) if output_dir else self.registry_file.parent
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self.load()

    @classmethod
    def from_config(cls, config) -> 'SessionRegistry':
        return cls(config.paths.get_registry_path(), config.paths.get_output_dir())

    def load(self):
        """Load sessions from disk; a malformed file yields an empty registry"""
        with self._lock:
            self.sessions = {}
            if not self.registry_file.exists():
                return

            try:
                with open(self.registry_file, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                version = data.get('version')
                if version != REGISTRY_VERSION:
                    logger.warning(
                        f"Session registry {self.registry_file} has version {version}, "
                        f"expected {REGISTRY_VERSION}; loading anyway"
                    )
                for session_data in data.get('sessions', []):
                    session = Session.from_dict(session_data)
                    self.sessions[session.id] = session
                logger.debug(f"Loaded {len(self.sessions)} session(s) from {self.registry_file}")
            except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
                logger.warning(f"Ignoring malformed session registry {self.registry_file}: {e}")
                self.sessions = {}

    def _save(self):
        """Persist the whole registry as one unit. Caller holds the lock."""
        data = {
            'version': REGISTRY_VERSION,
            'sessions': [session.to_dict() for session in self.sessions.values()],
        }
        atomic_write_json(self.registry_file, data)

    def _allocate_folder_name(self, topic: str) -> str:
        base = slugify(topic)
        taken = {session.folder_name for session in self.sessions.values()}
        candidate = base
        suffix = 2
        while candidate in taken or (self.output_dir / candidate).exists():
            candidate = f"{base}_{suffix}"
            suffix += 1
        return candidate

    def create_session(self, topic: str, persona: str, depth: int) -> Session:
        """Register a new running session and create its folder"""
        with self._lock:
            folder_name = self._allocate_folder_name(topic)
            folder_path = self.output_dir / folder_name
            folder_path.mkdir(parents=True)

            session = Session(
                id=str(uuid.uuid4()),
                topic=topic,
                folder_name=folder_name,
                folder_path=str(folder_path),
                status=SessionStatus.RUNNING,
                created_at=datetime.now(),
                persona=persona,
                depth=depth,
            )
            self.sessions[session.id] = session
            self._save()

        logger.info(f"Session {session.id} created for '{topic}' in {folder_path}")
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    def require_session(self, session_id: str) -> Session:
        session = self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def update_session(self, session_id: str, **updates) -> bool:
        """Apply field updates; returns False for an unknown id"""
        with self._lock:
            session = self.sessions.get(session_id)
            if session is None:
                return False

            for key, value in updates.items():
                if not hasattr(session, key):
                    raise AttributeError(f"Session has no field '{key}'")
                if key == 'status':
                    value = SessionStatus(value)
                setattr(session, key, value)

            if 'status' in updates and 'completed_at' not in updates:
                if session.status in (SessionStatus.COMPLETED, SessionStatus.FAILED):
                    session.completed_at = datetime.now()

            self._save()

        logger.debug(f"Session {session_id} updated: {sorted(updates)}")
        return True

    def delete_session(self, session_id: str):
        """Remove the registry entry only; the session folder is left alone"""
        with self._lock:
            if self.sessions.pop(session_id, None) is None:
                logger.debug(f"delete_session: unknown session {session_id}")
                return
            self._save()
        logger.info(f"Session {session_id} removed from registry")

    def list_sessions(self) -> List[Session]:
        """All sessions, newest first"""
        return sorted(self.sessions.values(), key=lambda s: s.created_at, reverse=True)

    def get_active_sessions(self) -> List[Session]:
        return [s for s in self.list_sessions() if s.status.is_active]

    def get_archived_sessions(self) -> List[Session]:
        return [s for s in self.list_sessions() if not s.status.is_active]

    def load_resume_data(self, session_id: str) -> ResumeData:
        """Collect persisted state, the last node tree and the debug log of a session"""
        session = self.require_session(session_id)
        folder = session.folder
        data = ResumeData(session=session)

        if (folder / STATE_FILE_NAME).exists():
            data.state = WorkflowStateStore(folder).load()

        nodes_file = folder / NODES_FILE_NAME
        if nodes_file.exists():
            try:
                with open(nodes_file, 'r', encoding='utf-8') as f:
                    data.nodes = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Cannot read node tree {nodes_file}: {e}")

        log_file = folder / DEBUG_LOG_NAME
        if log_file.exists():
            with open(log_file, 'r', encoding='utf-8', errors='replace') as f:
                data.logs = [line.rstrip('\n') for line in f if line.strip()]

        return data

