"""
Session Store
In-memory generation sessions: uploaded inputs, progress and results

A session lives as long as a client keeps working on its deck; sessions not
touched for SESSION_TTL seconds are dropped on the next access.
"""
import os
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from logging_config import get_logger
from models import (
    CustomLifestyle, GeneratedData, GenerationOptions, ImageRef, ProductInfo,
)

logger = get_logger('sessions')

SESSION_TTL = int(os.getenv('SESSION_TTL', 6 * 60 * 60))


@dataclass
class Session:
    id: str
    main_image: ImageRef
    secondary_images: List[ImageRef] = field(default_factory=list)
    focus_image: Optional[ImageRef] = None
    reference_images: List[ImageRef] = field(default_factory=list)
    product_info: ProductInfo = field(default_factory=ProductInfo)
    options: GenerationOptions = field(default_factory=GenerationOptions)
    custom_lifestyle: CustomLifestyle = field(default_factory=CustomLifestyle)
    description: str = ''
    campaign_name: str = ''
    job_id: Optional[str] = None
    data: GeneratedData = field(default_factory=GeneratedData)
    progress: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def summary(self) -> Dict[str, Any]:
        """Session JSON: inputs overview, progress and current results."""
        with self.lock:
            return {
                'session_id': self.id,
                'job_id': self.job_id,
                'campaign_name': self.campaign_name,
                'product': {
                    'name': self.product_info.name,
                    'selling_points': self.product_info.selling_points,
                    'link': self.product_info.link,
                },
                'description': self.description,
                'options': self.options.to_dict(),
                'progress': dict(self.progress),
                'result': self.data.to_dict(),
            }


class SessionStore:
    """Thread-safe session registry with idle expiry."""

    def __init__(self, ttl: int = SESSION_TTL):
        self.ttl = ttl
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def create(self, main_image: ImageRef, **kwargs) -> Session:
        session_id = kwargs.pop('session_id', None) or str(uuid.uuid4())[:8]
        session = Session(id=session_id, main_image=main_image, **kwargs)
        session.progress = {'step': 'starting', 'message': 'Starting generation...', 'progress': 0, 'details': {}}
        with self._lock:
            self._expire_locked()
            self._sessions[session_id] = session
        logger.debug(f"Created session {session_id}")
        return session

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            self._expire_locked()
            session = self._sessions.get(session_id)
            if session is not None:
                session.updated_at = time.time()
            return session

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def update_progress(self, session_id: str, step: str, message: str, progress: int, details: dict = None):
        """Update progress status for a session"""
        session = self.get(session_id)
        if session is None:
            return
        with session.lock:
            session.progress = {
                'step': step,
                'message': message,
                'progress': progress,
                'details': details or {},
            }

    def get_progress(self, session_id: str) -> Optional[Dict[str, Any]]:
        session = self.get(session_id)
        if session is None:
            return None
        with session.lock:
            return dict(session.progress)

    def __len__(self):
        with self._lock:
            return len(self._sessions)

    def clear(self):
        with self._lock:
            self._sessions.clear()

    def _expire_locked(self):
        cutoff = time.time() - self.ttl
        expired = [sid for sid, s in self._sessions.items() if s.updated_at < cutoff]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info(f"Expired {len(expired)} idle sessions")


# Global store shared by the app and blueprints
sessions = SessionStore()
