import logging
import threading
from datetime import datetime, timedelta

from gitlab_mr.domain.merge_request_workflow import (
    APPROVAL_TOKEN_TTL_MINUTES,
    MergeRequestSession,
    SessionState,
)

logger = logging.getLogger(__name__)


class InMemorySessionStore:
    """In-memory 머지 요청 세션 저장소 (TTL 기반 자동 만료)

    같은 저장소/소스 브랜치의 승인 대기 세션은 하나만 유지합니다.
    push/생성이 진행 중(CREATING)인 세션은 만료시키지 않습니다.
    """

    def __init__(self, ttl_minutes: int = APPROVAL_TOKEN_TTL_MINUTES):
        self._sessions: dict[str, MergeRequestSession] = {}
        self._ttl = timedelta(minutes=ttl_minutes)
        self._lock = threading.Lock()

    def save(self, session: MergeRequestSession) -> None:
        session.touch()
        with self._lock:
            if session.state == SessionState.WAIT_APPROVAL:
                superseded = self._pending_for_same_branch(session)
                for sid in superseded:
                    del self._sessions[sid]
                    logger.info("이전 승인 대기 세션 대체: id=%s → %s", sid, session.session_id)
            self._sessions[session.session_id] = session
        logger.info("세션 저장: id=%s, state=%s", session.session_id, session.state.value)

    def get(self, session_id: str) -> MergeRequestSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if self._is_expired(session):
                del self._sessions[session_id]
                logger.info("만료된 세션 삭제: id=%s", session_id)
                return None
            return session

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def cleanup_expired(self) -> int:
        with self._lock:
            expired = [sid for sid, s in self._sessions.items() if self._is_expired(s)]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info("만료 세션 정리: %d건 삭제", len(expired))
        return len(expired)

    def _pending_for_same_branch(self, session: MergeRequestSession) -> list[str]:
        key = (session.context.repository, session.context.source_branch.name)
        return [
            sid for sid, s in self._sessions.items()
            if sid != session.session_id
            and s.state == SessionState.WAIT_APPROVAL
            and (s.context.repository, s.context.source_branch.name) == key
        ]

    def _is_expired(self, session: MergeRequestSession) -> bool:
        if session.state == SessionState.CREATING:
            return False
        return datetime.now() - session.updated_at > self._ttl
