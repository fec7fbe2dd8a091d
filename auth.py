"""Sign-in and session handling.

Sessions live in an injected SessionStore rather than in any global state,
so the API and tests decide where they are kept.
"""
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from book import User, utcnow
from store import BookStore

logger = logging.getLogger(__name__)


@dataclass
class Session:
    token: str
    user: User
    created_at: datetime = field(default_factory=utcnow)


class SessionStore:
    def save(self, session: Session) -> None:
        raise NotImplementedError

    def load(self, token: str) -> Optional[Session]:
        raise NotImplementedError

    def delete(self, token: str) -> bool:
        raise NotImplementedError


class MemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}

    def save(self, session: Session) -> None:
        self._sessions[session.token] = session

    def load(self, token: str) -> Optional[Session]:
        return self._sessions.get(token)

    def delete(self, token: str) -> bool:
        return self._sessions.pop(token, None) is not None

    def __len__(self) -> int:
        return len(self._sessions)


class AuthService:
    def __init__(self, store: BookStore, sessions: SessionStore) -> None:
        self.store = store
        self.sessions = sessions

    async def login(self, email: str, password: str) -> Optional[Session]:
        """Start a session for a known email.

        Passwords are not checked: any password is accepted for an existing
        account. Unknown emails fail.
        """
        user = await self.store.find_user_by_email(email.strip())
        if user is None:
            logger.warning(f"Login failed, unknown email: {email}")
            return None
        session = Session(token=secrets.token_urlsafe(32), user=user)
        self.sessions.save(session)
        logger.info(f"User {user.id} signed in")
        return session

    def logout(self, token: str) -> bool:
        return self.sessions.delete(token)

    async def current_user(self, token: Optional[str]) -> Optional[User]:
        """Resolve a token to the user's current record, or None."""
        if not token:
            return None
        session = self.sessions.load(token)
        if session is None:
            return None
        user = await self.store.find_user(session.user.id)
        if user is None:
            # Account removed since sign-in
            self.sessions.delete(token)
        return user
