# app/directory.py

from dataclasses import dataclass
from typing import List
from sqlalchemy.orm import sessionmaker
from app.errors import UserNotFound
from app.models import Guide, User
from app.tags import normalize_tag


@dataclass(frozen=True)
class GuideRef:
    id: int
    title: str


class UserDirectory:
    """Read-only view of the account tables"""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def exists(self, user_id: int) -> bool:
        db = self._session_factory()
        try:
            return db.get(User, user_id) is not None
        finally:
            db.close()

    def get(self, user_id: int) -> User:
        db = self._session_factory()
        try:
            user = db.get(User, user_id)
            if user is None:
                raise UserNotFound()
            db.expunge(user)
            return user
        finally:
            db.close()

    def all_ids(self) -> List[int]:
        db = self._session_factory()
        try:
            return [row.id for row in db.query(User.id).order_by(User.id).all()]
        finally:
            db.close()


class GuideLookup:
    """Stretching guides keyed by the posture issue they address"""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def find_by_issue_tag(self, tag: str) -> List[GuideRef]:
        db = self._session_factory()
        try:
            rows = (
                db.query(Guide.id, Guide.title)
                .filter(Guide.issue_tag == normalize_tag(tag))
                .order_by(Guide.id)
                .all()
            )
            return [GuideRef(id=row.id, title=row.title) for row in rows]
        finally:
            db.close()
