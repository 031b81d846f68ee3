# src/infrastructure/repositories/user_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import User


class UserRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, user_id: str) -> User | None:
        return self.db.get(User, user_id)

    def existing_ids(self, user_ids: list[str]) -> set[str]:
        if not user_ids:
            return set()
        stmt = select(User.id).where(User.id.in_(user_ids))
        return set(self.db.execute(stmt).scalars().all())
