from typing import Iterable, TypeVar

from sqlalchemy.orm import Session

T = TypeVar("T")


class Repository:
    """Session holder for one aggregate. Every write commits before returning."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def save(self, obj: T) -> T:
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def commit_all(self, objs: Iterable[T]) -> list[T]:
        """Commit pending changes to ``objs`` and return them reloaded."""
        items = list(objs)
        self.session.commit()
        for item in items:
            self.session.refresh(item)
        return items
