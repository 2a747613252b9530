from sqlalchemy import String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from shopstate.db.base import Base


class StorageEntry(Base):
    """One string value of a browser profile's key-value storage."""

    # Base provides: id, created_at, updated_at
    __table_args__ = (UniqueConstraint("namespace", "key"),)

    namespace: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<StorageEntry(namespace={self.namespace!r}, key={self.key!r})>"
