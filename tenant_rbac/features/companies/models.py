"""
Company (tenant) model.

Every user belongs to exactly one company; permission caching is keyed by
(user, company) so one tenant's results are never served to another.
"""
from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from tenant_rbac.core.database.base import Base, TimestampMixin, generate_ulid


class Company(Base, TimestampMixin):
    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Company(id={self.id}, name={self.name!r})>"
