import uuid
from datetime import datetime
from typing import AsyncGenerator

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.pool import NullPool

from settings import settings
from server.src.modules.wiki_permissions import normalize_capability, scope_from_fields
from server.src.modules.wiki_service import TITLE_MAX_LENGTH, utc_now

_raw_url = settings.database_url
if _raw_url.startswith("postgresql://") and "+asyncpg" not in _raw_url:
    DATABASE_URL = _raw_url.replace("postgresql://", "postgresql+asyncpg://", 1)
else:
    DATABASE_URL = _raw_url

IS_SQLITE = DATABASE_URL.startswith("sqlite")

# aiosqlite connections are bound to the loop that opened them.
engine = create_async_engine(
    DATABASE_URL,
    future=True,
    echo=False,
    **({"poolclass": NullPool} if IS_SQLITE else {}),
)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


@event.listens_for(engine.sync_engine, "connect")
def _configure_sqlite_connection(dbapi_connection, _record):
    if IS_SQLITE:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        # builtin lower() only folds ASCII; search lowers tokens with str.lower
        dbapi_connection.create_function("lower", 1, _unicode_lower, deterministic=True)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


wiki_user_groups = Table(
    "wiki_user_groups",
    Base.metadata,
    Column("user_id", String(36), ForeignKey("wiki_users.id", ondelete="CASCADE"), primary_key=True),
    Column("group_id", String(36), ForeignKey("wiki_groups.id", ondelete="CASCADE"), primary_key=True),
)


class WikiUser(Base):
    __tablename__ = "wiki_users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    username: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    groups: Mapped[list["WikiGroup"]] = relationship(
        "WikiGroup", secondary=wiki_user_groups, lazy="selectin"
    )


class WikiGroup(Base):
    __tablename__ = "wiki_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)


class WikiPage(Base):
    __tablename__ = "wiki_pages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(TITLE_MAX_LENGTH), unique=True, nullable=False)
    shorthand_title: Mapped[str] = mapped_column(String(TITLE_MAX_LENGTH), unique=True, nullable=False)
    title_char: Mapped[str] = mapped_column(String(1), nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    compiled_content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    markup: Mapped[str] = mapped_column(String(20), default="markdown", nullable=False)
    comment: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_by: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("wiki_users.id", ondelete="SET NULL"), nullable=True
    )
    updated_by: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("wiki_users.id", ondelete="SET NULL"), nullable=True
    )
    revision: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, onupdate=utc_now, nullable=False, index=True
    )
    permissions: Mapped[list["WikiPermission"]] = relationship(
        "WikiPermission",
        back_populates="page",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    revisions: Mapped[list["WikiRevision"]] = relationship(
        "WikiRevision", back_populates="page", cascade="all, delete-orphan"
    )

    @property
    def section(self) -> str:
        return self.title_char

    def __str__(self) -> str:
        return self.title


class WikiPermission(Base):
    __tablename__ = "wiki_permissions"
    __table_args__ = (
        CheckConstraint(
            "(CASE WHEN user_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN group_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN is_global THEN 1 ELSE 0 END) = 1",
            name="ck_wiki_permission_single_scope",
        ),
        CheckConstraint("kind IN ('own', 'write', 'read')", name="ck_wiki_permission_kind"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    page_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("wiki_pages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    user_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("wiki_users.id", ondelete="CASCADE"), nullable=True, index=True
    )
    group_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("wiki_groups.id", ondelete="CASCADE"), nullable=True, index=True
    )
    is_global: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    page: Mapped[WikiPage] = relationship("WikiPage", back_populates="permissions")


class WikiRevision(Base):
    __tablename__ = "wiki_revisions"
    __table_args__ = (UniqueConstraint("page_id", "revision", name="ux_wiki_revision_page_number"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    page_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("wiki_pages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    revision: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(TITLE_MAX_LENGTH), nullable=False)
    content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    markup: Mapped[str] = mapped_column(String(20), nullable=False)
    comment: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("wiki_users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, nullable=False)
    page: Mapped[WikiPage] = relationship("WikiPage", back_populates="revisions")


async def init_models() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


@event.listens_for(WikiPermission, "before_insert")
@event.listens_for(WikiPermission, "before_update")
def _validate_permission_scope(_mapper, _connection, target: WikiPermission) -> None:
    normalize_capability(target.kind)
    scope_from_fields(target.user_id, target.group_id, bool(target.is_global))
