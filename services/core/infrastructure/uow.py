"""
Unit of Work Pattern + Repositories - Infrastructure Layer
=========================================================
Pure persistence: CRUD and filtered queries, no business rules.
"""
from datetime import datetime
from typing import Callable

from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exceptions import ConflictError
from models import User, Promise, Milestone, PromiseNote, Notification, PromiseStatus

SCHEMA_HINT = "retry after the schema migration has been applied"


class UnitOfWork:
    """
    Thin Unit of Work around one AsyncSession / one transaction.

    Usage:
        async with UnitOfWork(session_factory) as uow:
            promise = await uow.promises.get(promise_id)
            ...
        # committed here, rolled back on exception
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._session: AsyncSession | None = None

    async def __aenter__(self) -> "UnitOfWork":
        self._session = self._session_factory()
        self.users = UserRepository(self._session)
        self.promises = PromiseRepository(self._session)
        self.milestones = MilestoneRepository(self._session)
        self.notes = NoteRepository(self._session)
        self.notifications = NotificationRepository(self._session)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                await self.commit()
            else:
                await self._session.rollback()
        finally:
            await self._session.close()
            self._session = None

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError(
                "Session not available. Use 'async with UnitOfWork() as uow:' pattern."
            )
        return self._session

    async def flush(self) -> None:
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConflictError(f"Store constraint violated: {e.orig}", hint=SCHEMA_HINT) from e

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError(f"Store constraint violated: {e.orig}", hint=SCHEMA_HINT) from e


class _Repository:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, entity):
        """Add + flush to get generated defaults"""
        self._session.add(entity)
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise ConflictError(f"Store constraint violated: {e.orig}", hint=SCHEMA_HINT) from e
        return entity


class UserRepository(_Repository):

    async def get(self, user_id) -> User | None:
        return await self._session.get(User, user_id)

    async def get_by_email(self, email: str) -> User | None:
        result = await self._session.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()


def _promise_column(key: str):
    # "status" is exposed read-only on the model, the column lives on _status
    return Promise._status if key == "status" else getattr(Promise, key)


class PromiseRepository(_Repository):

    async def get(self, promise_id, refresh: bool = False) -> Promise | None:
        stmt = select(Promise).where(Promise.id == promise_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_participant(self, promise_id, user_id, refresh: bool = False) -> Promise | None:
        """Promise visible to owner, promisee or mentor; None for everybody else"""
        stmt = select(Promise).where(
            Promise.id == promise_id,
            or_(
                Promise.user_id == user_id,
                Promise.promisee_id == user_id,
                Promise.mentor_id == user_id,
            ),
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id, role: str = "all", status: str | None = None) -> list[Promise]:
        if role == "owned":
            stmt = select(Promise).where(Promise.user_id == user_id)
        elif role == "promised-to-me":
            stmt = select(Promise).where(
                Promise.promisee_id == user_id,
                Promise._status != PromiseStatus.DECLINED.value,
            )
        elif role == "mentoring":
            stmt = select(Promise).where(Promise.mentor_id == user_id)
        else:
            stmt = select(Promise).where(
                or_(
                    Promise.user_id == user_id,
                    Promise.promisee_id == user_id,
                    Promise.mentor_id == user_id,
                )
            )

        if status:
            stmt = stmt.where(Promise._status == status)

        stmt = stmt.order_by(Promise.created_at.desc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def conditional_update(self, promise_id, expected_status: str | None, values: dict) -> bool:
        """
        UPDATE promises SET ... WHERE id = :id [AND status = :expected].

        Returns False when no row matched (missing, or the status changed
        concurrently).
        """
        stmt = update(Promise).where(Promise.id == promise_id)
        if expected_status is not None:
            stmt = stmt.where(Promise._status == expected_status)
        columns = {_promise_column(key): value for key, value in values.items()}
        stmt = stmt.values(columns).execution_options(synchronize_session=False)
        try:
            result = await self._session.execute(stmt)
        except IntegrityError as e:
            raise ConflictError(f"Store constraint violated: {e.orig}", hint=SCHEMA_HINT) from e
        return result.rowcount > 0

    async def transition_where(self, new_status: str, *criteria, now: datetime) -> list:
        """Batch status UPDATE, returns ids of the rows that actually changed"""
        stmt = (
            update(Promise)
            .where(*criteria)
            .values({Promise._status: new_status, Promise.updated_at: now})
            .returning(Promise.id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return [row[0] for row in result.all()]

    async def find(self, *criteria) -> list[Promise]:
        result = await self._session.execute(select(Promise).where(*criteria))
        return list(result.scalars().all())

    async def find_by_placeholder_email(self, email: str) -> list[Promise]:
        return await self.find(or_(Promise.promisee_email == email, Promise.mentor_email == email))

    async def delete_cascade(self, promise_id) -> None:
        """Delete the promise and everything hanging off it"""
        await self._session.execute(
            delete(Notification).where(Notification.related_promise_id == promise_id)
        )
        await self._session.execute(delete(PromiseNote).where(PromiseNote.promise_id == promise_id))
        await self._session.execute(delete(Milestone).where(Milestone.promise_id == promise_id))
        await self._session.execute(delete(Promise).where(Promise.id == promise_id))


class MilestoneRepository(_Repository):

    async def get(self, promise_id, milestone_id) -> Milestone | None:
        result = await self._session.execute(
            select(Milestone).where(
                Milestone.id == milestone_id,
                Milestone.promise_id == promise_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_promise(self, promise_id) -> list[Milestone]:
        result = await self._session.execute(
            select(Milestone)
            .where(Milestone.promise_id == promise_id)
            .order_by(Milestone.order_index.asc(), Milestone.created_at.asc())
        )
        return list(result.scalars().all())

    async def delete(self, milestone: Milestone) -> None:
        await self._session.delete(milestone)
        await self._session.flush()


class NoteRepository(_Repository):

    async def list_for_promise(self, promise_id) -> list[PromiseNote]:
        result = await self._session.execute(
            select(PromiseNote)
            .where(PromiseNote.promise_id == promise_id)
            .order_by(PromiseNote.created_at.desc())
        )
        return list(result.scalars().all())

    async def delete_by_author(self, note_id, user_id, promise_id=None) -> bool:
        stmt = delete(PromiseNote).where(PromiseNote.id == note_id, PromiseNote.user_id == user_id)
        if promise_id is not None:
            stmt = stmt.where(PromiseNote.promise_id == promise_id)
        result = await self._session.execute(stmt)
        return result.rowcount > 0


class NotificationRepository(_Repository):

    async def get_for_user(self, notification_id, user_id) -> Notification | None:
        result = await self._session.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id, unread_only: bool = False) -> list[Notification]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def exists_since(self, user_id, promise_id, type_: str, since: datetime | None) -> bool:
        stmt = select(Notification.id).where(
            Notification.user_id == user_id,
            Notification.related_promise_id == promise_id,
            Notification.type == type_,
        )
        if since is not None:
            stmt = stmt.where(Notification.created_at >= since)
        result = await self._session.execute(stmt.limit(1))
        return result.first() is not None

    async def add_unique(self, notification: Notification) -> bool:
        """
        Insert guarded by the unique dedup_key.
        Returns False when an identical notification already exists.
        """
        try:
            async with self._session.begin_nested():
                self._session.add(notification)
                await self._session.flush()
        except IntegrityError:
            return False
        return True

    async def mark_read(self, notification_id, user_id) -> bool:
        result = await self._session.execute(
            update(Notification)
            .where(Notification.id == notification_id, Notification.user_id == user_id)
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def mark_all_read(self, user_id) -> int:
        result = await self._session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete_for_user(self, notification_id, user_id) -> bool:
        result = await self._session.execute(
            delete(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        return result.rowcount > 0

    async def count_unread(self, user_id) -> int:
        result = await self._session.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.read.is_(False),
            )
        )
        return result.scalar_one()


def create_uow_provider(session_factory: async_sessionmaker[AsyncSession] = None) -> Callable[[], UnitOfWork]:
    """
    Factory for the UnitOfWork provider injected into every service.

    Usage:
        uow_factory = create_uow_provider()
        lifecycle = PromiseLifecycleService(uow_factory, ...)
    """
    if session_factory is None:
        from database import AsyncSessionLocal
        session_factory = AsyncSessionLocal

    def provider() -> UnitOfWork:
        return UnitOfWork(session_factory)

    return provider
