"""
User lookup collaborator

The core never mutates users apart from registration; lookups run inside the
caller's unit of work so that an operation stays one transaction.
"""
from typing import Callable, Optional

from domain.promise_domain_service import promise_domain_service
from exceptions import ConflictError, ValidationError
from infrastructure.uow import UnitOfWork
from logging_config import get_logger
from models import User

logger = get_logger(__name__)


class UserService:

    def __init__(self, uow_factory: Callable[[], UnitOfWork]):
        self.uow_factory = uow_factory

    async def find_by_id(self, uow: UnitOfWork, user_id) -> Optional[User]:
        try:
            user_id = promise_domain_service.parse_uuid(user_id, "user_id")
        except ValidationError:
            return None
        return await uow.users.get(user_id)

    async def find_by_email(self, uow: UnitOfWork, email: str) -> Optional[User]:
        if not email:
            return None
        return await uow.users.get_by_email(email.strip().lower())

    async def register(self, email: str, name: str) -> User:
        """
        Create a user. Emails are stored trimmed and lower-cased.

        Raises:
            ValidationError: malformed email or empty name
            ConflictError: email already registered
        """
        email = promise_domain_service.normalize_email(email, "email")
        if email is None:
            raise ValidationError("Email is required", field="email")
        name = promise_domain_service.require_text(name, "name", "Name")

        async with self.uow_factory() as uow:
            if await uow.users.get_by_email(email) is not None:
                raise ConflictError(f"User with email {email} already exists")
            user = await uow.users.add(User(email=email, name=name))

        logger.info("user_registered", user_id=str(user.id))
        return user
