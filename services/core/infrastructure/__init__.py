# Infrastructure Layer
from .uow import (
    UnitOfWork,
    UserRepository,
    PromiseRepository,
    MilestoneRepository,
    NoteRepository,
    NotificationRepository,
    create_uow_provider
)
