# Domain Layer
from .promise_domain_service import (
    PromiseDomainService,
    PromiseTransitioned,
    Role,
    RoleFilter,
    promise_domain_service
)
