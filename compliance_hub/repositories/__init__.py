from compliance_hub.repositories.audit_logs import InMemoryAuditLogsRepository, PostgresAuditLogsRepository
from compliance_hub.repositories.evidence import InMemoryEvidenceRepository, PostgresEvidenceRepository
from compliance_hub.repositories.requests import InMemoryRequestsRepository, PostgresRequestsRepository
from compliance_hub.repositories.users import DuplicateEmailError, InMemoryUsersRepository, PostgresUsersRepository

__all__ = [
    "DuplicateEmailError",
    "InMemoryAuditLogsRepository",
    "PostgresAuditLogsRepository",
    "InMemoryEvidenceRepository",
    "PostgresEvidenceRepository",
    "InMemoryRequestsRepository",
    "PostgresRequestsRepository",
    "InMemoryUsersRepository",
    "PostgresUsersRepository",
]
