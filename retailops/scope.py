"""Error types and the data-scope rules that decide which records a caller may touch."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from uuid import UUID


class AppError(Exception):
    """Base class for errors reported to API callers."""

    status = 500


class ValidationError(AppError):
    """The request was malformed or broke a business rule."""

    status = 400


class ForbiddenError(AppError):
    """The caller is not allowed to see or change the record."""

    status = 403


class NotFoundError(AppError):
    """The requested record does not exist."""

    status = 404


class ConflictError(AppError):
    """The request clashes with a record that already exists."""

    status = 409


class DataScope(str, enum.Enum):
    """How far a caller's view of the data reaches."""

    ALL = "all"
    DEPARTMENT = "department"
    LOCATION = "location"
    INDIVIDUAL = "individual"

    @classmethod
    def _missing_(cls, value: object) -> DataScope | None:
        # Any scope name that is not recognised leaves the caller unrestricted.
        if isinstance(value, str):
            return cls.ALL
        return None


@dataclass(frozen=True)
class ScopeContext:
    """The caller's identity together with the data scope their role grants."""

    user_id: UUID
    data_scope: DataScope = DataScope.ALL
    department: str | None = None
    location: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "data_scope", DataScope(self.data_scope))

    def owner_in_scope(self, owner_id: UUID) -> bool:
        """True unless the scope is individual and the record belongs to someone else."""
        if self.data_scope is DataScope.INDIVIDUAL:
            return owner_id == self.user_id
        return True

    def department_in_scope(self, department: str | None) -> bool:
        """True unless the scope is a department and the record is outside it."""
        if self.data_scope is DataScope.DEPARTMENT and self.department is not None:
            return department == self.department
        return True

    def location_in_scope(self, location: str | None) -> bool:
        """True unless the scope is a location and the record is outside it."""
        if self.data_scope is DataScope.LOCATION and self.location is not None:
            return location == self.location
        return True

    def matches(self, owner_id: UUID, department: str | None, location: str | None) -> bool:
        """True when a record with these attributes lies within the caller's scope."""
        return (
            self.owner_in_scope(owner_id)
            and self.department_in_scope(department)
            and self.location_in_scope(location)
        )

    def enforce_scope(self, owner_id: UUID, department: str | None, location: str | None) -> None:
        """Raise ForbiddenError when the record lies outside the caller's scope."""
        if not self.matches(owner_id, department, location):
            raise ForbiddenError("Out of data scope")