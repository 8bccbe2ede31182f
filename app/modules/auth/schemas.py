import enum
from typing import Optional
from pydantic import BaseModel, EmailStr
from uuid import UUID

class UserRole(str, enum.Enum):
    ADMIN = "admin"
    USER = "user"

class TokenData(BaseModel):
    id: Optional[str] = None
    role: Optional[str] = None
    email: Optional[str] = None

class Principal(BaseModel):
    """Caller identity as asserted by the identity provider. Passed explicitly into entitlement checks."""
    id: UUID
    role: UserRole = UserRole.USER
    email: Optional[EmailStr] = None
    username: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
