from fastapi import Depends, HTTPException, status, Query
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import ValidationError

from app.core.config import settings
from app.modules.auth.schemas import Principal, TokenData, UserRole

# auto_error=False so we can manually check for token (query or header)
# and so optional-auth endpoints can fall through to anonymous.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/login", auto_error=False)

def decode_principal(token: str) -> Principal | None:
    """Turn an identity-provider JWT into a Principal. None when the token is unusable."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

    token_data = TokenData(id=payload.get("sub"), role=payload.get("role"), email=payload.get("email"))
    if token_data.id is None:
        return None

    # Anything other than an explicit admin claim is a regular user
    role = UserRole.ADMIN if token_data.role == UserRole.ADMIN.value else UserRole.USER
    try:
        return Principal(
            id=token_data.id,
            role=role,
            email=token_data.email,
            username=payload.get("username"),
        )
    except ValidationError:
        return None

async def get_current_principal(
    token_query: str | None = Query(None, alias="token"),
    token_header: str | None = Depends(oauth2_scheme),
) -> Principal:
    token = token_query or token_header

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not token:
        raise credentials_exception

    principal = decode_principal(token)
    if principal is None:
        raise credentials_exception
    return principal

async def get_current_principal_optional(
    token: str | None = Depends(oauth2_scheme),
) -> Principal | None:
    if not token:
        return None
    return decode_principal(token)

async def require_admin(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Admin only")
    return principal
