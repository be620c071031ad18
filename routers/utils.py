from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import ExpiredSignatureError, PyJWTError
from models.model_enums import Role
from utils.auth import Actor, decode_actor
from utils.errors import ForbiddenError

auth_scheme = HTTPBearer()
def get_actor(token: HTTPAuthorizationCredentials = Depends(auth_scheme)) -> Actor:
    try:
        return decode_actor(token.credentials)
    except ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        )
    except PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is invalid",
        )

def require_roles(*roles: Role):
    '''
    router.post("/x")(..., actor: Actor = Depends(require_roles(Role.ADMIN)))
    '''
    def dependency(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            raise ForbiddenError(f"This action requires one of the roles: {', '.join(role.value for role in roles)}")
        return actor
    return dependency
