import logging
import time
import jwt
from pydantic import BaseModel
from config import JWT_ALGORITHM, JWT_SECRET
from models.model_enums import Role

class Actor(BaseModel):
    '''
    Acting staff member, passed explicitly into every service call.
    Role is trusted as given; role checks happen in the routers.
    '''
    id: int
    role: Role

    @property
    def is_admin(self):
        return self.role == Role.ADMIN

def decode_actor(token: str) -> Actor:
    '''
    Tokens carry `sub` (staff account id) and `role`.
    Raises jwt.PyJWTError subclasses on invalid or expired tokens.
    '''
    payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    try:
        return Actor(id=int(payload['sub']), role=Role(payload['role']))
    except (KeyError, ValueError) as e:
        logging.error(f"Invalid token claims: {e}")
        raise jwt.InvalidTokenError("Token is missing staff claims") from e

def encode_actor(actor: Actor, expires_in: int | None = None) -> str:
    '''
    Used by the identity service and the test suite
    '''
    payload: dict = {"sub": str(actor.id), "role": actor.role.value}
    if expires_in:
        payload["exp"] = int(time.time()) + expires_in
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)
