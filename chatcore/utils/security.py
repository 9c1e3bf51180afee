from typing import Any, Dict

from jose import jwt

from chatcore.config import config


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode a bearer token issued by the identity service; raises JWTError when invalid."""
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
