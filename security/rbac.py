from functools import wraps
from flask import g

from services.errors import AuthenticationError, AuthorizationError

def require_roles(*role_names: str):
    """
    Usage: @require_roles("ADMIN")
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                raise AuthenticationError("Authentication required")

            user_roles = {r.name for r in user.roles}
            if not user_roles.intersection(set(role_names)):
                raise AuthorizationError("Access denied. Insufficient privileges.")

            return fn(*args, **kwargs)
        return wrapper
    return decorator
