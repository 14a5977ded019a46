"""Authentication / authorization helpers.

- Users table (email + password hash + role)
- JWT session tokens whose store-owned claims are refreshed on every request

The API supports both:

- `Authorization: Bearer <token>` (useful for scripts / API clients)
- A secure httpOnly cookie (set by `/api/auth/login` and `/api/auth/session`)
"""

from .deps import get_current_user, require_admin, require_subscription
from .crud import authenticate, bootstrap_admin_if_needed, create_user

__all__ = [
    "get_current_user",
    "require_admin",
    "require_subscription",
    "authenticate",
    "bootstrap_admin_if_needed",
    "create_user",
]
