from citycup.middlewares.db_middleware import DatabaseMiddleware
from citycup.middlewares.auth_middleware import AdminMiddleware, IsAdmin, IsSuperAdmin
from citycup.middlewares.rate_limit_middleware import RateLimitMiddleware

__all__ = ["DatabaseMiddleware", "AdminMiddleware", "IsAdmin", "IsSuperAdmin", "RateLimitMiddleware"]
