from slowapi import Limiter
from slowapi.util import get_remote_address

# Shared by the app (state + exception handler) and the routers that decorate endpoints.
limiter = Limiter(key_func=get_remote_address)
