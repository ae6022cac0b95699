from slowapi import Limiter

from app.features.users.dependencies import get_authorization_header

# Keyed by bearer token so one noisy client cannot starve the others
limiter = Limiter(key_func=get_authorization_header)
