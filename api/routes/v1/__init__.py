"""v1 API routes.

Organization scoping comes from the caller's profile, so paths carry no
tenant segment:

/api/v1/social/...      connect flow and connected accounts
/api/v1/publishing/...  schedules, jobs and the scheduler trigger
"""

from api.routes.v1.social_auth import router as social_router
from api.routes.v1.publishing import router as publishing_router

__all__ = [
    "social_router",
    "publishing_router",
]
