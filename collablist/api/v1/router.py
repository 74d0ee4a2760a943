from fastapi import APIRouter

# The same routers are exposed at the root and under /api/v1
from ...routers import auth as auth_router
from ...routers import invites as invites_router
from ...routers import lists as lists_router
from ...routers import subscriptions as subscriptions_router
from ...routers import tasks as tasks_router


api_router = APIRouter(prefix="/api/v1")

api_router.include_router(auth_router.router)
api_router.include_router(lists_router.router)
api_router.include_router(tasks_router.router)
api_router.include_router(tasks_router.all_router)
api_router.include_router(invites_router.router)
api_router.include_router(subscriptions_router.router)


@api_router.get("/", tags=["auth"])  # lightweight meta endpoint
def api_info():
    return {
        "name": "CollabList API",
        "version": "v1",
        "docs": "/docs",
        "auth": {
            "signup": "/api/v1/auth/signup",
            "login": "/api/v1/auth/login",
            "me": "/api/v1/auth/me",
        },
        "lists": "/api/v1/lists",
        "tasks": "/api/v1/tasks/all",
        "realtime": "/ws?token=<jwt>",
    }
