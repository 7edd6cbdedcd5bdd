from fastapi import APIRouter

from permission_manager.api.routes import kubeconfig, namespaces, rbac, users

api_router = APIRouter(prefix="/api")
api_router.include_router(namespaces.router)
api_router.include_router(rbac.router)
api_router.include_router(users.router)
api_router.include_router(kubeconfig.router)
