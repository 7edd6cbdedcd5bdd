from fastapi import APIRouter, Depends

from permission_manager.dependencies import get_rbac_manager
from permission_manager.schemas.rbac import NamespaceList
from permission_manager.services.rbac import RbacManager

router = APIRouter(tags=["namespaces"])


@router.get("/list-namespace", response_model=NamespaceList, summary="List namespaces")
async def list_namespaces(manager: RbacManager = Depends(get_rbac_manager)) -> NamespaceList:
    return NamespaceList(namespaces=await manager.list_namespaces())
