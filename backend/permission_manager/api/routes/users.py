from fastapi import APIRouter, Depends

from permission_manager.dependencies import get_rbac_manager
from permission_manager.schemas.rbac import DeleteOwnerBindingsRequest, DeleteOwnerBindingsResult, GroupEntry, OwnerEntry
from permission_manager.services.rbac import RbacManager

router = APIRouter(tags=["users"])


@router.get("/list-users", response_model=list[OwnerEntry], summary="Users that own bindings created by this service")
async def list_users(manager: RbacManager = Depends(get_rbac_manager)) -> list[OwnerEntry]:
    owners = await manager.list_owners()
    return [OwnerEntry(name=name, bindings=bindings) for name, bindings in owners.items()]


@router.get("/list-groups", response_model=list[GroupEntry], summary="Groups referenced by any binding")
async def list_groups(manager: RbacManager = Depends(get_rbac_manager)) -> list[GroupEntry]:
    return [GroupEntry(name=name) for name in await manager.list_groups()]


@router.post("/delete-user-bindings", response_model=DeleteOwnerBindingsResult, summary="Delete every binding owned by a user")
async def delete_user_bindings(
    payload: DeleteOwnerBindingsRequest, manager: RbacManager = Depends(get_rbac_manager)
) -> DeleteOwnerBindingsResult:
    deleted = await manager.delete_bindings_for_owner(payload.username)
    return DeleteOwnerBindingsResult(ok=True, deleted=deleted)
