from fastapi import APIRouter, Depends

from permission_manager.dependencies import get_rbac_manager
from permission_manager.schemas.rbac import (
    CreateClusterRoleBindingRequest,
    CreateClusterRoleRequest,
    CreateRoleBindingRequest,
    CreateRoleRequest,
    DeleteClusterRoleBindingRequest,
    DeleteClusterRoleRequest,
    DeleteRoleBindingRequest,
    DeleteRoleRequest,
    OperationResult,
    RbacSnapshot,
)
from permission_manager.services.rbac import RbacManager

router = APIRouter(tags=["rbac"])


@router.get("/rbac", response_model=RbacSnapshot, summary="Snapshot of all roles and bindings")
async def list_rbac(manager: RbacManager = Depends(get_rbac_manager)) -> RbacSnapshot:
    return RbacSnapshot(**await manager.list_rbac())


@router.post("/create-cluster-role", response_model=OperationResult, summary="Create a ClusterRole")
async def create_cluster_role(payload: CreateClusterRoleRequest, manager: RbacManager = Depends(get_rbac_manager)) -> OperationResult:
    await manager.create_cluster_role(payload.role_name, [rule.to_k8s() for rule in payload.rules])
    return OperationResult(ok=True)


@router.post("/create-role", response_model=OperationResult, summary="Create a namespaced Role")
async def create_role(payload: CreateRoleRequest, manager: RbacManager = Depends(get_rbac_manager)) -> OperationResult:
    await manager.create_role(payload.namespace, payload.role_name, [rule.to_k8s() for rule in payload.rules])
    return OperationResult(ok=True)


@router.post("/create-rolebinding", response_model=OperationResult, summary="Create a RoleBinding owned by a user")
async def create_rolebinding(payload: CreateRoleBindingRequest, manager: RbacManager = Depends(get_rbac_manager)) -> OperationResult:
    await manager.create_role_binding(
        namespace=payload.namespace,
        name=payload.rolebinding_name,
        owner=payload.user,
        subjects=[subject.to_k8s() for subject in payload.subjects],
        role_kind=payload.role_kind,
        role_name=payload.role_name,
    )
    return OperationResult(ok=True)


@router.post("/create-cluster-rolebinding", response_model=OperationResult, summary="Create a ClusterRoleBinding owned by a user")
async def create_cluster_rolebinding(
    payload: CreateClusterRoleBindingRequest, manager: RbacManager = Depends(get_rbac_manager)
) -> OperationResult:
    await manager.create_cluster_role_binding(
        name=payload.cluster_rolebinding_name,
        owner=payload.user,
        subjects=[subject.to_k8s() for subject in payload.subjects],
        role_name=payload.role_name,
    )
    return OperationResult(ok=True)


@router.post("/delete-cluster-role", response_model=OperationResult, summary="Delete a ClusterRole")
async def delete_cluster_role(payload: DeleteClusterRoleRequest, manager: RbacManager = Depends(get_rbac_manager)) -> OperationResult:
    await manager.delete_cluster_role(payload.role_name)
    return OperationResult(ok=True)


@router.post("/delete-role", response_model=OperationResult, summary="Delete a Role")
async def delete_role(payload: DeleteRoleRequest, manager: RbacManager = Depends(get_rbac_manager)) -> OperationResult:
    await manager.delete_role(payload.namespace, payload.role_name)
    return OperationResult(ok=True)


@router.post("/delete-rolebinding", response_model=OperationResult, summary="Delete a RoleBinding")
async def delete_rolebinding(payload: DeleteRoleBindingRequest, manager: RbacManager = Depends(get_rbac_manager)) -> OperationResult:
    await manager.delete_role_binding(payload.namespace, payload.rolebinding_name)
    return OperationResult(ok=True)


@router.post("/delete-cluster-rolebinding", response_model=OperationResult, summary="Delete a ClusterRoleBinding")
async def delete_cluster_rolebinding(
    payload: DeleteClusterRoleBindingRequest, manager: RbacManager = Depends(get_rbac_manager)
) -> OperationResult:
    await manager.delete_cluster_role_binding(payload.rolebinding_name)
    return OperationResult(ok=True)
