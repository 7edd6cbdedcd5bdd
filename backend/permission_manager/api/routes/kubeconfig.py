from fastapi import APIRouter, Depends

from permission_manager.dependencies import get_kubeconfig_service
from permission_manager.schemas.kubeconfig import CreateKubeconfigRequest, KubeconfigResponse
from permission_manager.services.kubeconfig import KubeconfigService

router = APIRouter(tags=["kubeconfig"])


@router.post("/create-kubeconfig", response_model=KubeconfigResponse, summary="Issue a client certificate and kubeconfig")
async def create_kubeconfig(
    payload: CreateKubeconfigRequest, service: KubeconfigService = Depends(get_kubeconfig_service)
) -> KubeconfigResponse:
    document = await service.create_kubeconfig(payload.username)
    return KubeconfigResponse(ok=True, kubeconfig=document)
