from __future__ import annotations

from pydantic import BaseModel, Field


class CreateKubeconfigRequest(BaseModel):
    username: str = Field(min_length=1)


class KubeconfigResponse(BaseModel):
    ok: bool
    kubeconfig: str
