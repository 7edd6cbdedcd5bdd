from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class PolicyRule(_CamelModel):
    """One RBAC rule; passed through to the API server unmodified."""

    api_groups: list[str] | None = Field(default=None, alias="apiGroups")
    resources: list[str] | None = None
    verbs: list[str] = Field(default_factory=list)
    resource_names: list[str] | None = Field(default=None, alias="resourceNames")
    non_resource_urls: list[str] | None = Field(default=None, alias="nonResourceURLs")

    def to_k8s(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Subject(_CamelModel):
    kind: Literal["User", "Group", "ServiceAccount"]
    name: str = Field(min_length=1)
    namespace: str | None = None
    api_group: str | None = Field(default=None, alias="apiGroup")

    def to_k8s(self) -> dict[str, Any]:
        data = self.model_dump(by_alias=True, exclude_none=True)
        if self.api_group is None and self.kind in ("User", "Group"):
            data["apiGroup"] = "rbac.authorization.k8s.io"
        return data


class CreateClusterRoleRequest(_CamelModel):
    role_name: str = Field(alias="roleName", min_length=1)
    rules: list[PolicyRule] = Field(default_factory=list)


class CreateRoleRequest(_CamelModel):
    role_name: str = Field(alias="roleName", min_length=1)
    namespace: str = Field(min_length=1)
    rules: list[PolicyRule] = Field(default_factory=list)


class CreateRoleBindingRequest(_CamelModel):
    rolebinding_name: str = Field(alias="rolebindingName", min_length=1)
    namespace: str = Field(min_length=1)
    user: str = Field(min_length=1)
    subjects: list[Subject] = Field(default_factory=list)
    role_kind: Literal["Role", "ClusterRole"] = Field(alias="roleKind")
    role_name: str = Field(alias="roleName", min_length=1)


class CreateClusterRoleBindingRequest(_CamelModel):
    cluster_rolebinding_name: str = Field(alias="clusterRolebindingName", min_length=1)
    user: str = Field(min_length=1)
    subjects: list[Subject] = Field(default_factory=list)
    role_name: str = Field(alias="roleName", min_length=1)


class DeleteClusterRoleRequest(_CamelModel):
    role_name: str = Field(alias="roleName", min_length=1)


class DeleteRoleRequest(_CamelModel):
    role_name: str = Field(alias="roleName", min_length=1)
    namespace: str = Field(min_length=1)


class DeleteRoleBindingRequest(_CamelModel):
    rolebinding_name: str = Field(alias="rolebindingName", min_length=1)
    namespace: str = Field(min_length=1)


class DeleteClusterRoleBindingRequest(_CamelModel):
    rolebinding_name: str = Field(alias="rolebindingName", min_length=1)


class OperationResult(BaseModel):
    ok: bool


class RbacSnapshot(_CamelModel):
    cluster_roles: list[dict[str, Any]] = Field(alias="clusterRoles")
    cluster_role_bindings: list[dict[str, Any]] = Field(alias="clusterRoleBindings")
    roles: list[dict[str, Any]]
    role_bindings: list[dict[str, Any]] = Field(alias="roleBindings")


class NamespaceList(BaseModel):
    namespaces: list[dict[str, Any]]


class OwnerEntry(BaseModel):
    name: str
    bindings: list[str]


class GroupEntry(BaseModel):
    name: str


class DeleteOwnerBindingsRequest(BaseModel):
    username: str = Field(min_length=1)


class DeleteOwnerBindingsResult(BaseModel):
    ok: bool
    deleted: list[str]
