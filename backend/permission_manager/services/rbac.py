"""
Kubernetes RBAC operations.

Create/list/delete for ClusterRole, ClusterRoleBinding, Role and RoleBinding,
plus namespace listing. Bindings created here carry the ownership label, which
also backs the owner queries (list owners, list groups, delete by owner).
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from typing import Any

import structlog
import urllib3
from kubernetes import client
from kubernetes.client import ApiClient
from kubernetes.client.rest import ApiException

from permission_manager.config import Settings
from permission_manager.exceptions import ResourceConflictError, ResourceNotFoundError, ResourceStoreError
from permission_manager.services.identity import validate_owner_label

logger = structlog.get_logger(__name__)

RBAC_API_GROUP = "rbac.authorization.k8s.io"
RBAC_API_VERSION = f"{RBAC_API_GROUP}/v1"


class RbacManager:
    """Thin async wrapper around RbacAuthorizationV1Api/CoreV1Api.

    Both APIs are injected so tests can pass in-memory doubles.
    """

    def __init__(
        self,
        rbac_api: client.RbacAuthorizationV1Api,
        core_api: client.CoreV1Api,
        settings: Settings,
    ) -> None:
        self.rbac_api = rbac_api
        self.core_api = core_api
        self.ownership_label = settings.ownership_label
        self.request_timeout = settings.kube_request_timeout_seconds
        self._serializer: ApiClient = getattr(rbac_api, "api_client", None) or ApiClient()

    # ---------------------------
    # plumbing
    # ---------------------------

    async def _call(
        self,
        fn: Callable[..., Any],
        *args: Any,
        kind: str,
        name: str | None = None,
        namespace: str | None = None,
        **kwargs: Any,
    ) -> Any:
        call = functools.partial(fn, *args, _request_timeout=self.request_timeout, **kwargs)
        try:
            return await asyncio.to_thread(call)
        except ApiException as exc:
            if exc.status == 404 and name is not None:
                raise ResourceNotFoundError(kind, name, namespace) from exc
            if exc.status == 409 and name is not None:
                raise ResourceConflictError(kind, name, namespace) from exc
            logger.warning("rbac.store_rejected", kind=kind, name=name, namespace=namespace, status=exc.status, reason=exc.reason)
            raise ResourceStoreError(
                f"resource store rejected {kind} operation",
                details={"status": exc.status, "reason": exc.reason},
            ) from exc
        except (urllib3.exceptions.HTTPError, OSError) as exc:
            logger.warning("rbac.store_unreachable", kind=kind, name=name, namespace=namespace, error=str(exc))
            raise ResourceStoreError(f"resource store unavailable: {exc.__class__.__name__}") from exc

    def _items(self, result: Any) -> list[dict[str, Any]]:
        return [self._serializer.sanitize_for_serialization(item) for item in (result.items or [])]

    def _binding_metadata(self, name: str, owner: str, namespace: str | None = None) -> dict[str, Any]:
        metadata: dict[str, Any] = {"name": name, "labels": {self.ownership_label: owner}}
        if namespace:
            metadata["namespace"] = namespace
        return metadata

    # ---------------------------
    # listing
    # ---------------------------

    async def list_namespaces(self) -> list[dict[str, Any]]:
        result = await self._call(self.core_api.list_namespace, kind="Namespace")
        return self._items(result)

    async def list_cluster_roles(self) -> list[dict[str, Any]]:
        return self._items(await self._call(self.rbac_api.list_cluster_role, kind="ClusterRole"))

    async def list_cluster_role_bindings(self, label_selector: str | None = None) -> list[dict[str, Any]]:
        kwargs = {"label_selector": label_selector} if label_selector else {}
        result = await self._call(self.rbac_api.list_cluster_role_binding, kind="ClusterRoleBinding", **kwargs)
        return self._items(result)

    async def list_roles(self, namespace: str = "") -> list[dict[str, Any]]:
        if namespace:
            result = await self._call(self.rbac_api.list_namespaced_role, namespace, kind="Role")
        else:
            result = await self._call(self.rbac_api.list_role_for_all_namespaces, kind="Role")
        return self._items(result)

    async def list_role_bindings(self, namespace: str = "", label_selector: str | None = None) -> list[dict[str, Any]]:
        kwargs = {"label_selector": label_selector} if label_selector else {}
        if namespace:
            result = await self._call(self.rbac_api.list_namespaced_role_binding, namespace, kind="RoleBinding", **kwargs)
        else:
            result = await self._call(self.rbac_api.list_role_binding_for_all_namespaces, kind="RoleBinding", **kwargs)
        return self._items(result)

    async def list_rbac(self) -> dict[str, list[dict[str, Any]]]:
        """Full snapshot of all four kinds across every namespace."""
        cluster_roles, cluster_role_bindings, roles, role_bindings = await asyncio.gather(
            self.list_cluster_roles(),
            self.list_cluster_role_bindings(),
            self.list_roles(),
            self.list_role_bindings(),
        )
        return {
            "cluster_roles": cluster_roles,
            "cluster_role_bindings": cluster_role_bindings,
            "roles": roles,
            "role_bindings": role_bindings,
        }

    # ---------------------------
    # create
    # ---------------------------

    async def create_cluster_role(self, name: str, rules: list[dict[str, Any]]) -> None:
        body = {
            "apiVersion": RBAC_API_VERSION,
            "kind": "ClusterRole",
            "metadata": {"name": name},
            "rules": rules,
        }
        await self._call(self.rbac_api.create_cluster_role, body, kind="ClusterRole", name=name)
        logger.info("rbac.create_cluster_role", name=name, rules=len(rules))

    async def create_role(self, namespace: str, name: str, rules: list[dict[str, Any]]) -> None:
        body = {
            "apiVersion": RBAC_API_VERSION,
            "kind": "Role",
            "metadata": {"name": name, "namespace": namespace},
            "rules": rules,
        }
        await self._call(self.rbac_api.create_namespaced_role, namespace, body, kind="Role", name=name, namespace=namespace)
        logger.info("rbac.create_role", name=name, namespace=namespace, rules=len(rules))

    async def create_role_binding(
        self,
        namespace: str,
        name: str,
        owner: str,
        subjects: list[dict[str, Any]],
        role_kind: str,
        role_name: str,
    ) -> None:
        validate_owner_label(owner)
        body = {
            "apiVersion": RBAC_API_VERSION,
            "kind": "RoleBinding",
            "metadata": self._binding_metadata(name, owner, namespace),
            "roleRef": {"apiGroup": RBAC_API_GROUP, "kind": role_kind, "name": role_name},
            "subjects": subjects,
        }
        await self._call(
            self.rbac_api.create_namespaced_role_binding,
            namespace,
            body,
            kind="RoleBinding",
            name=name,
            namespace=namespace,
        )
        logger.info("rbac.create_rolebinding", name=name, namespace=namespace, owner=owner, role_kind=role_kind, role=role_name)

    async def create_cluster_role_binding(
        self,
        name: str,
        owner: str,
        subjects: list[dict[str, Any]],
        role_name: str,
    ) -> None:
        validate_owner_label(owner)
        body = {
            "apiVersion": RBAC_API_VERSION,
            "kind": "ClusterRoleBinding",
            "metadata": self._binding_metadata(name, owner),
            "roleRef": {"apiGroup": RBAC_API_GROUP, "kind": "ClusterRole", "name": role_name},
            "subjects": subjects,
        }
        await self._call(self.rbac_api.create_cluster_role_binding, body, kind="ClusterRoleBinding", name=name)
        logger.info("rbac.create_cluster_rolebinding", name=name, owner=owner, role=role_name)

    # ---------------------------
    # delete
    # ---------------------------

    async def delete_cluster_role(self, name: str) -> None:
        await self._call(self.rbac_api.delete_cluster_role, name, kind="ClusterRole", name=name)
        logger.info("rbac.delete_cluster_role", name=name)

    async def delete_role(self, namespace: str, name: str) -> None:
        await self._call(self.rbac_api.delete_namespaced_role, name, namespace, kind="Role", name=name, namespace=namespace)
        logger.info("rbac.delete_role", name=name, namespace=namespace)

    async def delete_role_binding(self, namespace: str, name: str) -> None:
        await self._call(
            self.rbac_api.delete_namespaced_role_binding,
            name,
            namespace,
            kind="RoleBinding",
            name=name,
            namespace=namespace,
        )
        logger.info("rbac.delete_rolebinding", name=name, namespace=namespace)

    async def delete_cluster_role_binding(self, name: str) -> None:
        await self._call(self.rbac_api.delete_cluster_role_binding, name, kind="ClusterRoleBinding", name=name)
        logger.info("rbac.delete_cluster_rolebinding", name=name)

    # ---------------------------
    # ownership queries
    # ---------------------------

    async def _owned_bindings(self, owner: str | None = None) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        selector = f"{self.ownership_label}={owner}" if owner else self.ownership_label
        role_bindings, cluster_role_bindings = await asyncio.gather(
            self.list_role_bindings(label_selector=selector),
            self.list_cluster_role_bindings(label_selector=selector),
        )
        return role_bindings, cluster_role_bindings

    async def list_owners(self) -> dict[str, list[str]]:
        """Map each owner recorded in the ownership label to its binding names.

        RoleBindings are reported as ``namespace/name``.
        """
        role_bindings, cluster_role_bindings = await self._owned_bindings()
        owners: dict[str, list[str]] = {}
        for item in role_bindings + cluster_role_bindings:
            metadata = item.get("metadata") or {}
            owner = (metadata.get("labels") or {}).get(self.ownership_label)
            if not owner:
                continue
            ref = f"{metadata['namespace']}/{metadata['name']}" if metadata.get("namespace") else metadata["name"]
            owners.setdefault(owner, []).append(ref)
        return {owner: sorted(refs) for owner, refs in sorted(owners.items())}

    async def list_groups(self) -> list[str]:
        role_bindings, cluster_role_bindings = await asyncio.gather(
            self.list_role_bindings(),
            self.list_cluster_role_bindings(),
        )
        groups = {
            subject["name"]
            for item in role_bindings + cluster_role_bindings
            for subject in (item.get("subjects") or [])
            if subject.get("kind") == "Group" and subject.get("name")
        }
        return sorted(groups)

    async def delete_bindings_for_owner(self, owner: str) -> list[str]:
        """Delete every binding labelled with ``owner``; returns what was removed."""
        validate_owner_label(owner)
        role_bindings, cluster_role_bindings = await self._owned_bindings(owner)
        deleted: list[str] = []
        for item in role_bindings:
            metadata = item["metadata"]
            try:
                await self.delete_role_binding(metadata["namespace"], metadata["name"])
            except ResourceNotFoundError:
                continue
            deleted.append(f"{metadata['namespace']}/{metadata['name']}")
        for item in cluster_role_bindings:
            name = item["metadata"]["name"]
            try:
                await self.delete_cluster_role_binding(name)
            except ResourceNotFoundError:
                continue
            deleted.append(name)
        logger.info("rbac.delete_owner_bindings", owner=owner, deleted=len(deleted))
        return deleted
