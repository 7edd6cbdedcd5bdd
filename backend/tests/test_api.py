from __future__ import annotations

import base64

import yaml
from cryptography import x509
from cryptography.x509.oid import NameOID
from kubernetes.client.rest import ApiException

LABEL = "generated_for_user"


def _bob_binding() -> dict:
    return {
        "clusterRolebindingName": "bob-view",
        "user": "bob",
        "subjects": [{"kind": "User", "name": "bob"}],
        "roleName": "view",
    }


def test_root_and_health(api_client):
    assert api_client.get("/").json() == {"message": "Hello, World!"}
    assert api_client.get("/health").json() == {"status": "healthy"}


def test_request_id_is_echoed(api_client):
    response = api_client.get("/health", headers={"X-Request-ID": "abc-123"})

    assert response.headers["X-Request-ID"] == "abc-123"
    assert api_client.get("/health").headers["X-Request-ID"]


def test_list_namespace(api_client):
    response = api_client.get("/api/list-namespace")

    assert response.status_code == 200
    assert [ns["metadata"]["name"] for ns in response.json()["namespaces"]] == ["default", "kube-system"]


def test_create_cluster_rolebinding_for_bob(api_client, fake_kube):
    response = api_client.post("/api/create-cluster-rolebinding", json=_bob_binding())

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    stored = fake_kube.objects[("ClusterRoleBinding", "", "bob-view")]
    assert stored["metadata"]["labels"] == {LABEL: "bob"}
    assert stored["roleRef"] == {"apiGroup": "rbac.authorization.k8s.io", "kind": "ClusterRole", "name": "view"}
    assert stored["subjects"] == [{"kind": "User", "name": "bob", "apiGroup": "rbac.authorization.k8s.io"}]

    snapshot = api_client.get("/api/rbac").json()
    [binding] = [b for b in snapshot["clusterRoleBindings"] if b["metadata"]["name"] == "bob-view"]
    assert binding["roleRef"]["kind"] == "ClusterRole"
    assert binding["roleRef"]["name"] == "view"
    assert binding["metadata"]["labels"][LABEL] == "bob"
    assert [s["name"] for s in binding["subjects"] if s["kind"] == "User"] == ["bob"]


def test_create_rolebinding_then_snapshot(api_client):
    response = api_client.post(
        "/api/create-rolebinding",
        json={
            "rolebindingName": "alice-edit",
            "namespace": "dev",
            "user": "alice",
            "subjects": [{"kind": "User", "name": "alice"}],
            "roleKind": "ClusterRole",
            "roleName": "edit",
        },
    )
    assert response.status_code == 200

    snapshot = api_client.get("/api/rbac").json()

    assert set(snapshot) == {"clusterRoles", "clusterRoleBindings", "roles", "roleBindings"}
    [binding] = snapshot["roleBindings"]
    assert binding["metadata"]["name"] == "alice-edit"
    assert binding["metadata"]["labels"][LABEL] == "alice"


def test_create_roles(api_client, fake_kube):
    rules = [{"apiGroups": [""], "resources": ["pods"], "verbs": ["get"]}]

    assert api_client.post("/api/create-cluster-role", json={"roleName": "pod-reader", "rules": rules}).json() == {"ok": True}
    assert api_client.post("/api/create-role", json={"roleName": "pod-reader", "namespace": "dev", "rules": rules}).json() == {"ok": True}

    assert fake_kube.objects[("ClusterRole", "", "pod-reader")]["rules"] == rules
    assert fake_kube.objects[("Role", "dev", "pod-reader")]["rules"] == rules


def test_duplicate_create_returns_conflict(api_client):
    api_client.post("/api/create-cluster-rolebinding", json=_bob_binding())
    response = api_client.post("/api/create-cluster-rolebinding", json=_bob_binding())

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CONFLICT"


def test_delete_existing_then_missing(api_client, fake_kube):
    api_client.post("/api/create-cluster-rolebinding", json=_bob_binding())

    first = api_client.post("/api/delete-cluster-rolebinding", json={"rolebindingName": "bob-view"})
    second = api_client.post("/api/delete-cluster-rolebinding", json={"rolebindingName": "bob-view"})

    assert first.status_code == 200
    assert first.json() == {"ok": True}
    assert second.status_code == 404
    body = second.json()
    assert body["success"] is False
    assert body["error"]["code"] == "NOT_FOUND"
    assert body["error"]["details"]["kind"] == "ClusterRoleBinding"
    assert fake_kube.objects == {}


def test_delete_missing_namespaced_resources(api_client):
    assert api_client.post("/api/delete-role", json={"roleName": "nope", "namespace": "dev"}).status_code == 404
    assert api_client.post("/api/delete-rolebinding", json={"rolebindingName": "nope", "namespace": "dev"}).status_code == 404
    assert api_client.post("/api/delete-cluster-role", json={"roleName": "nope"}).status_code == 404


def test_malformed_body_is_rejected_without_side_effects(api_client, fake_kube):
    response = api_client.post("/api/create-rolebinding", json={"rolebindingName": "x", "roleKind": "Secret"})

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
    assert fake_kube.timeouts == []
    assert fake_kube.objects == {}


def test_invalid_owner_is_rejected(api_client, fake_kube):
    payload = _bob_binding() | {"user": "bob/../admin"}

    response = api_client.post("/api/create-cluster-rolebinding", json=payload)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_IDENTITY"
    assert fake_kube.objects == {}


def test_store_failure_is_bad_gateway(api_client, fake_kube):
    fake_kube.fail_with = ApiException(status=500, reason="etcd unavailable")

    response = api_client.get("/api/rbac")

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "RESOURCE_STORE_ERROR"


def test_create_kubeconfig_for_alice(api_client, ca_material):
    response = api_client.post("/api/create-kubeconfig", json={"username": "alice"})

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    doc = yaml.safe_load(body["kubeconfig"])
    context = next(c for c in doc["contexts"] if c["name"] == doc["current-context"])
    assert context["context"]["user"] == "alice"

    cert = x509.load_pem_x509_certificate(base64.b64decode(doc["users"][0]["user"]["client-certificate-data"]))
    assert cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == "alice"
    cert.verify_directly_issued_by(ca_material.cert)


def test_create_kubeconfig_rejects_invalid_username(api_client, scratch_dir):
    response = api_client.post("/api/create-kubeconfig", json={"username": "alice/CN=admin"})

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_IDENTITY"
    assert list(scratch_dir.iterdir()) == []


def test_create_kubeconfig_requires_username(api_client):
    assert api_client.post("/api/create-kubeconfig", json={}).status_code == 422


def test_user_queries(api_client, fake_kube):
    api_client.post("/api/create-cluster-rolebinding", json=_bob_binding())
    api_client.post(
        "/api/create-rolebinding",
        json={
            "rolebindingName": "devs-edit",
            "namespace": "dev",
            "user": "alice",
            "subjects": [{"kind": "Group", "name": "developers"}],
            "roleKind": "ClusterRole",
            "roleName": "edit",
        },
    )

    assert api_client.get("/api/list-users").json() == [
        {"name": "alice", "bindings": ["dev/devs-edit"]},
        {"name": "bob", "bindings": ["bob-view"]},
    ]
    assert api_client.get("/api/list-groups").json() == [{"name": "developers"}]

    response = api_client.post("/api/delete-user-bindings", json={"username": "bob"})

    assert response.json() == {"ok": True, "deleted": ["bob-view"]}
    assert fake_kube.names("ClusterRoleBinding") == []
    assert fake_kube.names("RoleBinding") == ["devs-edit"]
