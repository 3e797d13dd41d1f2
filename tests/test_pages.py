# ========== HELPERS ==========

def create_workspace(client, headers, name="WS"):
    response = client.post("/workspaces", headers=headers, json={"name": name})
    assert response.status_code == 201
    return response.json()["id"]

def create_page(client, headers, workspace_id, title, parent_id=None):
    response = client.post(
        f"/workspaces/{workspace_id}/pages",
        headers=headers,
        json={"title": title, "parent_id": parent_id}
    )
    assert response.status_code == 201, response.text
    return response.json()

def tree(client, headers, workspace_id, trash=False):
    response = client.get(f"/workspaces/{workspace_id}/pages", headers=headers, params={"trash": trash})
    assert response.status_code == 200
    return response.json()

def titles(nodes):
    return [node["title"] for node in nodes]

# ========== CREATE / READ ==========

def test_create_page_success(client, auth_headers):
    """Tester la création réussie d'une page"""
    ws = create_workspace(client, auth_headers)
    page = create_page(client, auth_headers, ws, "Ma Page")
    assert page["title"] == "Ma Page"
    assert page["workspace_id"] == ws
    assert page["parent_id"] is None
    assert page["is_deleted"] is False
    assert page["order"] == "V"

def test_create_page_default_title(client, auth_headers):
    ws = create_workspace(client, auth_headers)
    response = client.post(f"/workspaces/{ws}/pages", headers=auth_headers, json={})
    assert response.status_code == 201
    assert response.json()["title"] == "Untitled"

def test_create_page_missing_token(client, auth_headers):
    ws = create_workspace(client, auth_headers)
    response = client.post(f"/workspaces/{ws}/pages", json={"title": "Ma Page"})
    assert response.status_code == 401

def test_create_page_invalid_token(client, auth_headers):
    ws = create_workspace(client, auth_headers)
    response = client.post(
        f"/workspaces/{ws}/pages",
        headers={"Authorization": "Bearer invalid_token"},
        json={"title": "Ma Page"}
    )
    assert response.status_code == 401

def test_non_member_is_forbidden(client, auth_headers, make_user, headers_for):
    """Un utilisateur hors du workspace ne voit rien"""
    ws = create_workspace(client, auth_headers)
    page = create_page(client, auth_headers, ws, "Privée")
    stranger = headers_for(make_user("stranger"))

    assert client.get(f"/pages/{page['id']}", headers=stranger).status_code == 403
    response = client.get(f"/workspaces/{ws}/pages", headers=stranger)
    assert response.status_code == 403
    assert response.json()["error"] == "FORBIDDEN"

def test_get_page_not_found(client, auth_headers):
    response = client.get("/pages/999", headers=auth_headers)
    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "NOT_FOUND"
    assert body["field"] == "page_id"

def test_get_page_with_blocks(client, auth_headers):
    ws = create_workspace(client, auth_headers)
    page = create_page(client, auth_headers, ws, "Notes")
    client.post(f"/pages/{page['id']}/blocks", headers=auth_headers,
                json={"type": "paragraph", "content": {"text": "un"}})
    toggle = client.post(f"/pages/{page['id']}/blocks", headers=auth_headers,
                         json={"type": "toggle", "content": {"text": "deux"}}).json()
    client.post(f"/pages/{page['id']}/blocks", headers=auth_headers,
                json={"type": "to_do", "content": {"text": "dedans"}, "parent_block_id": toggle["id"]})

    response = client.get(f"/pages/{page['id']}", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["page"]["title"] == "Notes"
    assert [b["content"]["text"] for b in data["blocks"]] == ["un", "deux"]
    assert data["blocks"][1]["children"][0]["content"] == {"text": "dedans", "checked": False}

def test_update_page(client, auth_headers):
    ws = create_workspace(client, auth_headers)
    page = create_page(client, auth_headers, ws, "Avant")
    response = client.put(f"/pages/{page['id']}", headers=auth_headers, json={"title": "Après", "icon": "📝"})
    assert response.status_code == 200
    assert response.json()["title"] == "Après"
    assert response.json()["icon"] == "📝"
    assert response.json()["order"] == page["order"]

# ========== ORDRE / DÉPLACEMENT ==========

def test_siblings_reorder_end_to_end(client, auth_headers):
    """A contient [B, C]; déplacer C avant B donne [C, B]"""
    ws = create_workspace(client, auth_headers)
    a = create_page(client, auth_headers, ws, "A")
    b = create_page(client, auth_headers, ws, "B", parent_id=a["id"])
    c = create_page(client, auth_headers, ws, "C", parent_id=a["id"])
    assert titles(tree(client, auth_headers, ws)[0]["children"]) == ["B", "C"]

    response = client.post(f"/pages/{c['id']}/move", headers=auth_headers,
                           json={"parent_id": a["id"], "order": "F"})
    assert response.status_code == 200
    assert titles(tree(client, auth_headers, ws)[0]["children"]) == ["C", "B"]

    # puis remettre C juste après B
    response = client.post(f"/pages/{c['id']}/move", headers=auth_headers, json={"after_id": b["id"]})
    assert response.status_code == 200
    assert titles(tree(client, auth_headers, ws)[0]["children"]) == ["B", "C"]

def test_move_without_parent_keeps_parent(client, auth_headers):
    ws = create_workspace(client, auth_headers)
    a = create_page(client, auth_headers, ws, "A")
    b = create_page(client, auth_headers, ws, "B", parent_id=a["id"])
    response = client.post(f"/pages/{b['id']}/move", headers=auth_headers, json={"order": "a"})
    assert response.json()["parent_id"] == a["id"]
    assert response.json()["order"] == "a"

def test_move_to_root_with_null_parent(client, auth_headers):
    ws = create_workspace(client, auth_headers)
    a = create_page(client, auth_headers, ws, "A")
    b = create_page(client, auth_headers, ws, "B", parent_id=a["id"])
    response = client.post(f"/pages/{b['id']}/move", headers=auth_headers, json={"parent_id": None})
    assert response.status_code == 200
    assert response.json()["parent_id"] is None
    assert titles(tree(client, auth_headers, ws)) == ["A", "B"]

def test_move_into_descendant_is_cycle(client, auth_headers):
    ws = create_workspace(client, auth_headers)
    a = create_page(client, auth_headers, ws, "A")
    b = create_page(client, auth_headers, ws, "B", parent_id=a["id"])
    c = create_page(client, auth_headers, ws, "C", parent_id=b["id"])

    response = client.post(f"/pages/{a['id']}/move", headers=auth_headers, json={"parent_id": c["id"]})
    assert response.status_code == 409
    assert response.json()["error"] == "CYCLE_DETECTED"

    response = client.post(f"/pages/{a['id']}/move", headers=auth_headers, json={"parent_id": a["id"]})
    assert response.status_code == 409

def test_move_with_invalid_order_key(client, auth_headers):
    ws = create_workspace(client, auth_headers)
    a = create_page(client, auth_headers, ws, "A")
    response = client.post(f"/pages/{a['id']}/move", headers=auth_headers, json={"order": "A0"})
    assert response.status_code == 422

def test_parent_in_other_workspace_rejected(client, auth_headers):
    ws1 = create_workspace(client, auth_headers, "Un")
    ws2 = create_workspace(client, auth_headers, "Deux")
    foreign = create_page(client, auth_headers, ws2, "Ailleurs")
    response = client.post(f"/workspaces/{ws1}/pages", headers=auth_headers,
                           json={"title": "X", "parent_id": foreign["id"]})
    assert response.status_code == 400
    assert response.json()["error"] == "CROSS_TENANT_VIOLATION"

def test_move_to_other_workspace_carries_subtree(client, auth_headers):
    ws1 = create_workspace(client, auth_headers, "Un")
    ws2 = create_workspace(client, auth_headers, "Deux")
    a = create_page(client, auth_headers, ws1, "A")
    b = create_page(client, auth_headers, ws1, "B", parent_id=a["id"])
    create_page(client, auth_headers, ws1, "C", parent_id=b["id"])

    response = client.post(f"/pages/{b['id']}/move", headers=auth_headers, json={"workspace_id": ws2})
    assert response.status_code == 200
    assert response.json()["workspace_id"] == ws2
    assert response.json()["parent_id"] is None

    moved = tree(client, auth_headers, ws2)
    assert titles(moved) == ["B"]
    assert titles(moved[0]["children"]) == ["C"]
    assert tree(client, auth_headers, ws1)[0]["children"] == []

# ========== CORBEILLE ==========

def test_delete_and_restore(client, auth_headers):
    ws = create_workspace(client, auth_headers)
    a = create_page(client, auth_headers, ws, "A")
    create_page(client, auth_headers, ws, "B", parent_id=a["id"])

    assert client.delete(f"/pages/{a['id']}", headers=auth_headers).status_code == 204
    assert tree(client, auth_headers, ws) == []
    assert client.get(f"/pages/{a['id']}", headers=auth_headers).status_code == 404

    trash = client.get(f"/workspaces/{ws}/trash", headers=auth_headers).json()
    assert sorted(titles(trash)) == ["A", "B"]
    assert all(item["deleted_at"] is not None for item in trash)

    # avec trash=true l'arbre garde les pages supprimées
    assert titles(tree(client, auth_headers, ws, trash=True)) == ["A"]

    response = client.post(f"/pages/{a['id']}/restore", headers=auth_headers)
    assert response.status_code == 200
    restored = tree(client, auth_headers, ws)
    assert titles(restored) == ["A"]
    assert titles(restored[0]["children"]) == ["B"]

def test_restore_live_page_is_invalid(client, auth_headers):
    ws = create_workspace(client, auth_headers)
    a = create_page(client, auth_headers, ws, "A")
    response = client.post(f"/pages/{a['id']}/restore", headers=auth_headers)
    assert response.status_code == 409
    assert response.json()["error"] == "INVALID_STATE"

def test_create_under_deleted_parent_is_invalid(client, auth_headers):
    ws = create_workspace(client, auth_headers)
    a = create_page(client, auth_headers, ws, "A")
    client.delete(f"/pages/{a['id']}", headers=auth_headers)
    response = client.post(f"/workspaces/{ws}/pages", headers=auth_headers, json={"title": "X", "parent_id": a["id"]})
    assert response.status_code == 409

def test_permanent_delete(client, auth_headers):
    ws = create_workspace(client, auth_headers)
    a = create_page(client, auth_headers, ws, "A")
    create_page(client, auth_headers, ws, "B", parent_id=a["id"])

    # seulement depuis la corbeille
    response = client.delete(f"/pages/{a['id']}/permanent", headers=auth_headers)
    assert response.status_code == 409

    client.delete(f"/pages/{a['id']}", headers=auth_headers)
    assert client.delete(f"/pages/{a['id']}/permanent", headers=auth_headers).status_code == 204
    assert client.get(f"/workspaces/{ws}/trash", headers=auth_headers).json() == []
    assert client.post(f"/pages/{a['id']}/restore", headers=auth_headers).status_code == 404

# ========== DUPLICATION ==========

def test_duplicate_page(client, auth_headers):
    ws = create_workspace(client, auth_headers)
    a = create_page(client, auth_headers, ws, "A")
    b = create_page(client, auth_headers, ws, "B", parent_id=a["id"])
    create_page(client, auth_headers, ws, "Z")
    client.post(f"/pages/{b['id']}/blocks", headers=auth_headers, json={"type": "paragraph", "content": {"text": "x"}})

    response = client.post(f"/pages/{a['id']}/duplicate", headers=auth_headers)
    assert response.status_code == 201
    copy = response.json()
    assert copy["title"] == "A (Copy)"
    assert copy["id"] != a["id"]

    roots = tree(client, auth_headers, ws)
    # la copie se place juste après l'original
    assert titles(roots) == ["A", "A (Copy)", "Z"]
    assert titles(roots[1]["children"]) == ["B"]

    copied_child = roots[1]["children"][0]
    blocks = client.get(f"/pages/{copied_child['id']}", headers=auth_headers).json()["blocks"]
    assert [block["content"]["text"] for block in blocks] == ["x"]
