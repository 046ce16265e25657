API = "/api/data"


def _create_profile(client, headers, **payload):
    payload.setdefault("slug", "ops-lead")
    payload.setdefault("name", "Ops lead")
    r = client.post(f"{API}/customer_profiles", json=payload, headers=headers)
    assert r.status_code == 201, r.json
    return r.json["data"]


def test_list_tables(client, admin_headers):
    r = client.get(f"{API}/tables", headers=admin_headers)
    assert r.status_code == 200
    tables = {t["name"]: t for t in r.json["data"]}
    assert set(tables) == {"business_model_canvases", "customer_profiles", "value_maps", "value_proposition_canvases"}
    columns = {c["name"]: c for c in tables["value_proposition_canvases"]["columns"]}
    assert columns["value_map_id"]["required"] is True
    assert columns["description"]["required"] is False
    assert "metadata" in columns


def test_unknown_table(client, admin_headers):
    r = client.post(f"{API}/users/query", json={}, headers=admin_headers)
    assert r.status_code == 404
    assert r.json["error"] == "Table not found: users"


def test_create_and_fetch(client, admin_headers):
    row = _create_profile(client, admin_headers, profile_type="persona", tags=["b2b"], metadata={"source": "crm"})
    assert row["slug"] == "ops-lead"
    assert row["metadata"] == {"source": "crm"}
    assert row["jobs"] == {"items": []}

    r = client.get(f"{API}/customer_profiles/{row['id']}", headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"]["name"] == "Ops lead"

    r = client.get(f"{API}/customer_profiles/by-slug/ops-lead", headers=admin_headers)
    assert r.json["data"]["id"] == row["id"]

    r = client.get(f"{API}/customer_profiles/missing", headers=admin_headers)
    assert r.status_code == 404


def test_create_validation_messages(client, admin_headers):
    r = client.post(
        f"{API}/customer_profiles",
        json={"slug": "Bad Slug", "name": "x", "profile_type": "alien"},
        headers=admin_headers,
    )
    assert r.status_code == 400
    assert r.json["code"] == "validation_error"
    assert r.json["error"].startswith("Validation failed: ")
    fields = {d.split(":")[0] for d in r.json["details"]}
    assert fields == {"slug", "profile_type"}

    r = client.post(f"{API}/customer_profiles", json={"slug": "x", "name": "x", "owner": "me"}, headers=admin_headers)
    assert r.status_code == 400
    assert any(d.startswith("owner:") for d in r.json["details"])

    r = client.post(f"{API}/customer_profiles", json={"slug": "x", "name": "<b>x</b>"}, headers=admin_headers)
    assert r.status_code == 400


def test_create_checks_slug_and_references(client, admin_headers):
    _create_profile(client, admin_headers)
    r = client.post(f"{API}/customer_profiles", json={"slug": "ops-lead", "name": "Again"}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json["error"] == "Slug already exists: ops-lead"

    r = client.post(
        f"{API}/value_proposition_canvases",
        json={"slug": "vpc", "name": "VPC", "value_map_id": "nope", "customer_profile_id": "nope"},
        headers=admin_headers,
    )
    assert r.status_code == 400
    assert "row not found" in r.json["error"]


def test_query_filters_order_and_limit(client, admin_headers):
    for i, status in enumerate(["draft", "active", "active"]):
        _create_profile(client, admin_headers, slug=f"p{i}", name=f"Profile {i}", status=status)

    r = client.post(
        f"{API}/customer_profiles/query",
        json={"select": "id,slug,status", "filter": {"status": "active"}, "order_by": {"column": "slug", "ascending": False}},
        headers=admin_headers,
    )
    assert r.status_code == 200
    data = r.json["data"]
    assert data["count"] == 2
    assert [row["slug"] for row in data["rows"]] == ["p2", "p1"]
    assert set(data["rows"][0]) == {"id", "slug", "status"}

    r = client.post(
        f"{API}/customer_profiles/query",
        json={"filter_in": {"slug": ["p0", "p2"]}, "limit": 1, "offset": 1, "order_by": {"column": "slug"}},
        headers=admin_headers,
    )
    data = r.json["data"]
    assert data["count"] == 2
    assert [row["slug"] for row in data["rows"]] == ["p2"]

    r = client.post(f"{API}/customer_profiles/query", json={"filter_like": {"name": "%file 1"}}, headers=admin_headers)
    assert [row["slug"] for row in r.json["data"]["rows"]] == ["p1"]


def test_query_rejects_bad_input(client, admin_headers):
    r = client.post(f"{API}/customer_profiles/query", json={"filter": {"password_hash": "x"}}, headers=admin_headers)
    assert r.status_code == 400
    assert "Unknown column" in r.json["error"]

    r = client.post(f"{API}/customer_profiles/query", json={"limit": 0}, headers=admin_headers)
    assert r.status_code == 400

    r = client.post(f"{API}/customer_profiles/query", json={"where": "1=1"}, headers=admin_headers)
    assert r.status_code == 400


def test_query_limit_is_capped(app, client, admin_headers):
    app.config["DATA_API_MAX_LIMIT"] = 2
    r = client.post(f"{API}/customer_profiles/query", json={"limit": 500}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"]["limit"] == 2


def test_update_with_optimistic_lock(client, admin_headers):
    row = _create_profile(client, admin_headers)
    url = f"{API}/customer_profiles/{row['id']}"

    r = client.patch(url, json={"name": "Renamed", "expected_updated_at": row["updated_at"]}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"]["name"] == "Renamed"
    assert r.json["data"]["profile_type"] is None

    r = client.patch(url, json={"status": "archived", "expected_updated_at": row["updated_at"]}, headers=admin_headers)
    assert r.status_code == 409
    assert r.json["code"] == "conflict"

    r = client.patch(url, json={"metadata": {"k": 1}}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"]["metadata"] == {"k": 1}

    r = client.patch(url, json={"name": None}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json["details"] == ["name: may not be null"]

    r = client.patch(url, json={}, headers=admin_headers)
    assert r.status_code == 400

    r = client.patch(f"{API}/customer_profiles/missing", json={"name": "x"}, headers=admin_headers)
    assert r.status_code == 404


def test_delete_row(client, admin_headers):
    row = _create_profile(client, admin_headers)
    r = client.delete(f"{API}/customer_profiles/{row['id']}", headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"] == {"deleted": row["id"]}

    r = client.delete(f"{API}/customer_profiles/{row['id']}", headers=admin_headers)
    assert r.status_code == 404


def test_viewer_is_read_only(client, viewer_headers):
    r = client.get(f"{API}/tables", headers=viewer_headers)
    assert r.status_code == 200

    r = client.post(f"{API}/customer_profiles", json={"slug": "x", "name": "x"}, headers=viewer_headers)
    assert r.status_code == 403
    assert r.json["code"] == "access_denied"


def test_csrf_token_in_json_body(client, admin_headers):
    body_token = {"csrf_token": admin_headers["X-CSRF-Token"]}

    r = client.post(f"{API}/customer_profiles", json={"slug": "ops-lead", "name": "Ops lead", **body_token})
    assert r.status_code == 201, r.json
    row = r.json["data"]

    r = client.post(f"{API}/customer_profiles/query", json={"filter": {"slug": "ops-lead"}, **body_token})
    assert r.status_code == 200, r.json
    assert r.json["data"]["count"] == 1

    r = client.patch(f"{API}/customer_profiles/{row['id']}", json={"name": "Renamed", **body_token})
    assert r.status_code == 200, r.json
    assert r.json["data"]["name"] == "Renamed"


def _pain(item_id="p1", **extra):
    return {"id": item_id, "content": "Manual reports", "created_at": "2026-01-01T00:00:00Z", **extra}


def test_block_items_are_validated(client, admin_headers):
    r = client.post(
        f"{API}/customer_profiles",
        json={"slug": "dupes", "name": "Dupes", "pains": {"items": [_pain(), _pain()]}},
        headers=admin_headers,
    )
    assert r.status_code == 400
    assert any(d.startswith("pains:") and "duplicate item id: p1" in d for d in r.json["details"])

    r = client.post(
        f"{API}/customer_profiles",
        json={"slug": "severe", "name": "Severe", "pains": {"items": [_pain(severity="catastrophic")]}},
        headers=admin_headers,
    )
    assert r.status_code == 400
    assert any(d.startswith("pains.items.0.severity:") for d in r.json["details"])

    r = client.post(
        f"{API}/customer_profiles",
        json={"slug": "undated", "name": "Undated", "pains": {"items": [_pain(created_at="last tuesday")]}},
        headers=admin_headers,
    )
    assert r.status_code == 400
    assert any(d.startswith("pains.items.0.created_at:") for d in r.json["details"])

    r = client.post(
        f"{API}/value_maps",
        json={
            "slug": "vm",
            "name": "VM",
            "pain_relievers": {"items": [_pain(effectiveness="extreme")]},
        },
        headers=admin_headers,
    )
    assert r.status_code == 400
    assert any(d.startswith("pain_relievers.items.0.effectiveness:") for d in r.json["details"])

    r = client.post(f"{API}/customer_profiles/query", json={}, headers=admin_headers)
    assert r.json["data"]["count"] == 0


def test_block_written_through_data_api_reads_back_on_canvas_api(client, admin_headers):
    row = _create_profile(
        client,
        admin_headers,
        pains={"items": [_pain(severity="extreme", evidence="5 interviews"), _pain("p2")]},
    )
    r = client.get(f"/api/canvases/customer-profiles/{row['id']}", headers=admin_headers)
    assert r.status_code == 200
    pains = r.json["data"]["pains"]["items"]
    assert [p["id"] for p in pains] == ["p1", "p2"]
    assert pains[0]["severity"] == "extreme"
    # optional fields the caller left out are not stored as null
    assert "severity" not in pains[1]
    assert "evidence" not in pains[1]

    r = client.patch(
        f"{API}/customer_profiles/{row['id']}",
        json={"pains": {"items": [_pain(severity="mild")]}},
        headers=admin_headers,
    )
    assert r.status_code == 400
