API = "/api/canvases"


def _create(client, headers, kind, **payload):
    r = client.post(f"{API}/{kind}", json=payload, headers=headers)
    assert r.status_code == 201, r.json
    return r.json["data"]


def _add(client, headers, kind, canvas_id, block, **payload):
    r = client.post(f"{API}/{kind}/{canvas_id}/blocks/{block}/items", json=payload, headers=headers)
    assert r.status_code == 201, r.json
    return r.json["data"]["item"]


def _setup(client, headers):
    profile = _create(client, headers, "customer-profiles", name="Finance lead")
    value_map = _create(client, headers, "value-maps", name="Close tool")
    pains = [
        _add(client, headers, "customer-profiles", profile["id"], "pains", content="Manual reports", severity="high"),
        _add(client, headers, "customer-profiles", profile["id"], "pains", content="Late data"),
    ]
    gain = _add(client, headers, "customer-profiles", profile["id"], "gains", content="Save time", importance="critical")
    job = _add(client, headers, "customer-profiles", profile["id"], "jobs", content="Close the books", type="functional")
    _add(
        client,
        headers,
        "value-maps",
        value_map["id"],
        "pain_relievers",
        content="Automated reports",
        effectiveness="high",
        linked_pain_id=pains[0]["id"],
    )
    vpc = _create(
        client,
        headers,
        "value-propositions",
        name="Close tool for finance",
        value_map_id=value_map["id"],
        customer_profile_id=profile["id"],
    )
    return {"profile": profile, "value_map": value_map, "pains": pains, "gain": gain, "job": job, "vpc": vpc}


def test_create_requires_existing_links(client, admin_headers):
    r = client.post(f"{API}/value-propositions", json={"name": "Orphan"}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json["error"] == "value_map_id is required"

    value_map = _create(client, admin_headers, "value-maps", name="VM")
    r = client.post(
        f"{API}/value-propositions",
        json={"name": "Orphan", "value_map_id": value_map["id"], "customer_profile_id": "nope"},
        headers=admin_headers,
    )
    assert r.status_code == 400
    assert r.json["error"] == "Customer profile not found"


def test_new_vpc_starts_unaddressed(client, admin_headers):
    ctx = _setup(client, admin_headers)
    vpc = ctx["vpc"]
    assert vpc["fit_score"] == 0
    assert vpc["fit_analysis"]["label"] == "Weak Fit"
    assert vpc["addressed_pains"] == {"items": [], "coverage": 0}


def test_toggle_updates_score_and_coverage(client, admin_headers):
    ctx = _setup(client, admin_headers)
    url = f"{API}/value-propositions/{ctx['vpc']['id']}/fit/toggle"

    r = client.post(url, json={"link_type": "pains", "item_id": ctx["pains"][0]["id"]}, headers=admin_headers)
    assert r.status_code == 200
    data = r.json["data"]
    assert data["addressed"] is True
    assert data["fit_analysis"]["pain_coverage"] == 50
    assert data["fit_analysis"]["overall_score"] == 20
    assert data["fit_score"] == 0.2
    assert data["fit_analysis"]["strengths"]["well_covered_pains"] == [ctx["pains"][0]["id"]]

    r = client.post(url, json={"link_type": "gains", "item_id": ctx["gain"]["id"]}, headers=admin_headers)
    assert r.json["data"]["fit_analysis"]["overall_score"] == 60
    assert r.json["data"]["fit_analysis"]["label"] == "Moderate Fit"

    r = client.get(f"{API}/value-propositions/{ctx['vpc']['id']}", headers=admin_headers)
    stored = r.json["data"]
    assert stored["addressed_pains"] == {"items": [ctx["pains"][0]["id"]], "coverage": 50}
    assert stored["addressed_gains"] == {"items": [ctx["gain"]["id"]], "coverage": 100}
    assert stored["fit_score"] == 0.6

    # toggling again removes it
    r = client.post(url, json={"link_type": "gains", "item_id": ctx["gain"]["id"]}, headers=admin_headers)
    assert r.json["data"]["addressed"] is False
    assert r.json["data"]["fit_analysis"]["overall_score"] == 20


def test_toggle_rejects_unknown_items(client, admin_headers):
    ctx = _setup(client, admin_headers)
    url = f"{API}/value-propositions/{ctx['vpc']['id']}/fit/toggle"

    r = client.post(url, json={"link_type": "pains", "item_id": ctx["gain"]["id"]}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json["code"] == "validation_error"

    r = client.post(url, json={"link_type": "outcomes", "item_id": ctx["gain"]["id"]}, headers=admin_headers)
    assert r.status_code == 400

    r = client.post(f"{API}/value-propositions/missing/fit/toggle", json={"link_type": "pains", "item_id": "x"}, headers=admin_headers)
    assert r.status_code == 404


def test_toggle_conflict_on_stale_version(client, admin_headers):
    ctx = _setup(client, admin_headers)
    url = f"{API}/value-propositions/{ctx['vpc']['id']}/fit/toggle"
    stale = ctx["vpc"]["updated_at"]

    r = client.post(url, json={"link_type": "jobs", "item_id": ctx["job"]["id"], "expected_updated_at": stale}, headers=admin_headers)
    assert r.status_code == 200
    r = client.post(url, json={"link_type": "pains", "item_id": ctx["pains"][1]["id"], "expected_updated_at": stale}, headers=admin_headers)
    assert r.status_code == 409


def test_get_fit_and_recalculate(client, admin_headers):
    ctx = _setup(client, admin_headers)
    vpc_id = ctx["vpc"]["id"]
    client.post(
        f"{API}/value-propositions/{vpc_id}/fit/toggle",
        json={"link_type": "jobs", "item_id": ctx["job"]["id"]},
        headers=admin_headers,
    )

    r = client.get(f"{API}/value-propositions/{vpc_id}/fit", headers=admin_headers)
    assert r.status_code == 200
    data = r.json["data"]
    assert data["analysis"]["overall_score"] == 20
    assert data["analysis"]["gaps"]["unaddressed_pains"] == [p["id"] for p in ctx["pains"]]
    assert data["stats"] == {"profile_items": 4, "value_map_items": 1, "total_addressed": 1, "total_gaps": 3}
    assert data["stored_fit_score"] == 0.2

    # Deleting an addressed profile item leaves a ghost id; recalculation drops it from the score.
    r = client.delete(
        f"{API}/customer-profiles/{ctx['profile']['id']}/blocks/jobs/items/{ctx['job']['id']}",
        headers=admin_headers,
    )
    assert r.status_code == 200

    r = client.post(f"{API}/value-propositions/{vpc_id}/fit/recalculate", headers=admin_headers)
    assert r.status_code == 200
    assert r.json["data"]["fit_score"] == 0
    assert r.json["data"]["fit_analysis"]["job_coverage"] == 0


def test_deleting_value_map_removes_linked_vpcs(client, admin_headers):
    ctx = _setup(client, admin_headers)
    r = client.delete(f"{API}/value-maps/{ctx['value_map']['id']}", headers=admin_headers)
    assert r.status_code == 200

    r = client.get(f"{API}/value-propositions/{ctx['vpc']['id']}", headers=admin_headers)
    assert r.status_code == 404
    r = client.get(f"{API}/value-propositions", headers=admin_headers)
    assert r.json["data"] == []


def test_viewer_can_read_fit_but_not_toggle(app, client, admin_headers):
    ctx = _setup(client, admin_headers)

    viewer = app.test_client()
    viewer.post("/auth/login", data={"email": "viewer@example.com", "password": "pw"})
    with viewer.session_transaction() as sess:
        headers = {"X-CSRF-Token": sess["csrf_token"]}
    vpc_id = ctx["vpc"]["id"]
    r = viewer.get(f"{API}/value-propositions/{vpc_id}/fit", headers=headers)
    assert r.status_code == 200
    r = viewer.post(
        f"{API}/value-propositions/{vpc_id}/fit/toggle",
        json={"link_type": "pains", "item_id": ctx["pains"][0]["id"]},
        headers=headers,
    )
    assert r.status_code == 403
