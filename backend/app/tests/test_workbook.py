from .conftest import actor_headers


def test_manifest_lists_visible_sheets(client):
    resp = client.get("/api/workbook/manifest", headers=actor_headers())
    assert resp.status_code == 200
    sheets = {s["id"]: s for s in resp.json()["sheets"]}
    assert set(sheets) == {"financial-data", "budget-data"}
    assert sheets["financial-data"]["key_columns"] == ["internal_order", "item_id"]


def test_sheet_schema(client):
    resp = client.get("/api/workbook/sheet/budget-data/schema", headers=actor_headers())
    assert resp.status_code == 200
    columns = {c["name"]: c for c in resp.json()["columns"]}
    assert columns["budget_year"]["is_key"] is True
    assert columns["total_budget"]["computed"] is True
    assert columns["cost_center"]["lookup"]["table"] == "cost_centers"
    assert columns["budget_year"]["data_type"] == "integer"


def test_unknown_sheet_schema(client):
    resp = client.get("/api/workbook/sheet/nope/schema", headers=actor_headers())
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Sheet 'nope' not found"


def test_health_and_metrics_are_public(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/metrics").status_code == 200
    assert client.get("/api/workbook/manifest").status_code == 401
