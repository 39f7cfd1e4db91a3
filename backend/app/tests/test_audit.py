from datetime import datetime

from app.audit import SheetAuditSink, generate_report
from .conftest import actor_headers


def record(db, category, count, actor="alice@example.com", sheet_id="financial-data"):
    return SheetAuditSink(db).record(
        sheet_id=sheet_id,
        session_id="s-1",
        category=category,
        count=count,
        actor=actor,
        timestamp=datetime(2024, 5, 1, 12, 0),
    )


def test_generate_report_sums_rows_per_category(db):
    record(db, "INSERT", 3)
    record(db, "INSERT", 2)
    record(db, "DELETE", 1)
    record(db, "UPDATE", 4, sheet_id="budget-data")
    report = generate_report(db, datetime(2024, 1, 1), datetime(2025, 1, 1), "financial-data")
    assert sorted(report, key=lambda r: r["operation_type"]) == [
        {"operation_type": "DELETE", "count": 1},
        {"operation_type": "INSERT", "count": 5},
    ]
    assert generate_report(db, datetime(2030, 1, 1), datetime(2031, 1, 1)) == []


def test_audit_routes(client, db):
    record(db, "INSERT", 1)
    record(db, "UPDATE", 1, actor="bob")
    headers = actor_headers()

    logs = client.get("/api/audit/", headers=headers)
    assert logs.status_code == 200
    assert len(logs.json()) == 2
    mine = client.get("/api/audit/", params={"mine": True}, headers=headers).json()
    assert [l["operation_type"] for l in mine] == ["INSERT"]

    params = {"start": "2000-01-01T00:00:00", "end": "2100-01-01T00:00:00"}
    resp = client.get("/api/audit/report", headers=headers, params=params)
    assert resp.status_code == 200
    assert {r["operation_type"]: r["count"] for r in resp.json()} == {"INSERT": 1, "UPDATE": 1}
