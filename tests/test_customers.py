"""Tests for the customer registry HTTP endpoints."""
import io
from datetime import date, time

import pytest
from openpyxl import load_workbook
from sqlalchemy import select

from app.registry import create_app
from app.registry.db import session_scope
from app.registry.models import AuditEvent, Base
from app.registry.modules.customers import admin as customers_admin
from sheets import build_xlsx, national_ids


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("IMPORT_CHUNK_SIZE", "2")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _payload(**kw):
    data = {
        "full_name": "Maria da Silva",
        "national_id": "529.982.247-25",
        "phone_primary": "(11) 98765-4321",
        "phone_secondary": "",
        "birth_date": "1990-01-15",
        "external_note": "@maria",
    }
    data.update(kw)
    return data


def _upload(client, data, filename="customers.xlsx"):
    return client.post(
        "/customers/import",
        data={"file": (io.BytesIO(data), filename)},
        content_type="multipart/form-data",
    )


def _born_today():
    today = date.today()
    # 2000 is a leap year, so every month/day exists
    return date(2000, today.month, today.day).isoformat()


def test_create_and_fetch_customer(client):
    r = client.post("/customers", json=_payload())
    assert r.status_code == 201
    body = r.json
    assert body["national_id"] == "52998224725"
    assert body["phone_primary"] == "11987654321"
    assert body["phone_secondary"] is None
    assert body["birth_date"] == "1990-01-15"
    assert body["age"] >= 35

    r = client.get(f"/customers/{body['id']}")
    assert r.status_code == 200
    assert r.json["full_name"] == "Maria da Silva"


def test_create_rejects_invalid_payload(client):
    r = client.post(
        "/customers",
        json=_payload(full_name=" ", national_id="123.456.789-00", birth_date="31/02/2023"),
    )
    assert r.status_code == 400
    fields = {e["field"] for e in r.json["errors"]}
    assert fields == {"full_name", "national_id", "birth_date"}


def test_create_rejects_future_birth_date(client):
    r = client.post("/customers", json=_payload(birth_date="2999-01-01"))
    assert r.status_code == 400
    assert r.json["errors"][0]["field"] == "birth_date"


def test_create_rejects_year_only_birth_date(client):
    r = client.post("/customers", json=_payload(birth_date="1990"))
    assert r.status_code == 400
    assert [e["field"] for e in r.json["errors"]] == ["birth_date"]


def test_create_duplicate_national_id_conflicts(client):
    assert client.post("/customers", json=_payload()).status_code == 201
    r = client.post("/customers", json=_payload(full_name="Someone Else"))
    assert r.status_code == 409
    assert "already registered" in r.json["error"]


def test_delete_customer(client):
    cid = client.post("/customers", json=_payload()).json["id"]
    assert client.delete(f"/customers/{cid}").status_code == 200
    assert client.get(f"/customers/{cid}").status_code == 404
    assert client.delete(f"/customers/{cid}").status_code == 404


def test_search_by_national_id_and_phone(client):
    client.post("/customers", json=_payload(phone_secondary="(11) 3333-4444"))

    r = client.get("/customers/search", query_string={"type": "national_id", "q": "529.982.247-25"})
    assert r.status_code == 200
    assert r.json["count"] == 1

    r = client.get("/customers/search", query_string={"type": "phone", "q": "1133334444"})
    assert r.json["count"] == 1

    r = client.get("/customers/search", query_string={"type": "phone", "q": "000"})
    assert r.json["count"] == 0

    assert client.get("/customers/search", query_string={"type": "email", "q": "1"}).status_code == 400
    assert client.get("/customers/search", query_string={"type": "phone", "q": ""}).status_code == 400


def test_batch_search(client):
    ids = national_ids(2)
    client.post("/customers", json=_payload())
    client.post("/customers", json=_payload(full_name="Joao", national_id=ids[0], phone_primary="21912345678"))
    client.post("/customers", json=_payload(full_name="Zeca", national_id=ids[1], phone_primary="31900000000"))

    r = client.post("/customers/batch-search", json={"type": "national_id", "terms": f"529.982.247-25\n{ids[0]}, 123"})
    assert r.status_code == 200
    assert [c["full_name"] for c in r.json["customers"]] == ["Joao", "Maria da Silva"]

    # without area code, and with a country code in front
    r = client.post("/customers/batch-search", json={"type": "phone", "terms": "987654321\n5521912345678"})
    assert sorted(c["full_name"] for c in r.json["customers"]) == ["Joao", "Maria da Silva"]

    r = client.post("/customers/batch-search", json={"type": "all"})
    assert r.json["count"] == 3

    assert client.post("/customers/batch-search", json={"type": "phone", "terms": " , \n"}).status_code == 400


def test_birthdays_and_dashboard(client):
    today = date.today()
    client.post("/customers", json=_payload(birth_date=_born_today()))
    other_month = today.month % 12 + 1
    client.post(
        "/customers",
        json=_payload(full_name="Other", national_id=national_ids(1)[0], birth_date=f"1980-{other_month:02d}-01"),
    )

    r = client.get("/customers/birthdays")
    assert r.status_code == 200
    assert r.json["month"] == today.month
    assert [c["full_name"] for c in r.json["customers"]] == ["Maria da Silva"]

    r = client.get("/customers/birthdays", query_string={"month": other_month})
    assert [c["full_name"] for c in r.json["customers"]] == ["Other"]

    assert client.get("/customers/birthdays", query_string={"month": "13"}).status_code == 400

    r = client.get("/dashboard")
    assert r.status_code == 200
    assert r.json == {
        "total_customers": 2,
        "registered_this_year": 2,
        "birthdays_today": 1,
        "birthdays_this_month": 1,
    }


def test_template_imports_cleanly(client):
    r = client.get("/customers/import/template")
    assert r.status_code == 200
    assert "customers_import_template.xlsx" in r.headers["Content-Disposition"]

    ws = load_workbook(io.BytesIO(r.data)).active
    assert [c.value for c in ws[1]] == ["Name", "National ID", "Phone 1", "Phone 2", "Birth Date", "Note"]

    r = _upload(client, r.data, "template.xlsx")
    assert r.status_code == 200
    assert r.json["total_rows"] == 1
    assert r.json["success_count"] == 1
    assert r.json["errors"] == []


def test_import_reports_rows_and_chunks(app, client):
    existing = "52998224725"
    client.post("/customers", json=_payload())
    new_ids = national_ids(3)
    rows = [
        ["Ana", new_ids[0], "11911110000", None, "01/02/1990", None],
        ["Dup In DB", existing, "11911110001", None, "01/02/1990", None],
        ["Bad", "12345678900", "11911110002", None, "01/02/1990", None],
        ["Bia", new_ids[1], "11911110003", None, "2999-01-01", None],
        ["Caio", new_ids[2], "11911110004", None, "1988-07-30", "@caio"],
    ]
    r = _upload(client, build_xlsx(rows))
    assert r.status_code == 200
    body = r.json
    assert body["total_rows"] == 5
    # chunk size 2: [Ana, Dup In DB] fails as a unit, [Caio] goes through
    assert body["success_count"] == 1
    assert {e["row_number"]: e["reason"] for e in body["errors"]} == {
        4: "invalid national ID",
        5: "birth date in the future",
    }
    assert len(body["chunk_errors"]) == 1
    assert body["chunk_errors"][0]["first_row"] == 2
    assert body["chunk_errors"][0]["last_row"] == 3

    r = client.get("/customers/search", query_string={"type": "national_id", "q": new_ids[2]})
    assert r.json["customers"][0]["external_note"] == "@caio"

    status = client.get("/customers/import/status").json
    assert status["running"] is False
    assert status["validated"] == 1.0
    assert (status["chunk"], status["chunks"]) == (2, 2)

    with session_scope(app) as s:
        actions = s.scalars(select(AuditEvent.action)).all()
    assert actions.count("customer.import") == 1


def test_import_rejects_bad_uploads(client):
    r = client.post("/customers/import", data={}, content_type="multipart/form-data")
    assert r.status_code == 400

    r = _upload(client, b"hello", "customers.txt")
    assert r.status_code == 400
    assert "Unsupported file type" in r.json["error"]

    r = _upload(client, b"not a zip file", "customers.xlsx")
    assert r.status_code == 400
    assert r.json["file_error"]
    assert r.json["success_count"] == 0


def test_import_rejected_row_with_time_cell(app, client):
    rows = [["Ana", "12345678900", "11999999999", None, time(10, 30), None]]
    r = _upload(client, build_xlsx(rows))
    assert r.status_code == 200
    err = r.json["errors"][0]
    assert err["reason"] == "invalid national ID"
    assert err["raw_row"]["Birth Date"].startswith("10:30")

    with session_scope(app) as s:
        actions = s.scalars(select(AuditEvent.action)).all()
    assert actions == ["customer.import"]


def test_import_csv_with_blank_first_line(client):
    data = b"\nName,National ID,Phone 1,Birth Date\nAna,529.982.247-25,11999999999,15/01/1990\n"
    r = _upload(client, data, "customers.csv")
    assert r.status_code == 400
    assert r.json["file_error"]
    assert r.json["success_count"] == 0


def test_import_csv(client):
    data = (
        "Nome;CPF;Telefone 1;Telefone 2;Data de Nascimento;Wizebot\n"
        "Ana;529.982.247-25;(11) 99999-9999;;15/01/1990;@ana\n"
    ).encode("utf-8")
    r = _upload(client, data, "customers.csv")
    assert r.status_code == 200
    assert r.json["success_count"] == 1


def test_only_one_import_at_a_time(client):
    assert customers_admin._import_gate.acquire(blocking=False)
    try:
        r = _upload(client, build_xlsx([]))
        assert r.status_code == 409
    finally:
        customers_admin._import_gate.release()


def test_export_search_results(client):
    assert client.post("/customers/export", json={"type": "all"}).status_code == 400

    client.post("/customers", json=_payload(phone_secondary="1133334444"))
    r = client.post("/customers/export", json={"type": "national_id", "terms": "52998224725"})
    assert r.status_code == 200
    today = date.today().strftime("%d-%m-%Y")
    assert f"customers_export_{today}.xlsx" in r.headers["Content-Disposition"]

    ws = load_workbook(io.BytesIO(r.data)).active
    rows = list(ws.iter_rows(values_only=True))
    assert rows[0] == ("Name", "National ID", "Age", "Phone 1", "Phone 2", "Note", "Birth Date", "Registered On")
    assert rows[1][:5] == ("Maria da Silva", "529.982.247-25", rows[1][2], "(11) 98765-4321", "(11) 3333-4444")
    assert rows[1][6] == "15/01/1990"
