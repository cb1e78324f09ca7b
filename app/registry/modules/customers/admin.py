from __future__ import annotations

import io
import threading
from datetime import date

from flask import Blueprint, current_app, jsonify, request, send_file
from werkzeug.utils import secure_filename

from app.registry.audit import record_event
from app.registry.db import db_session
from app.registry.modules.customers.exports import (
    TEMPLATE_FILENAME,
    XLSX_MIMETYPE,
    build_import_template,
    build_search_export,
)
from app.registry.modules.customers.importer import DEFAULT_CHUNK_SIZE, import_customers
from app.registry.modules.customers.service import (
    batch_search,
    birthdays_in_month,
    create_customer,
    dashboard_stats,
    delete_customer,
    find_customers,
    get_customer_by_id,
    parse_month,
    validate_customer_payload,
)
from app.registry.modules.customers.store import CustomerStore, StoreError

bp = Blueprint("customers", __name__)

ALLOWED_IMPORT_EXTENSIONS = (".xlsx", ".xlsm", ".csv")

# One import at a time per process.
_import_gate = threading.Lock()
_import_status_lock = threading.Lock()
_import_status: dict = {"running": False, "filename": None, "validated": 0.0, "chunk": 0, "chunks": 0}


def _set_import_status(**kw) -> None:
    with _import_status_lock:
        _import_status.update(kw)


def get_import_status() -> dict:
    with _import_status_lock:
        return dict(_import_status)


def _store() -> CustomerStore:
    return CustomerStore(db_session())


def _bad_request(message: str, status: int = 400):
    return jsonify({"error": message}), status


def _payload() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


@bp.post("/customers")
def customers_create():
    payload = _payload()
    errs = validate_customer_payload(payload)
    if errs:
        return jsonify({"errors": [{"field": e.field, "message": e.message} for e in errs]}), 400
    store = _store()
    try:
        c = create_customer(store, payload)
    except StoreError as e:
        return _bad_request(str(e), 409)
    record_event(store.s, action="customer.create", entity_type="Customer", entity_id=c.id)
    store.s.commit()
    return jsonify(c.to_dict()), 201


@bp.get("/customers/<customer_id>")
def customer_detail(customer_id: str):
    c = get_customer_by_id(_store(), customer_id)
    if not c:
        return _bad_request("Customer not found.", 404)
    return jsonify(c.to_dict())


@bp.delete("/customers/<customer_id>")
def customer_delete(customer_id: str):
    store = _store()
    try:
        deleted = delete_customer(store, customer_id)
    except StoreError as e:
        return _bad_request(str(e), 500)
    if not deleted:
        return _bad_request("Customer not found.", 404)
    record_event(store.s, action="customer.delete", entity_type="Customer", entity_id=customer_id)
    store.s.commit()
    return jsonify({"ok": True})


@bp.get("/customers/search")
def customers_search():
    kind = (request.args.get("type") or "phone").strip()
    q = (request.args.get("q") or "").strip()
    try:
        rows = find_customers(_store(), kind, q)
    except ValueError as e:
        return _bad_request(str(e))
    except StoreError as e:
        return _bad_request(str(e), 500)
    return jsonify({"count": len(rows), "customers": [c.to_dict() for c in rows]})


def _run_batch_search():
    payload = _payload()
    kind = str(payload.get("type") or "national_id").strip()
    terms = str(payload.get("terms") or "")
    return batch_search(_store(), kind, terms)


@bp.post("/customers/batch-search")
def customers_batch_search():
    try:
        rows = _run_batch_search()
    except ValueError as e:
        return _bad_request(str(e))
    except StoreError as e:
        return _bad_request(str(e), 500)
    return jsonify({"count": len(rows), "customers": [c.to_dict() for c in rows]})


@bp.post("/customers/export")
def customers_export():
    try:
        rows = _run_batch_search()
        data, filename = build_search_export(rows, today=date.today())
    except ValueError as e:
        return _bad_request(str(e))
    except StoreError as e:
        return _bad_request(str(e), 500)
    return send_file(io.BytesIO(data), mimetype=XLSX_MIMETYPE, as_attachment=True, download_name=filename, max_age=0)


@bp.get("/customers/birthdays")
def customers_birthdays():
    try:
        month = parse_month(request.args.get("month"), default=date.today().month)
        rows = birthdays_in_month(_store(), month)
    except ValueError as e:
        return _bad_request(str(e))
    except StoreError as e:
        return _bad_request(str(e), 500)
    return jsonify({"month": month, "count": len(rows), "customers": [c.to_dict() for c in rows]})


@bp.get("/dashboard")
def dashboard():
    try:
        stats = dashboard_stats(_store(), date.today())
    except StoreError as e:
        return _bad_request(str(e), 500)
    return jsonify(stats)


@bp.get("/customers/import/template")
def customers_import_template():
    return send_file(
        io.BytesIO(build_import_template()),
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name=TEMPLATE_FILENAME,
        max_age=0,
    )


@bp.get("/customers/import/status")
def customers_import_status():
    return jsonify(get_import_status())


@bp.post("/customers/import")
def customers_import():
    f = request.files.get("file")
    if not f or not f.filename:
        return _bad_request("Choose a spreadsheet to import.")
    filename = secure_filename(f.filename) or "upload.xlsx"
    if not filename.lower().endswith(ALLOWED_IMPORT_EXTENSIONS):
        return _bad_request(f"Unsupported file type. Use: {', '.join(ALLOWED_IMPORT_EXTENSIONS)}")

    if not _import_gate.acquire(blocking=False):
        return _bad_request("Another import is already running. Try again when it finishes.", 409)
    try:
        _set_import_status(running=True, filename=filename, validated=0.0, chunk=0, chunks=0)
        store = _store()
        result = import_customers(
            store,
            f.read(),
            filename,
            chunk_size=int(current_app.config.get("IMPORT_CHUNK_SIZE") or DEFAULT_CHUNK_SIZE),
            on_progress=lambda frac: _set_import_status(validated=round(frac, 4)),
            on_chunk=lambda n, m: _set_import_status(chunk=n, chunks=m),
        )
        if result.file_error:
            return jsonify(result.to_dict()), 400
        record_event(
            store.s,
            action="customer.import",
            entity_type="Customer",
            metadata={
                "filename": filename,
                "total_rows": result.total_rows,
                "success_count": result.success_count,
                "error_count": len(result.errors),
                "failed_chunks": len(result.chunk_errors),
            },
        )
        store.s.commit()
        return jsonify(result.to_dict())
    finally:
        _set_import_status(running=False)
        _import_gate.release()
