from flask import Blueprint, jsonify

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return jsonify(
        {
            "service": "customer-registry",
            "endpoints": [
                "/dashboard",
                "/customers",
                "/customers/search",
                "/customers/batch-search",
                "/customers/birthdays",
                "/customers/import",
                "/customers/import/template",
            ],
        }
    )


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for probes. No DB access, minimal overhead.
    """
    return "ok", 200
