"""
Flask route handlers for the REST API.

Each route gates the action through the access-control predicates first and
only then touches the data gateway or the import pipeline.
"""

import secrets
import sys
import traceback
from datetime import datetime, timedelta

from flask import request, jsonify
from sqlalchemy import text as sa_text

from biofactor.config import DEFAULT_ORDER_ASCENDING, TOKEN_EXPIRY_HOURS, MAX_RESULTS_RETURN
from biofactor.errors import (
    AuthenticationError,
    ConstraintViolation,
    GatewayError,
    ImportFileError,
    NetworkError,
    PermissionDenied,
)
from biofactor.gateway import user_message
from biofactor.importer.archive import archive_upload
from biofactor.importer.pipeline import ImportJob, ImportPipeline, can_import
from biofactor.importer.schemas import SCHEMAS
from biofactor.models import ListOptions, OrderBy
from biofactor.rbac import can_perform, permissions_for
from biofactor.api.auth import generate_token, token_required

LIST_CONTROL_PARAMS = {"select", "order", "ascending", "limit", "token"}


def _principal_json(principal):
    return {
        "id": principal.id,
        "email": principal.email,
        "display_name": principal.display_name,
        "role": principal.role,
        "department": principal.department,
        "region": principal.region,
        "avatar_url": principal.avatar_url,
    }


def _list_options(args) -> ListOptions:
    order = args.get("order")
    ascending = args.get("ascending")
    limit = args.get("limit", type=int)
    return ListOptions(
        select=args.get("select", "*"),
        filters={k: v for k, v in args.items() if k not in LIST_CONTROL_PARAMS},
        order_by=OrderBy(
            order,
            DEFAULT_ORDER_ASCENDING if ascending is None else ascending.lower() == "true",
        ) if order else None,
        limit=min(limit, MAX_RESULTS_RETURN) if limit else MAX_RESULTS_RETURN,
    )


def _forbidden(action, resource):
    return jsonify({"error": f"Not allowed to {action} {resource}"}), 403


def register_routes(app, engine, gateway, auth, file_store=None):
    """Register all API routes on the Flask *app*."""

    # ── Health / info ────────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": "Biofactor Dashboard API",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "auth": "/api/auth/login",
                "resources": "/api/resources/<name>",
                "import": "/api/import/<name>",
                "profile": "/api/user/profile",
                "logout": "/api/auth/logout",
                "health": "/health",
            },
        })

    @app.route("/health", methods=["GET"])
    def health():
        checks = {"database": False}
        try:
            with engine.connect() as conn:
                conn.execute(sa_text("SELECT 1"))
            checks["database"] = True
        except Exception as e:
            print(f"[WARN] Health check failed: {e}", file=sys.stderr)

        all_healthy = all(checks.values())
        return jsonify({
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
            "active_sessions": len(auth.storage),
        }), 200 if all_healthy else 503

    # ── Auth ─────────────────────────────────────────────────────────

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400

        data = request.json
        email = (data.get("email") or "").strip()
        password = data.get("password") or ""
        if not email or not password:
            return jsonify({"error": "email and password are required"}), 400

        auth.cleanup_expired_sessions()
        try:
            session = auth.authenticate(email, password, key=secrets.token_hex(16))
        except AuthenticationError as e:
            print(f"[auth] Login failed for {email}: {e}")
            return jsonify({"error": "Invalid email or password"}), 401

        return jsonify({
            "success": True,
            "token": generate_token(session),
            "user": _principal_json(session.principal),
            "access": permissions_for(session.principal),
            "expires_at": (datetime.utcnow() + timedelta(hours=TOKEN_EXPIRY_HOURS)).isoformat(),
        }), 200

    @app.route("/api/auth/logout", methods=["POST"])
    @token_required
    def logout():
        auth.logout(request.session_data)
        return jsonify({"success": True, "message": "Logged out successfully"}), 200

    @app.route("/api/user/profile", methods=["GET"])
    @token_required
    def get_profile():
        session = request.session_data
        return jsonify({
            "success": True,
            "user": _principal_json(session.principal),
            "access": permissions_for(session.principal),
            "session": {"created_at": session.created_at.isoformat()},
        }), 200

    # ── Resources ────────────────────────────────────────────────────

    @app.route("/api/resources/<name>", methods=["GET"])
    @token_required
    def list_resource(name):
        if not can_perform(request.session_data.principal, name, "view"):
            return _forbidden("view", name)
        rows = gateway.list(name, _list_options(request.args))
        return jsonify({"success": True, "resource": name, "count": len(rows), "data": rows}), 200

    @app.route("/api/resources/<name>", methods=["POST"])
    @token_required
    def create_resource(name):
        if not can_perform(request.session_data.principal, name, "create"):
            return _forbidden("create", name)
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400
        record = gateway.create(name, request.json)
        return jsonify({"success": True, "data": record}), 201

    @app.route("/api/resources/<name>/<record_id>", methods=["PATCH"])
    @token_required
    def update_resource(name, record_id):
        if not can_perform(request.session_data.principal, name, "edit"):
            return _forbidden("edit", name)
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400
        record = gateway.update(name, record_id, request.json)
        return jsonify({"success": True, "data": record}), 200

    @app.route("/api/resources/<name>/<record_id>", methods=["DELETE"])
    @token_required
    def delete_resource(name, record_id):
        if not can_perform(request.session_data.principal, name, "edit"):
            return _forbidden("delete", name)
        gateway.remove(name, record_id)
        return jsonify({"success": True}), 200

    # ── Import ───────────────────────────────────────────────────────

    @app.route("/api/import/<name>", methods=["POST"])
    @token_required
    def import_resource(name):
        schema = SCHEMAS.get(name)
        if schema is None:
            return jsonify({"error": f"Import is not available for {name}"}), 404

        session = request.session_data
        if not can_import(session, schema):
            return _forbidden("import", name)

        upload = request.files.get("file")
        if upload is None or not upload.filename:
            return jsonify({"error": "file is required"}), 400

        content = upload.read()
        try:
            result = ImportPipeline(gateway).run(ImportJob(upload.filename, content, schema), session)
        except ImportFileError as e:
            return jsonify({"success": False, "error": str(e)}), 400

        if file_store is not None and request.form.get("archive") == "true":
            try:
                archive_upload(file_store, gateway, upload.filename, content, upload.mimetype)
            except (GatewayError, OSError) as e:
                print(f"[WARN] Archiving {upload.filename} failed: {e}", file=sys.stderr)

        return jsonify({
            "success": True,
            "resource": name,
            "imported": result.success_count,
            "total_rows": result.total_rows,
            "message": result.summary,
        }), 200

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(GatewayError)
    def gateway_error(e):
        if isinstance(e, PermissionDenied):
            status = 403
        elif isinstance(e, ConstraintViolation):
            status = 409
        elif isinstance(e, NetworkError):
            status = 502
        else:
            status = 400
        return jsonify({"success": False, "error": user_message(e, "Request failed")}), status

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Endpoint not found", "message": str(e)}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "message": str(e)}), 405

    @app.errorhandler(500)
    def internal_error(e):
        traceback.print_exc()
        return jsonify({"error": "Internal server error", "message": str(e)}), 500
