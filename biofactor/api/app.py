"""
Flask application factory and server entry-point.
"""

import os
import sys
import traceback

from flask import Flask
from flask_cors import CORS

from biofactor.config import SESSION_FILE, TOKEN_EXPIRY_HOURS, UPLOAD_BASE_URL, UPLOAD_DIR
from biofactor.database import SqlIdentityProvider, SqlProfileStore, SqlResourceStore, init_engine
from biofactor.gateway import DataGateway
from biofactor.rbac import AuthService, FileSessionStorage, MemorySessionStorage
from biofactor.stores import LocalFileStore
from biofactor.api.routes import register_routes


def log_notification(level: str, message: str) -> None:
    print(f"[gateway] {level}: {message}")


def create_app(engine=None, file_store=None, executor=None, session_file=SESSION_FILE):
    """Build and return a fully configured Flask application."""
    app = Flask(__name__)
    CORS(app)

    # ── Initialise shared resources ──────────────────────────────────
    try:
        if engine is None:
            print("[init] Initializing database connection...")
            engine = init_engine()

        gateway = DataGateway(SqlResourceStore(engine), executor=executor, notifier=log_notification)
        auth = AuthService(
            identity=SqlIdentityProvider(engine),
            profiles=SqlProfileStore(engine),
            storage=FileSessionStorage(session_file) if session_file else MemorySessionStorage(),
        )
        if file_store is None:
            file_store = LocalFileStore(UPLOAD_DIR, UPLOAD_BASE_URL)

        print("[init] ✓ API server ready")
    except Exception as e:
        print(f"[FATAL] Failed to initialize: {e}", file=sys.stderr)
        traceback.print_exc()
        sys.exit(1)

    app.config["AUTH_SERVICE"] = auth

    # ── Register routes ──────────────────────────────────────────────
    register_routes(app, engine, gateway, auth, file_store)

    return app


def main():
    """Run the development server."""
    print("=" * 60)
    print("Biofactor Dashboard – REST API Server")
    print("=" * 60)

    app = create_app()

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    debug = os.getenv("FLASK_ENV") == "development"

    print(f"\n[server] Starting Flask API on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print(f"[server] Session expiry: {TOKEN_EXPIRY_HOURS} hours")
    print("\nAPI Endpoints:")
    print(f"  - POST   http://{host}:{port}/api/auth/login")
    print(f"  - GET    http://{host}:{port}/api/resources/<name>")
    print(f"  - POST   http://{host}:{port}/api/resources/<name>")
    print(f"  - PATCH  http://{host}:{port}/api/resources/<name>/<id>")
    print(f"  - DELETE http://{host}:{port}/api/resources/<name>/<id>")
    print(f"  - POST   http://{host}:{port}/api/import/<name>")
    print(f"  - GET    http://{host}:{port}/api/user/profile")
    print(f"  - POST   http://{host}:{port}/api/auth/logout")
    print(f"  - GET    http://{host}:{port}/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
