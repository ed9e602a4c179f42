# realtrack/__init__.py
import os
from flask import Flask
from dotenv import load_dotenv
from sqlalchemy import create_engine
from flask_cors import CORS
from flask import current_app

def create_app():
    load_dotenv()
    app = Flask(__name__)

    # ---- Config ----
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL is not set. Put it in your .env")
    app.config["PG_ENGINE"] = create_engine(dsn, pool_pre_ping=True)

    CORS(app, resources={r"/api/*": {"origins": "*"}})

    # Session tokens (issued by /auth/login, read back by the session resolver)
    app.config["JWT_SECRET"] = os.environ.get("JWT_SECRET", "dev-secret-change-me")
    app.config["JWT_EXPIRES_HOURS"] = int(os.environ.get("JWT_EXPIRES_HOURS", "24"))
    app.config["AUTH_COOKIE_NAME"] = os.environ.get("SESSION_COOKIE_NAME", "realtrack_session")

    # Document storage
    app.config["BLOB_STORE_DIR"] = os.environ.get("BLOB_STORE_DIR", ".blobs")
    # uploads are capped at 10 MiB; the extra MiB covers multipart framing
    app.config["MAX_CONTENT_LENGTH"] = int(os.environ.get("MAX_UPLOAD_BYTES", str(11 * 1024 * 1024)))
    app.config["INVITATION_EXPIRES_DAYS"] = int(os.environ.get("INVITATION_EXPIRES_DAYS", "7"))

    # ---- Blueprints ----
    from realtrack.routes.auth import auth_bp
    from realtrack.routes.admin_users import admin_users_bp
    from realtrack.routes.projects import projects_bp
    from realtrack.routes.documents import documents_bp
    from realtrack.routes.partners import partners_bp
    from realtrack.routes.costs import costs_bp
    from realtrack.routes.portfolio import portfolio_bp

    app.register_blueprint(auth_bp, url_prefix="/api")
    app.register_blueprint(admin_users_bp, url_prefix="/api")
    app.register_blueprint(projects_bp, url_prefix="/api")
    app.register_blueprint(documents_bp, url_prefix="/api")
    app.register_blueprint(partners_bp, url_prefix="/api")
    app.register_blueprint(costs_bp, url_prefix="/api")
    app.register_blueprint(portfolio_bp, url_prefix="/api")

    @app.errorhandler(413)
    def _too_large(e):
        return {"error": "File size must be under 10MB"}, 413

    @app.get("/api/healthz")
    def health():
        return {"ok": True}

    return app


def get_conn():
    engine = current_app.config["PG_ENGINE"]
    conn = engine.connect()

    if conn.in_transaction():
        conn.rollback()

    return conn
