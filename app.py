# app.py — HealthPulse Collect
# HTTP surface: survey intake, household registry, admin login + dashboard

from __future__ import annotations

import logging
import secrets
from functools import wraps
from typing import Any, Dict

from flask import Flask, jsonify, request, session
from flask_cors import CORS

import config
from auth import AdminSession, AuthenticationError, authenticate, ensure_admin_credential
from dashboard import Dashboard
from households import (
    HouseholdRegistryForm,
    DuplicateMemberIdError,
    RegistrationError,
    RegistryValidationError,
)
from navigation import Navigation, NavigationError
from store import RecordStore, SqliteRecordStore, StoreError, get_store
from surveys import (
    SurveySubmitError,
    SurveyValidationError,
    create_anc_survey,
    create_general_survey,
    list_anc_surveys,
    list_general_surveys,
)

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = config.APP_NAME
APP_VERSION = config.APP_VERSION

app = Flask(__name__)
app.secret_key = config.SECRET_KEY or secrets.token_urlsafe(32)
app.config["MAX_CONTENT_LENGTH"] = 2 * 1024 * 1024  # 2MB
CORS(app, origins=config.CORS_ORIGINS)


def get_record_store() -> RecordStore:
    store = app.config.get("RECORD_STORE")
    if store is None:
        store = get_store()
        app.config["RECORD_STORE"] = store
    return store


def init_app_store() -> RecordStore:
    store = get_record_store()
    if isinstance(store, SqliteRecordStore) and config.ADMIN_USERNAME:
        ensure_admin_credential(store, config.ADMIN_USERNAME, config.ADMIN_PASSWORD)
    return store


def current_admin() -> AdminSession:
    return AdminSession.from_cookie(session)


def admin_required(view):
    """
    Hands the caller's AdminSession to the view as its first argument.
    """

    @wraps(view)
    def wrapper(*args, **kwargs):
        admin = current_admin()
        if not admin.authenticated:
            return jsonify({"error": "Admin login required."}), 401
        return view(admin, *args, **kwargs)

    return wrapper


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _store_failure(exc: StoreError, what: str):
    logger.error("Error %s: %s", what, exc)
    return jsonify({"error": exc.message or str(exc)}), 500


# ---------------------------
# Health
# ---------------------------
@app.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "OK", "message": "Server is running"}), 200


@app.route("/api/health", methods=["GET"])
def api_health():
    return jsonify({"status": "OK", "message": "API is running", "version": APP_VERSION}), 200


# ---------------------------
# General health surveys
# ---------------------------
@app.route("/api/general-surveys", methods=["GET"])
def api_general_surveys():
    try:
        return jsonify(list_general_surveys(get_record_store())), 200
    except StoreError as exc:
        return _store_failure(exc, "fetching general surveys")


@app.route("/api/general-surveys", methods=["POST"])
def api_general_surveys_create():
    try:
        row = create_general_survey(get_record_store(), _json_body())
    except SurveyValidationError as exc:
        return jsonify({"error": str(exc), "missing": exc.missing}), 400
    except SurveySubmitError as exc:
        return jsonify({"error": str(exc), "detail": exc.cause.message}), 500
    return jsonify(row), 201


# ---------------------------
# Antenatal care (ANC) surveys
# ---------------------------
@app.route("/api/anc-surveys", methods=["GET"])
def api_anc_surveys():
    try:
        return jsonify(list_anc_surveys(get_record_store())), 200
    except StoreError as exc:
        return _store_failure(exc, "fetching ANC surveys")


@app.route("/api/anc-surveys", methods=["POST"])
def api_anc_surveys_create():
    try:
        row = create_anc_survey(get_record_store(), _json_body())
    except SurveyValidationError as exc:
        return jsonify({"error": str(exc), "missing": exc.missing}), 400
    except SurveySubmitError as exc:
        return jsonify({"error": str(exc), "detail": exc.cause.message}), 500
    return jsonify(row), 201


# ---------------------------
# Household registry
# ---------------------------
@app.route("/api/households", methods=["POST"])
def api_households_create():
    try:
        form = HouseholdRegistryForm.from_payload(_json_body())
        result = form.submit(get_record_store())
    except RegistryValidationError as exc:
        return jsonify({"error": str(exc), "errors": exc.errors}), 400
    except DuplicateMemberIdError as exc:
        return jsonify({
            "error": exc.message,
            "adhar_number": exc.adhar_number,
            "left_partial_data": exc.left_partial_data,
        }), 409
    except RegistrationError as exc:
        logger.error("Household registration failed: %s", exc)
        return jsonify({
            "error": exc.message,
            "committed": exc.committed,
            "compensated": exc.compensated,
            "left_partial_data": exc.left_partial_data,
        }), 500
    return jsonify(result.to_dict()), 201


@app.route("/api/households", methods=["GET"])
@admin_required
def api_households(admin: AdminSession):
    try:
        rows = Dashboard(get_record_store(), admin).households(request.args.get("q", ""))
    except StoreError as exc:
        return _store_failure(exc, "fetching households")
    return jsonify(rows), 200


# ---------------------------
# Admin login
# ---------------------------
@app.route("/api/admin/login", methods=["POST"])
def api_admin_login():
    data = _json_body() or request.form.to_dict()
    try:
        admin = authenticate(get_record_store(), data.get("username", ""), data.get("password", ""))
    except AuthenticationError as exc:
        return jsonify({"error": str(exc)}), 401
    session.clear()
    session.update(admin.to_cookie())
    return jsonify(admin.to_dict()), 200


@app.route("/api/admin/logout", methods=["POST"])
def api_admin_logout():
    session.clear()
    return jsonify({"status": "OK"}), 200


@app.route("/api/admin/session", methods=["GET"])
def api_admin_session():
    return jsonify(current_admin().to_dict()), 200


# ---------------------------
# Admin dashboard
# ---------------------------
@app.route("/api/dashboard/overview", methods=["GET"])
@admin_required
def api_dashboard_overview(admin: AdminSession):
    try:
        view = Dashboard(get_record_store(), admin).flat_overview(request.args.get("q", ""))
    except StoreError as exc:
        return _store_failure(exc, "building overview")
    return jsonify(view), 200


@app.route("/api/dashboard/tabs", methods=["GET"])
@admin_required
def api_dashboard_tabs(admin: AdminSession):
    try:
        view = Dashboard(get_record_store(), admin).tabbed_overview(
            request.args.get("tab", "general"), request.args.get("q", "")
        )
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    except StoreError as exc:
        return _store_failure(exc, "building tabbed overview")
    return jsonify(view), 200


@app.route("/api/dashboard/explore", methods=["GET"])
@admin_required
def api_dashboard_explore(admin: AdminSession):
    try:
        nav = Navigation.from_args(request.args)
        view = Dashboard(get_record_store(), admin).explore(nav, request.args.get("q", ""))
    except NavigationError as exc:
        return jsonify({"error": str(exc)}), 400
    except LookupError as exc:
        return jsonify({"error": str(exc)}), 404
    except StoreError as exc:
        return _store_failure(exc, "building drill-down")
    return jsonify(view), 200


@app.route("/api/residents/<int:member_id>", methods=["GET"])
@admin_required
def api_resident(admin: AdminSession, member_id: int):
    try:
        view = Dashboard(get_record_store(), admin).resident_detail(member_id)
    except LookupError as exc:
        return jsonify({"error": str(exc)}), 404
    except StoreError as exc:
        return _store_failure(exc, "fetching resident")
    return jsonify(view), 200


# All /api/* errors come back as JSON.
@app.errorhandler(404)
def _404(e):
    if request.path.startswith("/api/"):
        return jsonify({"error": "not found", "path": request.path}), 404
    return e


@app.errorhandler(405)
def _405(e):
    if request.path.startswith("/api/"):
        return jsonify({"error": "method not allowed", "path": request.path}), 405
    return e


@app.errorhandler(413)
def _413(e):
    if request.path.startswith("/api/"):
        return jsonify({"error": "payload too large"}), 413
    return e


@app.errorhandler(500)
def _500(e):
    if request.path.startswith("/api/"):
        return jsonify({"error": "internal server error"}), 500
    return e


if __name__ == "__main__":
    init_app_store()
    logger.info("%s %s on %s:%s", APP_NAME, APP_VERSION, config.HOST, config.PORT)
    app.run(host=config.HOST, port=config.PORT, debug=config.DEBUG)
