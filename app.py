"""
Classroom Tutor — Flask Web Application

JSON API for teachers (courses, lesson plans, pacing guides, materials) and
students (joining courses, chatting with the AI tutor).
"""

from __future__ import annotations

import os
from typing import Any

from flask import Flask, Response, jsonify
from werkzeug.exceptions import HTTPException

import database
from ai_resilience import LLMError
from auth import auth_bp, login_manager
from blueprints import register_blueprints
from extensions import init_gateway, limiter
from helpers import handle_gateway_error


def create_app(test_config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)

    # Load config
    if test_config is not None:
        from config import TestingConfig
        app.config.from_object(TestingConfig)
        app.config.update(test_config)
    else:
        from config import config_by_name
        env = os.environ.get("FLASK_ENV", "development")
        cfg = config_by_name.get(env, config_by_name["development"])
        app.config.from_object(cfg)
        if hasattr(cfg, "validate"):
            cfg.validate()

    # Structured logging
    from logging_config import init_logging
    init_logging(app)

    # Register database teardown
    database.init_app(app)

    # Rate limiter (disabled in testing)
    limiter.init_app(app)
    if app.config.get("TESTING"):
        limiter.enabled = False

    # LLM gateway, built once per process (tests may inject their own)
    init_gateway(app, app.config.get("LLM_GATEWAY"))

    # Register auth blueprint and login manager
    app.register_blueprint(auth_bp)
    login_manager.init_app(app)

    # Register all application blueprints
    register_blueprints(app)

    app.register_error_handler(LLMError, handle_gateway_error)

    @app.errorhandler(HTTPException)
    def json_http_error(exc: HTTPException):
        return jsonify({"error": exc.description}), exc.code

    # Security headers
    @app.after_request
    def set_security_headers(response: Response) -> Response:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if not app.debug and not app.testing:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    return app


if __name__ == "__main__":
    create_app().run(debug=True, port=5001)
