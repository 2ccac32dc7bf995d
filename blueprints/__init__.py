"""
Blueprint registration for Classroom Tutor.

All blueprints are registered without URL prefixes; every route lives under /api.
"""

from __future__ import annotations


def register_blueprints(app):
    from blueprints.courses import bp as courses_bp
    from blueprints.teacher import bp as teacher_bp
    from blueprints.chat import bp as chat_bp

    app.register_blueprint(courses_bp)
    app.register_blueprint(teacher_bp)
    app.register_blueprint(chat_bp)
