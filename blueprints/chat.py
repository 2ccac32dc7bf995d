"""AI tutor chat routes."""

from __future__ import annotations

from flask import Blueprint, jsonify
from flask_login import login_required

from db_stores import ChatStoreDB, CourseStoreDB, MaterialStoreDB
from extensions import get_gateway, limiter
from helpers import current_user_id, json_body, json_error, str_field, visible_course_or_404

bp = Blueprint("chat", __name__)


@bp.route("/api/chat", methods=["POST"])
@login_required
@limiter.limit("60 per hour")
def api_chat():
    data = json_body()
    message = str_field(data, "message")
    if not message:
        return json_error(400, "message is required")

    course = visible_course_or_404(data.get("courseId"))
    context = CourseStoreDB.course_context(course["id"])
    materials = [
        {"content": m["content"], "type": m["type"]}
        for m in MaterialStoreDB.for_course(course["id"])
    ]

    reply = get_gateway().generate_tutor_reply(message, context, materials)
    ChatStoreDB(current_user_id()).add_exchange(course["id"], message, reply)
    return jsonify(reply)


@bp.route("/api/chat/<int:course_id>")
@login_required
def api_chat_history(course_id):
    visible_course_or_404(course_id)
    return jsonify(ChatStoreDB(current_user_id()).history(course_id))
