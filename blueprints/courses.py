"""Course creation, listing, enrollment by course code."""

from __future__ import annotations

from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from audit import log_event
from db_stores import CourseStoreDB, WeeklyTopicStoreDB
from helpers import (
    current_user_id,
    json_body,
    json_error,
    owned_course_or_404,
    str_field,
    student_required,
    teacher_required,
    visible_course_or_404,
)

bp = Blueprint("courses", __name__)


@bp.route("/api/courses")
@login_required
def api_list_courses():
    uid = current_user_id()
    if current_user.is_teacher:
        return jsonify(CourseStoreDB.teacher_courses(uid))
    return jsonify(CourseStoreDB.student_courses(uid))


@bp.route("/api/courses", methods=["POST"])
@teacher_required
def api_create_course():
    data = json_body()
    name = str_field(data, "name")
    subject = str_field(data, "subject")
    grade_level = str_field(data, "gradeLevel", allow_number=True)
    if not name or not subject or not grade_level:
        return json_error(400, "name, subject, and gradeLevel are required")

    course = CourseStoreDB.create(
        teacher_id=current_user_id(),
        name=name,
        description=str_field(data, "description"),
        subject=subject,
        grade_level=grade_level,
        standard_type=str_field(data, "standardType"),
        state=str_field(data, "state"),
    )
    log_event("course_create", current_user_id(), f"course_id={course['id']}")
    return jsonify(course)


@bp.route("/api/courses/<int:course_id>")
@login_required
def api_get_course(course_id):
    course = visible_course_or_404(course_id)
    course["currentTopic"] = WeeklyTopicStoreDB.latest(course_id)
    return jsonify(course)


@bp.route("/api/courses/<int:course_id>", methods=["DELETE"])
@teacher_required
def api_delete_course(course_id):
    owned_course_or_404(course_id)
    CourseStoreDB.delete(course_id)
    log_event("course_delete", current_user_id(), f"course_id={course_id}")
    return jsonify({"message": "Course deleted"})


@bp.route("/api/courses/join", methods=["POST"])
@student_required
def api_join_course():
    course = CourseStoreDB.get_by_code(str_field(json_body(), "courseCode"))
    if not course:
        return json_error(404, "Invalid course code")
    if not CourseStoreDB.enroll(course["id"], current_user_id()):
        return json_error(400, "Already enrolled in this course")
    return jsonify({"message": "Joined course", "course": course})


@bp.route("/api/courses/<int:course_id>/students")
@teacher_required
def api_course_students(course_id):
    owned_course_or_404(course_id)
    return jsonify(CourseStoreDB.students(course_id))


# ── Reports ────────────────────────────────────────────────

@bp.route("/api/courses/stats/<int:course_id>")
@teacher_required
def api_course_stats(course_id):
    """Engagement report for one course: activity, session lengths, per-student rows."""
    owned_course_or_404(course_id)
    return jsonify(CourseStoreDB.stats(course_id))


@bp.route("/api/stats")
@teacher_required
def api_teacher_stats():
    return jsonify(CourseStoreDB.teacher_stats(current_user_id()))
