"""Teacher curriculum routes: weekly topics, lesson plans, standards, pacing guides, materials."""

from __future__ import annotations

from flask import Blueprint, abort, jsonify, request
from flask_login import login_required

from db_stores import MaterialStoreDB, StandardStoreDB, WeeklyTopicStoreDB
from extensions import get_gateway, limiter
from helpers import (
    current_user_id,
    json_body,
    json_error,
    owned_course_or_404,
    str_field,
    teacher_required,
    visible_course_or_404,
)
from ingest import PDFExtractionError, extract_text, parse_page

bp = Blueprint("teacher", __name__)


def _owned_topic_or_404(topic_id: int) -> dict:
    topic = WeeklyTopicStoreDB.get(topic_id)
    if not topic:
        abort(404)
    owned_course_or_404(topic["courseId"])
    return topic


# ── Weekly topic ───────────────────────────────────────────

@bp.route("/api/weekly-topic/<int:course_id>")
@login_required
def api_weekly_topic(course_id):
    visible_course_or_404(course_id)
    return jsonify(WeeklyTopicStoreDB.latest(course_id))


@bp.route("/api/weekly-topic", methods=["POST"])
@teacher_required
def api_set_weekly_topic():
    data = json_body()
    course = owned_course_or_404(data.get("courseId"))
    topic = str_field(data, "topic")
    if not topic:
        return json_error(400, "topic is required")
    created = WeeklyTopicStoreDB.create(
        course["id"],
        topic,
        week_start=str_field(data, "weekStart")[:10],
        standard_identifier=str_field(data, "standardIdentifier", default=None),
    )
    return jsonify(created)


# ── Lesson plans ───────────────────────────────────────────

@bp.route("/api/lesson-plans")
@teacher_required
def api_lesson_plans():
    return jsonify(WeeklyTopicStoreDB.for_teacher(current_user_id()))


@bp.route("/api/lesson-plans/<int:course_id>")
@teacher_required
def api_course_lesson_plans(course_id):
    owned_course_or_404(course_id)
    return jsonify(WeeklyTopicStoreDB.for_course(course_id))


@bp.route("/api/lesson-plans/<int:topic_id>", methods=["PUT"])
@teacher_required
def api_update_lesson_plan(topic_id):
    _owned_topic_or_404(topic_id)
    data = json_body()
    updated = WeeklyTopicStoreDB.update(
        topic_id,
        topic=str_field(data, "topic") or None,
        week_start=str_field(data, "weekStart")[:10] or None,
        standard_identifier=str_field(data, "standardIdentifier", default=None),
    )
    return jsonify(updated)


@bp.route("/api/lesson-plans/<int:topic_id>", methods=["DELETE"])
@teacher_required
def api_delete_lesson_plan(topic_id):
    _owned_topic_or_404(topic_id)
    WeeklyTopicStoreDB.delete(topic_id)
    return jsonify({"message": "Lesson plan deleted"})


# ── Standards ──────────────────────────────────────────────

@bp.route("/api/standards")
@login_required
def api_standards():
    return jsonify(StandardStoreDB.search(
        system=request.args.get("system", ""),
        subject=request.args.get("subject", ""),
        grade=request.args.get("grade", ""),
    ))


@bp.route("/api/analyze-topic", methods=["POST"])
@teacher_required
@limiter.limit("30 per hour")
def api_analyze_topic():
    data = json_body()
    description = str_field(data, "description")
    grade = str_field(data, "grade", allow_number=True)
    subject = str_field(data, "subject")
    if not description or not grade or not subject:
        return json_error(400, "description, grade, and subject are required")

    result = get_gateway().match_standards(
        description, grade, subject, str_field(data, "standardsSystem") or "commonCore",
    )
    return jsonify(result)


# ── Pacing guides ──────────────────────────────────────────

@bp.route("/api/upload-pacing-guide", methods=["POST"])
@teacher_required
@limiter.limit("10 per hour")
def api_upload_pacing_guide():
    course = owned_course_or_404(request.form.get("courseId"))
    upload = request.files.get("file")
    if not upload or not upload.filename:
        return json_error(400, "No file uploaded")
    if not upload.filename.lower().endswith(".pdf"):
        return json_error(400, "Pacing guide must be a PDF")

    try:
        start_page = parse_page(request.form.get("startPage"), default=1)
        end_page = parse_page(request.form.get("endPage"))
        text = extract_text(upload.stream, start_page, end_page)
    except PDFExtractionError as e:
        return json_error(400, str(e))
    if not text:
        return json_error(400, "No text could be extracted from the PDF")

    result = get_gateway().extract_lessons_from_pacing_guide(text, {
        "grade": request.form.get("grade") or course["gradeLevel"],
        "subject": request.form.get("subject") or course["subject"],
        "course_id": course["id"],
        "standards_system": request.form.get("standardsSystem") or course["standardType"] or "commonCore",
    })
    return jsonify(result)


@bp.route("/api/save-plan", methods=["POST"])
@teacher_required
def api_save_plan():
    """Persist a reviewed plan as weekly topics.

    Pacing-guide plans send lessons[] with one date each; curriculum-wizard
    plans send a single standard with one or more dates. Nothing is written
    unless the whole plan is valid.
    """
    data = json_body()
    course = owned_course_or_404(data.get("courseId"))
    dates = data.get("dates") or []
    lessons = data.get("lessons") or []
    objectives = data.get("objectives") or []
    if not isinstance(dates, list) or not all(isinstance(d, str) for d in dates):
        return json_error(400, "dates must be a list of strings")
    if not isinstance(lessons, list):
        return json_error(400, "lessons must be a list")
    if not isinstance(objectives, list):
        return json_error(400, "objectives must be a list")
    dates = [d.strip()[:10] for d in dates]

    created = []
    if lessons:
        if len(dates) < len(lessons):
            return json_error(400, "Each lesson needs a date")
        plan = []
        for lesson in lessons:
            if not isinstance(lesson, dict):
                return json_error(400, "Every lesson must be an object")
            plan.append((str_field(lesson, "title"), str_field(lesson, "standard", default=None)))
        if not all(title for title, _ in plan):
            return json_error(400, "Every lesson needs a title")
        for (title, standard), date in zip(plan, dates):
            created.append(WeeklyTopicStoreDB.create(
                course["id"], title, week_start=date, standard_identifier=standard,
            ))
        return jsonify({"message": "Plan saved", "topics": created})

    description = str_field(data, "standardDescription")
    if not description or not dates:
        return json_error(400, "standardDescription and dates are required")

    identifier = str_field(data, "standardId", default=None)
    grade = str_field(data, "standardGrade", allow_number=True) or course["gradeLevel"]
    subject = str_field(data, "standardSubject") or course["subject"]
    if identifier:
        StandardStoreDB.upsert(
            identifier, description, grade=grade, subject=subject, system=course["standardType"],
        )
    objectives = [o.strip() for o in objectives if isinstance(o, str) and o.strip()]
    for date in dates:
        created.append(WeeklyTopicStoreDB.create(
            course["id"], description, week_start=date,
            standard_identifier=identifier, objectives=objectives,
        ))
    return jsonify({"message": "Plan saved", "topics": created})


# ── Materials ──────────────────────────────────────────────

@bp.route("/api/materials", methods=["POST"])
@teacher_required
def api_create_material():
    data = json_body()
    course = owned_course_or_404(data.get("courseId"))
    title = str_field(data, "title")
    content = str_field(data, "content")
    if not title or not content:
        return json_error(400, "title and content are required")
    material = MaterialStoreDB.create(course["id"], title, content, str_field(data, "type") or "text")
    return jsonify(material)


@bp.route("/api/materials/<int:course_id>")
@teacher_required
def api_course_materials(course_id):
    owned_course_or_404(course_id)
    return jsonify(MaterialStoreDB.for_course(course_id))


@bp.route("/api/materials/<int:material_id>/analyze", methods=["POST"])
@teacher_required
@limiter.limit("30 per hour")
def api_analyze_material(material_id):
    material = MaterialStoreDB.get(material_id)
    if not material:
        abort(404)
    owned_course_or_404(material["courseId"])
    analysis = get_gateway().analyze_material(material["content"])
    MaterialStoreDB.save_analysis(material_id, analysis)
    return jsonify(analysis)
