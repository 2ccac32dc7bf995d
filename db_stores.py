"""
DB-backed store classes for Classroom Tutor.

One class per aggregate. Rows are returned as plain dicts shaped for the JSON
API (camelCase keys), so blueprints can jsonify them directly.
"""

from __future__ import annotations

import json
import secrets
import sqlite3
import string
from datetime import date, datetime, timedelta

from database import get_db
from tutor import CourseContext, Standard

COURSE_CODE_ALPHABET = string.ascii_uppercase + string.digits
COURSE_CODE_LENGTH = 6
DEFAULT_TOPIC = "General review"
ACTIVITY_WINDOW_DAYS = 7


def _course_dict(row) -> dict:
    d = dict(row)
    result = {
        "id": d["id"],
        "teacherId": d["teacher_id"],
        "name": d["name"],
        "description": d["description"],
        "subject": d["subject"],
        "gradeLevel": d["grade_level"],
        "standardType": d["standard_type"],
        "state": d["state"],
        "courseCode": d["course_code"],
        "createdAt": d["created_at"],
    }
    if "student_count" in d:
        result["studentCount"] = d["student_count"]
    return result


def _topic_dict(row) -> dict:
    d = dict(row)
    return {
        "id": d["id"],
        "courseId": d["course_id"],
        "topic": d["topic"],
        "weekStart": d["week_start"],
        "standardIdentifier": d["standard_identifier"],
        "objectives": json.loads(d["objectives"] or "[]"),
        "createdAt": d["created_at"],
    }


def _material_dict(row) -> dict:
    d = dict(row)
    analysis = d.get("ai_analysis") or ""
    return {
        "id": d["id"],
        "courseId": d["course_id"],
        "title": d["title"],
        "content": d["content"],
        "type": d["type"],
        "aiAnalysis": json.loads(analysis) if analysis else None,
        "createdAt": d["created_at"],
    }


def _window_days(today: date) -> list[str]:
    """ISO dates of the reporting window, oldest first, ending today."""
    return [(today - timedelta(days=n)).isoformat() for n in range(ACTIVITY_WINDOW_DAYS - 1, -1, -1)]


def _average_minutes(sessions: list[list[datetime]]) -> float:
    if not sessions:
        return 0
    total = sum((turns[-1] - turns[0]).total_seconds() for turns in sessions)
    return round(total / len(sessions) / 60, 1)


# ── Courses & enrollment ─────────────────────────────────────────────


class CourseStoreDB:
    """Courses, join codes and enrollment."""

    @staticmethod
    def _new_code(db) -> str:
        while True:
            code = "".join(secrets.choice(COURSE_CODE_ALPHABET) for _ in range(COURSE_CODE_LENGTH))
            if not db.execute("SELECT 1 FROM courses WHERE course_code = ?", (code,)).fetchone():
                return code

    @staticmethod
    def create(teacher_id: int, name: str, description: str = "", subject: str = "",
               grade_level: str = "", standard_type: str = "", state: str = "") -> dict:
        db = get_db()
        code = CourseStoreDB._new_code(db)
        cur = db.execute(
            "INSERT INTO courses (teacher_id, name, description, subject, grade_level, "
            "standard_type, state, course_code, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (teacher_id, name, description, subject, grade_level, standard_type, state, code,
             datetime.now().isoformat()),
        )
        db.commit()
        return CourseStoreDB.get(cur.lastrowid)

    @staticmethod
    def get(course_id: int) -> dict | None:
        db = get_db()
        row = db.execute("SELECT * FROM courses WHERE id = ?", (course_id,)).fetchone()
        return _course_dict(row) if row else None

    @staticmethod
    def get_by_code(code: str) -> dict | None:
        db = get_db()
        row = db.execute(
            "SELECT * FROM courses WHERE course_code = ?", ((code or "").strip().upper(),),
        ).fetchone()
        return _course_dict(row) if row else None

    @staticmethod
    def teacher_courses(teacher_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT c.*, COUNT(e.student_id) as student_count "
            "FROM courses c LEFT JOIN enrollments e ON c.id = e.course_id "
            "WHERE c.teacher_id = ? GROUP BY c.id ORDER BY c.created_at DESC",
            (teacher_id,),
        ).fetchall()
        return [_course_dict(r) for r in rows]

    @staticmethod
    def student_courses(student_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT c.* FROM courses c JOIN enrollments e ON c.id = e.course_id "
            "WHERE e.student_id = ? ORDER BY c.name",
            (student_id,),
        ).fetchall()
        return [_course_dict(r) for r in rows]

    @staticmethod
    def delete(course_id: int) -> None:
        db = get_db()
        db.execute("DELETE FROM courses WHERE id = ?", (course_id,))
        db.commit()

    @staticmethod
    def enroll(course_id: int, student_id: int) -> bool:
        db = get_db()
        try:
            db.execute(
                "INSERT INTO enrollments (course_id, student_id, joined_at) VALUES (?, ?, ?)",
                (course_id, student_id, datetime.now().isoformat()),
            )
            db.commit()
            return True
        except sqlite3.IntegrityError:
            return False

    @staticmethod
    def is_enrolled(course_id: int, student_id: int) -> bool:
        db = get_db()
        row = db.execute(
            "SELECT 1 FROM enrollments WHERE course_id = ? AND student_id = ?",
            (course_id, student_id),
        ).fetchone()
        return row is not None

    @staticmethod
    def students(course_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT u.id, u.username, e.joined_at FROM enrollments e "
            "JOIN users u ON e.student_id = u.id WHERE e.course_id = ? ORDER BY u.username",
            (course_id,),
        ).fetchall()
        return [{"id": r["id"], "username": r["username"], "joinedAt": r["joined_at"]} for r in rows]

    @staticmethod
    def course_context(course_id: int) -> CourseContext | None:
        """Snapshot of the course's current focus for the tutor."""
        course = CourseStoreDB.get(course_id)
        if not course:
            return None
        topic = WeeklyTopicStoreDB.latest(course_id)
        standard = None
        if topic and topic["standardIdentifier"]:
            row = StandardStoreDB.get(topic["standardIdentifier"])
            if row:
                standard = Standard(identifier=row["identifier"], description=row["description"])
        return CourseContext(
            course_name=course["name"],
            subject=course["subject"],
            grade_level=course["gradeLevel"],
            current_topic=topic["topic"] if topic else DEFAULT_TOPIC,
            standard=standard,
        )

    # ── Reports ──

    @staticmethod
    def stats(course_id: int, today: date | None = None) -> dict:
        """Engagement report for one course, built from enrolled students' chat turns.

        A session is one student's chat turns on one calendar day; its length
        is the minutes between the first and last turn. "Active" means at
        least one turn in the last ACTIVITY_WINDOW_DAYS days.
        """
        today = today or date.today()
        window = _window_days(today)
        db = get_db()
        rows = db.execute(
            "SELECT m.student_id, m.created_at FROM chat_messages m "
            "JOIN enrollments e ON e.course_id = m.course_id AND e.student_id = m.student_id "
            "WHERE m.course_id = ? ORDER BY m.created_at",
            (course_id,),
        ).fetchall()

        sessions: dict[tuple[int, str], list[datetime]] = {}
        for r in rows:
            stamp = datetime.fromisoformat(r["created_at"])
            sessions.setdefault((r["student_id"], stamp.date().isoformat()), []).append(stamp)

        trend = []
        for day in window:
            day_sessions = [turns for (_, d), turns in sessions.items() if d == day]
            trend.append({
                "date": day,
                "sessions": len(day_sessions),
                "questions": sum(len(t) for t in day_sessions),
                "duration": _average_minutes(day_sessions),
            })

        activity = []
        for student in CourseStoreDB.students(course_id):
            own = [turns for (sid, _), turns in sessions.items() if sid == student["id"]]
            activity.append({
                "id": student["id"],
                "username": student["username"],
                "totalSessions": len(own),
                "avgDuration": _average_minutes(own),
                "questionsAsked": sum(len(t) for t in own),
                "lastActive": max(t[-1] for t in own).isoformat() if own else None,
            })

        return {
            "totalStudents": len(activity),
            "activeStudents": len({sid for (sid, d) in sessions if d >= window[0]}),
            "totalQuestions": len(rows),
            "averageSessionDuration": _average_minutes(list(sessions.values())),
            "engagementTrend": trend,
            "studentActivity": activity,
        }

    @staticmethod
    def teacher_stats(teacher_id: int, today: date | None = None) -> dict:
        """Dashboard rollup across every course a teacher owns."""
        window = _window_days(today or date.today())
        db = get_db()

        def scalar(sql: str) -> int:
            return db.execute(sql, (teacher_id,)).fetchone()[0]

        def per_day(table: str) -> dict[str, int]:
            rows = db.execute(
                f"SELECT substr(t.created_at, 1, 10) AS day, COUNT(*) AS n FROM {table} t "
                "JOIN courses c ON t.course_id = c.id "
                "WHERE c.teacher_id = ? AND substr(t.created_at, 1, 10) >= ? GROUP BY day",
                (teacher_id, window[0]),
            ).fetchall()
            return {r["day"]: r["n"] for r in rows}

        chats, materials = per_day("chat_messages"), per_day("materials")
        return {
            "totalStudents": scalar(
                "SELECT COUNT(DISTINCT e.student_id) FROM enrollments e "
                "JOIN courses c ON e.course_id = c.id WHERE c.teacher_id = ?"
            ),
            "totalCourses": scalar("SELECT COUNT(*) FROM courses WHERE teacher_id = ?"),
            "totalChats": scalar(
                "SELECT COUNT(*) FROM chat_messages m JOIN courses c ON m.course_id = c.id "
                "WHERE c.teacher_id = ?"
            ),
            "totalMaterials": scalar(
                "SELECT COUNT(*) FROM materials m JOIN courses c ON m.course_id = c.id "
                "WHERE c.teacher_id = ?"
            ),
            "activityData": [
                {"date": day, "chats": chats.get(day, 0), "materials": materials.get(day, 0)}
                for day in window
            ],
        }


# ── Weekly topics / lesson plans ─────────────────────────────────────


class WeeklyTopicStoreDB:
    """Weekly topics, also served as lesson plans."""

    @staticmethod
    def create(course_id: int, topic: str, week_start: str = "",
               standard_identifier: str | None = None, objectives: list[str] | None = None) -> dict:
        db = get_db()
        now = datetime.now()
        cur = db.execute(
            "INSERT INTO weekly_topics (course_id, topic, week_start, standard_identifier, "
            "objectives, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (course_id, topic, week_start or now.date().isoformat(), standard_identifier or None,
             json.dumps(objectives or []), now.isoformat()),
        )
        db.commit()
        return WeeklyTopicStoreDB.get(cur.lastrowid)

    @staticmethod
    def get(topic_id: int) -> dict | None:
        db = get_db()
        row = db.execute("SELECT * FROM weekly_topics WHERE id = ?", (topic_id,)).fetchone()
        return _topic_dict(row) if row else None

    @staticmethod
    def latest(course_id: int) -> dict | None:
        db = get_db()
        row = db.execute(
            "SELECT * FROM weekly_topics WHERE course_id = ? "
            "ORDER BY week_start DESC, id DESC LIMIT 1",
            (course_id,),
        ).fetchone()
        return _topic_dict(row) if row else None

    @staticmethod
    def for_course(course_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM weekly_topics WHERE course_id = ? ORDER BY week_start, id",
            (course_id,),
        ).fetchall()
        return [_topic_dict(r) for r in rows]

    @staticmethod
    def for_teacher(teacher_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT t.* FROM weekly_topics t JOIN courses c ON t.course_id = c.id "
            "WHERE c.teacher_id = ? ORDER BY t.week_start, t.id",
            (teacher_id,),
        ).fetchall()
        return [_topic_dict(r) for r in rows]

    @staticmethod
    def update(topic_id: int, topic: str | None = None, week_start: str | None = None,
               standard_identifier: str | None = None) -> dict | None:
        current = WeeklyTopicStoreDB.get(topic_id)
        if not current:
            return None
        db = get_db()
        db.execute(
            "UPDATE weekly_topics SET topic = ?, week_start = ?, standard_identifier = ? WHERE id = ?",
            (
                topic if topic else current["topic"],
                week_start if week_start else current["weekStart"],
                standard_identifier if standard_identifier is not None else current["standardIdentifier"],
                topic_id,
            ),
        )
        db.commit()
        return WeeklyTopicStoreDB.get(topic_id)

    @staticmethod
    def delete(topic_id: int) -> None:
        db = get_db()
        db.execute("DELETE FROM weekly_topics WHERE id = ?", (topic_id,))
        db.commit()


# ── Standards ────────────────────────────────────────────────────────


class StandardStoreDB:
    """Curriculum standards keyed by identifier."""

    @staticmethod
    def get(identifier: str) -> dict | None:
        db = get_db()
        row = db.execute("SELECT * FROM standards WHERE identifier = ?", (identifier,)).fetchone()
        return dict(row) if row else None

    @staticmethod
    def upsert(identifier: str, description: str, grade: str = "", subject: str = "",
               system: str = "") -> dict:
        db = get_db()
        db.execute(
            "INSERT INTO standards (identifier, description, grade, subject, system, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(identifier) DO UPDATE SET description = excluded.description, "
            "grade = excluded.grade, subject = excluded.subject",
            (identifier, description, grade, subject, system, datetime.now().isoformat()),
        )
        db.commit()
        return StandardStoreDB.get(identifier)

    @staticmethod
    def search(system: str = "", subject: str = "", grade: str = "") -> list[dict]:
        clauses, params = [], []
        for column, value in (("system", system), ("subject", subject), ("grade", grade)):
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        db = get_db()
        rows = db.execute(f"SELECT * FROM standards {where} ORDER BY identifier", params).fetchall()
        return [dict(r) for r in rows]


# ── Materials ────────────────────────────────────────────────────────


class MaterialStoreDB:
    """Course materials handed to the tutor as extra context."""

    @staticmethod
    def create(course_id: int, title: str, content: str, type: str = "text") -> dict:
        db = get_db()
        cur = db.execute(
            "INSERT INTO materials (course_id, title, content, type, created_at) VALUES (?, ?, ?, ?, ?)",
            (course_id, title, content, type or "text", datetime.now().isoformat()),
        )
        db.commit()
        return MaterialStoreDB.get(cur.lastrowid)

    @staticmethod
    def get(material_id: int) -> dict | None:
        db = get_db()
        row = db.execute("SELECT * FROM materials WHERE id = ?", (material_id,)).fetchone()
        return _material_dict(row) if row else None

    @staticmethod
    def for_course(course_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM materials WHERE course_id = ? ORDER BY created_at, id", (course_id,),
        ).fetchall()
        return [_material_dict(r) for r in rows]

    @staticmethod
    def save_analysis(material_id: int, analysis: dict) -> None:
        db = get_db()
        db.execute("UPDATE materials SET ai_analysis = ? WHERE id = ?", (json.dumps(analysis), material_id))
        db.commit()


# ── Tutor chat ───────────────────────────────────────────────────────


class ChatStoreDB:
    """Chat exchanges for one student."""

    def __init__(self, student_id: int):
        self.student_id = student_id

    def add_exchange(self, course_id: int, user_message: str, reply: dict) -> int:
        db = get_db()
        cur = db.execute(
            "INSERT INTO chat_messages (course_id, student_id, user_message, tutor_reply, "
            "context, suggestions, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                course_id,
                self.student_id,
                user_message,
                reply["message"],
                reply.get("context", ""),
                json.dumps(reply.get("suggestions", [])),
                datetime.now().isoformat(),
            ),
        )
        db.commit()
        return cur.lastrowid

    def history(self, course_id: int, limit: int = 100) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM (SELECT * FROM chat_messages WHERE course_id = ? AND student_id = ? "
            "ORDER BY id DESC LIMIT ?) ORDER BY id",
            (course_id, self.student_id, limit),
        ).fetchall()
        return [
            {
                "id": r["id"],
                "courseId": r["course_id"],
                "userMessage": r["user_message"],
                "tutorReply": r["tutor_reply"],
                "context": r["context"],
                "suggestions": json.loads(r["suggestions"] or "[]"),
                "createdAt": r["created_at"],
            }
            for r in rows
        ]
