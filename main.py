import base64
import hashlib
import json
import logging
import os
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from database import db
from lessons import lessons_on, parse_templates
from pricing import PriceCalculator, SUBJECTS, calculate_price, default_subject_tiers
from recurring import TemplateDaySelection, TemplateSelectionError, expand
from salary import MonthlyReport, aggregate
from schemas import Lesson, MonthlySalaryRecord, Parity, PricingTier, Role, Templates, User
from store import UserNotFound, UserStore

logger = logging.getLogger(__name__)

app = FastAPI(title="Lesson Tracker API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

TOKEN_DAYS = 30
MAX_YEAR = 9999


# Helpers
def get_store() -> UserStore:
    if db is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return UserStore(db)


def hash_password(pw: str) -> str:
    return hashlib.sha256(pw.encode()).hexdigest()


def make_token(user_id: str, email: str, role: str) -> str:
    expires = datetime.now(timezone.utc) + timedelta(days=TOKEN_DAYS)
    payload = {"sub": user_id, "email": email, "role": role, "exp": int(expires.timestamp())}
    raw = json.dumps(payload).encode()
    return base64.urlsafe_b64encode(raw).decode()


def not_found(e: UserNotFound, what: str = "User") -> HTTPException:
    logger.info("%s not found: %s", what, e)
    return HTTPException(status_code=404, detail=f"{what} not found")


def templates_payload(templates: Templates) -> dict:
    return templates.to_document()


def report_payload(report: MonthlyReport) -> dict:
    return {
        "year": report.year,
        "month": report.month,
        "periodStart": report.period_start.isoformat(),
        "periodEnd": report.period_end.isoformat(),
        "total": report.total,
        "count": report.count,
        "actualSalary": report.actual_salary,
        "studentTotal": report.student_total,
        "subjectTotal": report.subject_total,
        "breakdown": [
            {
                "subject": g.subject,
                "studentCount": g.student_count,
                "count": g.count,
                "subtotal": g.subtotal,
                "lessons": [lesson.to_document() for lesson in g.lessons],
            }
            for g in report.breakdown
        ],
    }


@app.get("/")
def root():
    return {"name": "Lesson Tracker", "status": "ok"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected & Working"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = db.name if hasattr(db, "name") else "❌ Unknown"
            response["connection_status"] = "Connected"
            try:
                response["collections"] = db.list_collection_names()[:10]
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
        else:
            response["database"] = "⚠️ Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ============ Auth ============
class Signup(BaseModel):
    email: str
    password: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)


@app.post("/api/auth/signup")
def signup(payload: Signup, store: UserStore = Depends(get_store)):
    if store.find_by_email(payload.email):
        raise HTTPException(status_code=409, detail="Email already in use")
    user = User(email=payload.email, name=payload.name, password_hash=hash_password(payload.password))
    user_id = store.create_user(user)
    return {"id": user_id, "email": user.email, "name": user.name, "role": user.role.value}


class Login(BaseModel):
    email: str
    password: str


@app.post("/api/auth/login")
def login(payload: Login, store: UserStore = Depends(get_store)):
    user = store.find_by_email(payload.email)
    if not user or user.get("passwordHash") != hash_password(payload.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    user_id = str(user["_id"])
    role = user.get("role", Role.EMPLOYEE.value)
    token = make_token(user_id, user["email"], role)
    return {"token": token, "user": {"id": user_id, "email": user["email"], "name": user.get("name"), "role": role}}


# ============ Teachers ============
@app.get("/api/teachers")
def list_teachers(store: UserStore = Depends(get_store)):
    return {"teachers": store.list_teachers()}


class PricingUpdate(BaseModel):
    subjects: Dict[str, List[PricingTier]]


@app.get("/api/teachers/{teacher_id}/pricing")
def get_teacher_pricing(teacher_id: str, store: UserStore = Depends(get_store)):
    try:
        teacher_id = store.resolve_id(teacher_id)
    except UserNotFound as e:
        raise not_found(e, "Teacher")
    pricing = store.get_pricing(teacher_id)
    if pricing is None:
        subjects, is_default = default_subject_tiers(), True
    else:
        subjects, is_default = pricing.subjects, False
    return {
        "teacherId": teacher_id,
        "isDefault": is_default,
        "subjects": {s: [t.to_document() for t in tiers] for s, tiers in subjects.items()},
    }


@app.put("/api/teachers/{teacher_id}/pricing")
def set_teacher_pricing(teacher_id: str, payload: PricingUpdate, store: UserStore = Depends(get_store)):
    for subject, tiers in payload.subjects.items():
        if not tiers:
            raise HTTPException(status_code=400, detail=f"No tiers given for {subject}")
    try:
        pricing = store.save_pricing(teacher_id, payload.subjects)
    except UserNotFound as e:
        raise not_found(e, "Teacher")
    return {"teacherId": pricing.teacher_id, "isDefault": False, "subjects": pricing.to_document()["subjects"]}


@app.get("/api/teachers/{teacher_id}/report")
def teacher_report(teacher_id: str, year: int = Query(..., ge=1, le=MAX_YEAR),
                   month: int = Query(..., ge=1, le=12), store: UserStore = Depends(get_store)):
    try:
        data = store.load(teacher_id)
        teacher_id = store.resolve_id(teacher_id)
    except UserNotFound as e:
        raise not_found(e, "Teacher")
    pricing = store.get_pricing(teacher_id)
    calculator = PriceCalculator(overrides={teacher_id: pricing.subjects} if pricing else None)
    actual = next((s for s in data.salaries if s.year == year and s.month == month), None)
    report = aggregate(data.lessons, year, month, calculator=calculator, tutor_id=teacher_id, actual=actual)
    return report_payload(report)


# ============ Lessons ============
@app.get("/api/lessons")
def get_lessons(userId: str, store: UserStore = Depends(get_store)):
    try:
        data = store.load(userId)
    except UserNotFound as e:
        raise not_found(e)
    return {
        "lessons": [lesson.to_document() for lesson in data.lessons],
        "templates": templates_payload(data.templates),
        "salaries": [s.to_document() for s in data.salaries],
    }


class SaveUserData(BaseModel):
    userId: str
    lessons: Optional[List[dict]] = None
    templates: Optional[dict] = None


@app.post("/api/lessons")
def save_lessons(payload: SaveUserData, store: UserStore = Depends(get_store)):
    response = {"message": "Data saved successfully"}
    try:
        if payload.lessons is not None:
            lessons = store.replace_lessons(payload.userId, payload.lessons)
            response["lessons"] = [lesson.to_document() for lesson in lessons]
            response["rejected"] = len(payload.lessons) - len(lessons)
        if payload.templates is not None:
            templates = store.replace_templates(payload.userId, parse_templates(payload.templates))
            response["templates"] = templates_payload(templates)
    except UserNotFound as e:
        raise not_found(e)
    return response


class AddLesson(BaseModel):
    userId: str
    lesson: Lesson


@app.post("/api/lessons/add")
def add_lesson(payload: AddLesson, store: UserStore = Depends(get_store)):
    try:
        store.add_lessons(payload.userId, [payload.lesson])
    except UserNotFound as e:
        raise not_found(e)
    return {"message": "Lesson added", "lesson": payload.lesson.to_document()}


@app.delete("/api/lessons")
def delete_lesson(userId: str, lessonId: str, store: UserStore = Depends(get_store)):
    try:
        deleted = store.delete_lesson(userId, lessonId)
    except UserNotFound as e:
        raise not_found(e)
    if not deleted:
        raise HTTPException(status_code=404, detail="Lesson not found")
    return {"message": "Lesson deleted successfully"}


@app.get("/api/lessons/day")
def view_day(userId: str, day: date = Query(..., alias="date"), store: UserStore = Depends(get_store)):
    try:
        data = store.load(userId)
        teacher_id = store.resolve_id(userId)
    except UserNotFound as e:
        raise not_found(e)
    pricing = store.get_pricing(teacher_id)
    calculator = PriceCalculator(overrides={teacher_id: pricing.subjects} if pricing else None)
    lessons = sorted(lessons_on(data.lessons, day), key=lambda lesson: lesson.time)
    return {
        "date": day.isoformat(),
        "lessons": [
            {**lesson.to_document(), "price": calculator.price(lesson.subject, lesson.student_name, teacher_id)}
            for lesson in lessons
        ],
    }


@app.delete("/api/lessons/day")
def clear_day(userId: str, day: date = Query(..., alias="date"), store: UserStore = Depends(get_store)):
    try:
        cleared = store.clear_day(userId, day)
    except UserNotFound as e:
        raise not_found(e)
    return {"message": f"Cleared {cleared} lessons", "clearedCount": cleared}


@app.delete("/api/lessons/month")
def clear_month(userId: str, year: int = Query(..., ge=1, le=MAX_YEAR), month: int = Query(..., ge=1, le=12),
                store: UserStore = Depends(get_store)):
    try:
        cleared = store.clear_month(userId, year, month)
    except UserNotFound as e:
        raise not_found(e)
    return {"message": f"Cleared {cleared} lessons", "clearedCount": cleared}


class ApplyTemplate(BaseModel):
    userId: str
    parity: Parity
    year: int = Field(..., ge=1, le=MAX_YEAR)
    month: int = Field(..., ge=1, le=12)
    days: Optional[List[int]] = None


@app.post("/api/lessons/apply-template")
def apply_template(payload: ApplyTemplate, store: UserStore = Depends(get_store)):
    try:
        data = store.load(payload.userId)
    except UserNotFound as e:
        raise not_found(e)
    template = data.templates.bucket(payload.parity)
    if not template:
        raise HTTPException(status_code=400, detail=f"No {payload.parity.value} template configured")

    def merge(new_lessons: List[Lesson]) -> None:
        store.add_lessons(payload.userId, new_lessons)

    if payload.days is None:
        added = expand(template, payload.parity, payload.year, payload.month, data.lessons)
        merge(added)
    else:
        selection = TemplateDaySelection()
        selection.begin(payload.parity, payload.year, payload.month)
        for day in set(payload.days):
            try:
                selection.toggle(day)
            except TemplateSelectionError as e:
                selection.cancel()
                raise HTTPException(status_code=400, detail=str(e))
        result = selection.confirm(template, data.lessons, merge)
        if not result.ok:
            raise HTTPException(status_code=500, detail=f"Failed to apply template: {result.error}")
        added = result.added
    logger.info("Applied %s template to %s for %d-%02d: %d lessons", payload.parity.value, payload.userId,
                payload.year, payload.month, len(added))
    return {"addedCount": len(added), "lessons": [lesson.to_document() for lesson in added]}


@app.get("/api/templates/revenue")
def template_revenue(userId: str, parity: Parity, store: UserStore = Depends(get_store)):
    """Estimated earnings of one day following the template, at default prices."""
    try:
        data = store.load(userId)
    except UserNotFound as e:
        raise not_found(e)
    template = data.templates.bucket(parity)
    return {"parity": parity.value, "count": len(template),
            "revenue": sum(calculate_price(s.subject, s.student_name) for s in template)}


class ClearCorrupted(BaseModel):
    userId: str


@app.post("/api/clear-corrupted")
def clear_corrupted(payload: ClearCorrupted, store: UserStore = Depends(get_store)):
    try:
        cleared, kept, templates = store.clear_corrupted(payload.userId)
    except UserNotFound as e:
        raise not_found(e)
    if cleared:
        message = f"Cleared {cleared} corrupted lessons, kept {kept} valid lessons"
    else:
        message = "No corrupted lessons found"
    return {"message": message, "clearedCount": cleared, "validCount": kept, "templates": templates_payload(templates)}


# ============ Salaries ============
@app.get("/api/teacher-salary")
def get_teacher_salary(teacherId: str, year: int = Query(..., ge=1, le=MAX_YEAR),
                       month: int = Query(..., ge=1, le=12), store: UserStore = Depends(get_store)):
    try:
        record = store.get_salary(teacherId, year, month)
    except UserNotFound as e:
        raise not_found(e, "Teacher")
    return {"teacherId": teacherId, "year": year, "month": month, "salary": record.salary if record else None}


class SalaryUpdate(MonthlySalaryRecord):
    teacher_id: str = Field(..., alias="teacherId")


@app.post("/api/teacher-salary")
def set_teacher_salary(payload: SalaryUpdate, store: UserStore = Depends(get_store)):
    record = MonthlySalaryRecord(year=payload.year, month=payload.month, salary=payload.salary)
    try:
        store.set_salary(payload.teacher_id, record)
    except UserNotFound as e:
        raise not_found(e, "Teacher")
    return {"message": "Salary saved successfully", "teacherId": payload.teacher_id, **record.to_document()}


# ============ Schemas Discovery (for migrations/tools) ============
@app.get("/schema")
def get_schema():
    return {
        "user": {
            "fields": ["email", "name", "role", "passwordHash", "lessons", "templates", "salaries"],
            "indexes": ["email"],
        },
        "teacherpricing": {
            "fields": ["teacherId", "subjects"],
            "indexes": ["teacherId"],
        },
        "subjects": SUBJECTS,
    }


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
