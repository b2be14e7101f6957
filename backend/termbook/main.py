"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the termbook backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and return JSON responses. Domain errors are mapped onto
status codes by the exception handlers below.

Endpoints implemented:
- GET/POST /categories, GET/PUT/DELETE /categories/{key}
- PUT /categories/{key}/favorite
- GET /categories/{key}/descendants, GET /categories/{key}/path
- POST /categories/seed
- GET/POST /terms, GET/PUT/DELETE /terms/{term_id}, PUT /terms/{term_id}/favorite
- POST /activity, GET /activity/logs, GET /activity/logs/{day}
- GET /activity/summaries, GET /activity/summaries/{day}, GET /activity/streak
- GET /activity/study-time, GET /activity/stats
- POST /study/sessions, GET/DELETE /study/sessions/{session_id},
  POST /study/sessions/{session_id}/reveal, POST /study/sessions/{session_id}/answer
- GET /health
"""

import json
import logging
import time
import uuid
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from . import services
from .config import settings
from .database import create_db_and_tables, get_store
from .errors import ConflictError, NotFoundError, PartialFailure, StoreError, ValidationError
from .schemas import (
    ActivityIn, ActivityOut, CategoryIn, CategoryUpdate, FavoriteIn, FavoriteOut, StudyAnswerIn, StudyStartIn,
    TermIn, TermUpdate,
)
from .store import DocumentStore
from .study import StudySession, StudySessionRegistry
from .tree import breadcrumb

app = FastAPI(title="Termbook Study API")
logger = logging.getLogger("termbook.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()
_study_sessions = StudySessionRegistry(max_sessions=settings.STUDY_MAX_SESSIONS)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {"request_id": req_id, "path": request.url.path, "method": request.method,
                 "duration_ms": elapsed_ms},
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info(
        "request_done %s",
        json.dumps(
            {"request_id": req_id, "path": request.url.path, "method": request.method,
             "status_code": response.status_code, "duration_ms": elapsed_ms},
            ensure_ascii=True,
        ),
    )
    return response


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception):
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handler


app.add_exception_handler(ValidationError, _error_handler(400))
app.add_exception_handler(NotFoundError, _error_handler(404))
app.add_exception_handler(ConflictError, _error_handler(409))
app.add_exception_handler(StoreError, _error_handler(503))


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}


@app.get("/categories")
def list_categories(store: DocumentStore = Depends(get_store)):
    """List every category with its breadcrumb, path and child count."""
    return services.CategoryService(store).list_categories()


@app.post("/categories", status_code=201)
def create_category(payload: CategoryIn, store: DocumentStore = Depends(get_store)):
    """Create a category; its key is derived from the name."""
    svc = services.CategoryService(store)
    key = svc.create_category(
        payload.category_name,
        icon=payload.category_icon,
        color=payload.category_color,
        parent_id=payload.parent_id,
        display_order=payload.display_order,
        is_favorite=payload.is_favorite,
    )
    return svc.get(key)


@app.post("/categories/seed")
def seed_categories(store: DocumentStore = Depends(get_store)):
    """Write the default category tree if the store has no categories."""
    return {"created": services.CategoryService(store).seed_default_categories()}


@app.get("/categories/{key}")
def get_category(key: str, store: DocumentStore = Depends(get_store)):
    return services.CategoryService(store).get(key)


@app.put("/categories/{key}")
def update_category(key: str, payload: CategoryUpdate, store: DocumentStore = Depends(get_store)):
    """Edit a category. Sending `parent_id: null` explicitly moves it to the root."""
    changes = payload.model_dump(include=payload.model_fields_set)
    return services.CategoryService(store).update_category(key, changes)


@app.delete("/categories/{key}")
def delete_category(key: str, store: DocumentStore = Depends(get_store)):
    """Delete an unused category; its children move up to its parent."""
    reparented = services.CategoryService(store).delete_category(key)
    return {"message": "category deleted", "reparented": reparented}


@app.put("/categories/{key}/favorite", response_model=FavoriteOut)
def set_category_favorite(key: str, payload: FavoriteIn, store: DocumentStore = Depends(get_store)):
    """Set the favorite flag on a category and every category below it."""
    result = services.CategoryService(store).propagate_favorite(key, payload.is_favorite)
    action = "added to" if result.is_favorite else "removed from"
    return FavoriteOut(
        is_favorite=result.is_favorite,
        updated_count=result.updated_count,
        updated_ids=result.updated_ids,
        message=f"{action} favorites ({result.updated_count} categories)",
    )


@app.get("/categories/{key}/descendants")
def category_descendants(key: str, store: DocumentStore = Depends(get_store)):
    return {"id": key, "descendants": sorted(services.CategoryService(store).get_all_descendants(key))}


@app.get("/categories/{key}/path")
def category_path(key: str, store: DocumentStore = Depends(get_store)):
    svc = services.CategoryService(store)
    path = svc.resolve_path(key)
    return {
        "id": key,
        "path": [p["id"] for p in path],
        "breadcrumb": breadcrumb(path),
    }


@app.get("/terms")
def list_terms(category: str = "all", q: Optional[str] = None, store: DocumentStore = Depends(get_store)):
    """List terms newest first, optionally filtered by category and search text."""
    svc = services.TermService(store)
    if q:
        return svc.search_terms(q, category)
    return svc.list_terms(category)


@app.post("/terms", status_code=201)
def create_term(payload: TermIn, store: DocumentStore = Depends(get_store)):
    """Create a term and record an `add_term` activity for it.

    A failure while recording the activity does not undo the term; it is
    reported in the `warning` field instead.
    """
    svc = services.TermService(store)
    term_id = svc.create_term(payload.term, payload.meaning, payload.category,
                              example=payload.example, image_url=payload.image_url)
    out = {**svc.get_term(term_id), "warning": None}
    try:
        services.ActivityService(store).log_activity("add_term", payload.category, {})
    except (PartialFailure, StoreError) as e:
        logger.warning("add_term_activity_failed %s", json.dumps({"term_id": term_id, "error": str(e)}))
        out["warning"] = f"term saved but activity was not fully recorded: {e}"
    return out


@app.get("/terms/{term_id}")
def get_term(term_id: str, store: DocumentStore = Depends(get_store)):
    return services.TermService(store).get_term(term_id)


@app.put("/terms/{term_id}")
def update_term(term_id: str, payload: TermUpdate, store: DocumentStore = Depends(get_store)):
    return services.TermService(store).update_term(term_id, payload.model_dump(exclude_none=True))


@app.delete("/terms/{term_id}")
def delete_term(term_id: str, store: DocumentStore = Depends(get_store)):
    services.TermService(store).delete_term(term_id)
    return {"message": "term deleted"}


@app.put("/terms/{term_id}/favorite")
def toggle_term_favorite(term_id: str, store: DocumentStore = Depends(get_store)):
    return {"id": term_id, "is_favorite": services.TermService(store).toggle_term_favorite(term_id)}


@app.post("/activity", status_code=201, response_model=ActivityOut)
def log_activity(payload: ActivityIn, store: DocumentStore = Depends(get_store)):
    """Record an activity and update the day's summary.

    When the log is stored but the summary update fails the response is
    202 with `summary_updated: false`, so clients can warn that
    statistics may be stale.
    """
    svc = services.ActivityService(store)
    try:
        log_id = svc.log_activity(payload.type, payload.category, payload.data)
    except PartialFailure as e:
        body = ActivityOut(id=e.log_id, summary_updated=False, warning=str(e))
        return JSONResponse(status_code=202, content=body.model_dump())
    return ActivityOut(id=log_id)


@app.get("/activity/logs")
def activity_logs(start: str, end: str, store: DocumentStore = Depends(get_store)):
    return services.ActivityService(store).fetch_logs(start, end)


@app.get("/activity/logs/{day}")
def activity_logs_for_day(day: str, store: DocumentStore = Depends(get_store)):
    return services.ActivityService(store).fetch_logs_by_date(day)


@app.get("/activity/summaries")
def daily_summaries(start: str, end: str, store: DocumentStore = Depends(get_store)):
    return services.ActivityService(store).fetch_summaries(start, end)


@app.get("/activity/summaries/{day}")
def daily_summary(day: str, store: DocumentStore = Depends(get_store)):
    summary = services.ActivityService(store).fetch_daily_summary(day)
    if summary is None:
        raise HTTPException(status_code=404, detail=f"no activity recorded on {day}")
    return summary


@app.get("/activity/streak")
def study_streak(store: DocumentStore = Depends(get_store)):
    return {"streak": services.ActivityService(store).study_streak()}


@app.get("/activity/study-time")
def study_time(start: Optional[str] = None, end: Optional[str] = None, category: Optional[str] = None,
               store: DocumentStore = Depends(get_store)):
    """Minutes studied in a date range (all recorded days when unbounded)."""
    svc = services.ActivityService(store)
    return {
        "start": start,
        "end": end,
        "category": category,
        "total": svc.study_time_total(start, end, category),
        "byCategory": svc.study_time_by_category(start, end),
    }


@app.get("/activity/stats")
def activity_stats(store: DocumentStore = Depends(get_store)):
    """Figures shown next to the study calendar."""
    svc = services.ActivityService(store)
    return {
        "streak": svc.study_streak(),
        "weeklyStudyTime": svc.weekly_study_time(),
        "monthlyStudyTime": svc.monthly_study_time(),
        "totalStudyTime": svc.study_time_total(),
    }


@app.post("/study/sessions", status_code=201)
def start_study_session(payload: StudyStartIn, store: DocumentStore = Depends(get_store)):
    """Open a flashcard session over the selected terms in random order."""
    terms = services.TermService(store).list_terms(payload.category)
    if payload.favorites_only:
        terms = [t for t in terms if t.get("is_favorite")]
    if payload.limit:
        terms = terms[:payload.limit]
    session = StudySession(services.ActivityService(store))
    if not session.start(terms):
        raise ValidationError("no terms to study for this selection")
    session_id = _study_sessions.open(session)
    logger.info("study_session_started %s", json.dumps({"session_id": session_id, "total": session.total}))
    return {"id": session_id, **session.snapshot()}


@app.get("/study/sessions/{session_id}")
def get_study_session(session_id: str):
    return {"id": session_id, **_study_sessions.get(session_id).snapshot()}


@app.post("/study/sessions/{session_id}/reveal")
def reveal_study_card(session_id: str):
    session = _study_sessions.get(session_id)
    if session.current_term is None:
        raise ConflictError("the session has no card to reveal")
    session.reveal()
    return {"id": session_id, **session.snapshot()}


@app.post("/study/sessions/{session_id}/answer")
def answer_study_card(session_id: str, payload: StudyAnswerIn):
    """Record the answer for the current card and move to the next one.

    A review whose daily summary could not be updated is still counted;
    the response then carries a `warning`.
    """
    session = _study_sessions.get(session_id)
    if session.current_term is None:
        raise ConflictError("the session has no card to answer")
    warning = None
    try:
        log_id = session.answer(payload.is_correct)
    except PartialFailure as e:
        log_id, warning = e.log_id, str(e)
    return {"id": session_id, "log_id": log_id, "warning": warning, **session.snapshot()}


@app.delete("/study/sessions/{session_id}")
def end_study_session(session_id: str):
    _study_sessions.close(session_id)
    return {"message": "study session ended"}
