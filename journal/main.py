# journal/main.py
import time
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from journal import __version__, models, schemas, services
from journal.config import settings
from journal.core.exceptions import (
    BadRequestException, ConflictException, NotFoundException, UnauthorizedException
)
from journal.core.logging import logger, setup_logging
from journal.core.security import (
    create_access_token, get_current_user, hash_password, require_admin, verify_password
)
from journal.database import get_db, init_db

setup_logging()

# Rate limiter, identifies clients by their IP address
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Database initialized")
    yield


# ════════════════════════════════════════
# APP + MIDDLEWARE
# ════════════════════════════════════════

app = FastAPI(
    title="Journal API",
    version=__version__,
    description="Personal journal: entries, habits, quick notes, insights",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start    = time.time()
    response = await call_next(request)
    ms       = (time.time() - start) * 1000
    logger.info(f"{request.method} {request.url.path} → {response.status_code} ({ms:.0f}ms)")
    return response


@app.exception_handler(Exception)
async def global_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Something went wrong. Please try again."})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


# ════════════════════════════════════════
# ROUTES (all under /api/)
# ════════════════════════════════════════

# ── Health Check ────────────────────────
@app.get("/")
def health_check():
    return {"status": "online", "version": __version__, "message": "Journal API is running"}


# ── Auth ────────────────────────────────
@app.post("/api/auth/register", response_model=schemas.UserResponse,
          status_code=status.HTTP_201_CREATED, tags=["Auth"])
@limiter.limit("3/minute")
def register(
    request: Request,
    user: schemas.UserCreate,
    db: Session = Depends(get_db)
):
    if services.get_user_by_username(db, user.username):
        logger.warning(f"Registration attempt with taken username: {user.username}")
        raise ConflictException("Username already taken")
    new_user = services.create_user(db, user.username, hash_password(user.password))
    logger.info(f"New user registered: {user.username}")
    return new_user


@app.post("/api/auth/login", response_model=schemas.Token, tags=["Auth"])
@limiter.limit("5/minute")
def login(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
):
    user = services.get_user_by_username(db, form_data.username)
    if not user or not verify_password(form_data.password, user.password_hash):
        logger.warning(f"Failed login attempt: {form_data.username}")
        raise UnauthorizedException("Invalid credentials")

    logger.info(f"User logged in: {user.username}")
    return {
        "access_token": create_access_token(user),
        "token_type":   "bearer",
        "user":         user,
    }


@app.get("/api/auth/profile", response_model=schemas.UserResponse, tags=["Auth"])
def get_profile(current_user: models.User = Depends(get_current_user)):
    return current_user


# ── Entries ──────────────────────────────
@app.get("/api/entries/dates", response_model=list[date], tags=["Entries"])
def get_entry_dates(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return services.get_entry_dates(db, current_user.id)


@app.get("/api/entries/all", response_model=list[schemas.EntryResponse], tags=["Entries"])
def get_all_entries(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return services.get_all_entries(db, current_user.id)


@app.get("/api/entries/{entry_date}", response_model=schemas.EntryResponse, tags=["Entries"])
def get_entry(
    entry_date: date,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    entry = services.get_entry(db, current_user.id, entry_date)
    if not entry:
        raise NotFoundException("Entry not found for this date")
    return entry


@app.post("/api/entries", response_model=schemas.EntrySaved, tags=["Entries"])
@app.put("/api/entries", response_model=schemas.EntrySaved, tags=["Entries"])
def save_entry(
    payload: schemas.EntrySave,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    entry = services.save_entry(
        db, current_user.id, payload.date,
        payload.content, payload.tags, payload.mood
    )
    logger.info(f"{current_user.username}: saved entry for {payload.date}")
    return {"message": "Entry saved successfully", "entry_id": entry.id}


@app.delete("/api/entries/{entry_date}", response_model=schemas.MessageResponse, tags=["Entries"])
def delete_entry(
    entry_date: date,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    if not services.delete_entry(db, current_user.id, entry_date):
        raise NotFoundException("Entry not found for this date")
    logger.info(f"{current_user.username}: deleted entry for {entry_date}")
    return {"message": "Entry deleted successfully"}


@app.get("/api/search", response_model=list[schemas.EntryResponse], tags=["Entries"])
def search_entries(
    q: str = "",
    tags: str = Query("", description="Comma separated tags, all must match"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    tag_list = [t for t in tags.split(",") if t]
    return services.search_entries(db, current_user.id, q, tag_list)


@app.get("/api/tags", response_model=list[str], tags=["Entries"])
def get_all_tags(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return services.get_all_tags(db, current_user.id)


@app.get("/api/streak", response_model=schemas.StreakResponse, tags=["Insights"])
def get_streak(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return services.get_streak(db, current_user.id)


@app.get("/api/stats", response_model=schemas.StatsResponse, tags=["Insights"])
def get_stats(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return services.get_stats(db, current_user.id)


@app.get("/api/export", response_model=schemas.EntriesExport, tags=["Entries"])
def export_entries(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    data = services.export_entries(db, current_user.id)
    logger.info(f"{current_user.username}: exported {data['total_entries']} entries")
    return data


# ── Habits ───────────────────────────────
@app.get("/api/habits", response_model=list[schemas.HabitResponse], tags=["Habits"])
def get_habits(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return services.get_habits(db, current_user.id)


@app.get("/api/habits/insights", response_model=schemas.HabitInsights, tags=["Habits"])
def get_habit_insights(
    range_token: str = Query(services.DEFAULT_RANGE, alias="range",
                             description="today | week | month | year | all"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return services.get_habit_insights(db, current_user.id, range_token)


@app.post("/api/habits", response_model=schemas.HabitResponse,
          status_code=status.HTTP_201_CREATED, tags=["Habits"])
def create_habit(
    habit: schemas.HabitCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    new_habit = services.create_habit(
        db, current_user.id, habit.name, habit.icon, habit.color,
        habit.category, habit.frequency_days, habit.target_count
    )
    logger.info(f"{current_user.username}: created habit '{habit.name}'")
    return new_habit


@app.delete("/api/habits/{habit_id}", response_model=schemas.MessageResponse, tags=["Habits"])
def delete_habit(
    habit_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    if not services.delete_habit(db, habit_id, current_user.id):
        raise NotFoundException("Habit not found")
    logger.info(f"{current_user.username}: deleted habit {habit_id}")
    return {"message": "Habit deleted"}


@app.post("/api/habits/{habit_id}/toggle", response_model=schemas.HabitToggleResponse, tags=["Habits"])
def toggle_habit(
    habit_id: int,
    payload: Optional[schemas.HabitToggle] = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    log_date  = payload.log_date if payload else None
    completed = services.toggle_habit(db, habit_id, current_user.id, log_date)
    if completed is None:
        raise NotFoundException("Habit not found")
    logger.info(f"{current_user.username}: toggled habit {habit_id} → {completed}")
    return {"completed": completed}


@app.get("/api/habits/{habit_id}/history", response_model=list[schemas.HabitHistoryItem], tags=["Habits"])
def get_habit_history(
    habit_id: int,
    days: int = Query(30, ge=1, le=3660),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    history = services.get_habit_history(db, habit_id, current_user.id, days)
    if history is None:
        raise NotFoundException("Habit not found")
    return history


# ── Quick Notes ──────────────────────────
@app.get("/api/notes", response_model=list[schemas.NoteResponse], tags=["Notes"])
def get_notes(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    return services.get_notes(db, current_user.id)


@app.post("/api/notes", response_model=schemas.NoteResponse,
          status_code=status.HTTP_201_CREATED, tags=["Notes"])
def create_note(
    note: schemas.NoteCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    new_note = services.create_note(
        db, current_user.id, note.content, note.title,
        note.color, note.tags, note.type
    )
    logger.info(f"{current_user.username}: created note {new_note.id}")
    return new_note


@app.put("/api/notes/reorder", response_model=schemas.MessageResponse, tags=["Notes"])
def reorder_notes(
    payload: schemas.NoteReorder,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    services.reorder_notes(db, current_user.id, payload.note_ids)
    logger.info(f"{current_user.username}: reordered {len(payload.note_ids)} notes")
    return {"message": "Notes reordered"}


@app.put("/api/notes/{note_id}", response_model=schemas.NoteResponse, tags=["Notes"])
def update_note(
    note_id: int,
    payload: schemas.NoteUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    note = services.update_note(db, note_id, current_user.id, payload.model_dump(exclude_unset=True))
    if not note:
        raise NotFoundException("Note not found")
    logger.info(f"{current_user.username}: updated note {note_id}")
    return note


@app.delete("/api/notes/{note_id}", response_model=schemas.MessageResponse, tags=["Notes"])
def delete_note(
    note_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    if not services.delete_note(db, note_id, current_user.id):
        raise NotFoundException("Note not found")
    logger.info(f"{current_user.username}: deleted note {note_id}")
    return {"message": "Note deleted"}


@app.post("/api/notes/{note_id}/pin", response_model=schemas.PinResponse, tags=["Notes"])
def toggle_pin(
    note_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    pinned = services.toggle_pin(db, note_id, current_user.id)
    if pinned is None:
        raise NotFoundException("Note not found")
    return {"pinned": pinned}


# ── Backup ───────────────────────────────
@app.get("/api/data/export", response_model=schemas.BackupEnvelope, tags=["Backup"])
def export_backup(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    logger.info(f"{current_user.username}: exported backup")
    return services.export_backup(db, current_user.id)


@app.post("/api/data/import/check", response_model=schemas.ImportCheckResponse, tags=["Backup"])
def check_import(
    payload: schemas.ImportCheckRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    conflicts = services.check_import_conflicts(db, current_user.id, payload.data)
    return {"conflicts": conflicts}


@app.post("/api/data/import/execute", response_model=schemas.ImportResult, tags=["Backup"])
def execute_import(
    payload: schemas.ImportExecuteRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user)
):
    result = services.execute_import(db, current_user.id, payload.data, payload.overwrite_options)
    logger.info(f"{current_user.username}: imported {result['imported']}, updated {result['updated']}")
    return {"message": "Import completed successfully", **result}


# ── Admin ────────────────────────────────
@app.get("/api/admin/stats", response_model=schemas.AdminStats, tags=["Admin"])
def get_system_stats(
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin)
):
    return services.get_system_stats(db)


@app.get("/api/admin/users", response_model=list[schemas.AdminUser], tags=["Admin"])
def get_users(
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin)
):
    return services.get_users_overview(db)


@app.delete("/api/admin/users/{user_id}", response_model=schemas.MessageResponse, tags=["Admin"])
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin)
):
    if user_id == admin.id:
        raise BadRequestException("You cannot delete your own account from the admin panel")
    if not services.delete_user(db, user_id):
        raise NotFoundException("User not found")
    logger.info(f"Admin {admin.username} deleted user {user_id}")
    return {"message": "User deleted successfully"}
