# journal/services.py
import math
from collections import Counter, defaultdict
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from journal import schemas
from journal.core.logging import logger
from journal.models import Entry, Habit, HabitLog, QuickNote, User, _utcnow

BACKUP_VERSION = 1
SEARCH_LIMIT   = 50

WEEKDAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

# Denominator (days) used for a habit's completion rate in each range
RANGE_DAYS = {"today": 1, "week": 7, "month": 30, "year": 365, "all": 0}
DEFAULT_RANGE = "month"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ════════════════════════════════════════
# AUTH SERVICES
# ════════════════════════════════════════

def get_user_by_username(db: Session, username: str):
    return db.query(User).filter(User.username == username).first()


def get_user_by_id(db: Session, user_id: int):
    return db.query(User).filter(User.id == user_id).first()


def create_user(db: Session, username: str, password_hash: str):
    user = User(username=username, password_hash=password_hash)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


# ════════════════════════════════════════
# ENTRY SERVICES
# ════════════════════════════════════════

def get_entry(db: Session, user_id: int, entry_date: date):
    return db.query(Entry).filter(
        Entry.user_id == user_id,
        Entry.entry_date == entry_date
    ).first()


def save_entry(db: Session, user_id: int, entry_date: date, content: str,
               tags: list, mood: Optional[int]):
    # Upsert: one entry per user per day, last write wins
    entry = get_entry(db, user_id, entry_date)

    if entry:
        entry.content = content
        entry.tags    = list(tags)
        entry.mood    = mood
    else:
        entry = Entry(
            user_id=user_id,
            entry_date=entry_date,
            content=content,
            tags=list(tags),
            mood=mood,
        )
        db.add(entry)

    db.commit()
    db.refresh(entry)
    return entry


def delete_entry(db: Session, user_id: int, entry_date: date) -> bool:
    entry = get_entry(db, user_id, entry_date)
    if not entry:
        return False

    db.delete(entry)
    db.commit()
    return True


def get_entry_dates(db: Session, user_id: int) -> list[date]:
    rows = (
        db.query(Entry.entry_date)
        .filter(Entry.user_id == user_id)
        .distinct()
        .order_by(Entry.entry_date)
        .all()
    )
    return [row.entry_date for row in rows]


def get_all_entries(db: Session, user_id: int):
    return (
        db.query(Entry)
        .filter(Entry.user_id == user_id)
        .order_by(Entry.entry_date.desc())
        .all()
    )


def search_entries(db: Session, user_id: int, query: str = "", tags: Optional[list] = None):
    base_query = db.query(Entry).filter(Entry.user_id == user_id)
    if query:
        base_query = base_query.filter(Entry.content.ilike(f"%{query}%"))

    entries = base_query.order_by(Entry.entry_date.desc()).all()

    # Every requested tag must be present
    if tags:
        entries = [e for e in entries if all(tag in (e.tags or []) for tag in tags)]

    return entries[:SEARCH_LIMIT]


def get_all_tags(db: Session, user_id: int) -> list[str]:
    tag_set = set()
    for (tags,) in db.query(Entry.tags).filter(Entry.user_id == user_id).all():
        tag_set.update(tags or [])
    return sorted(tag_set)


def calculate_streak(dates: list[date], today: date) -> dict:
    """
    Given the dates a user wrote on, returns {"current": n, "longest": m}.

    The current streak only counts when the latest entry is today or
    yesterday. Any gap longer than one day ends a run.
    """
    dates = sorted(set(dates), reverse=True)
    if not dates:
        return {"current": 0, "longest": 0}

    yesterday = today - timedelta(days=1)
    pairs     = list(zip(dates, dates[1:]))

    current = 0
    if dates[0] in (today, yesterday):
        current = 1
        for newer, older in pairs:
            if (newer - older).days != 1:
                break
            current += 1

    longest = run = 1
    for newer, older in pairs:
        if (newer - older).days == 1:
            run += 1
        else:
            longest = max(longest, run)
            run = 1
    longest = max(longest, run)

    return {"current": current, "longest": longest}


def get_streak(db: Session, user_id: int, today: Optional[date] = None) -> dict:
    return calculate_streak(get_entry_dates(db, user_id), today or date.today())


def get_stats(db: Session, user_id: int) -> dict:
    entries = get_all_entries(db, user_id)

    total_words       = 0
    mood_distribution = {mood: 0 for mood in range(1, 6)}

    for entry in entries:
        total_words += len((entry.content or "").split())
        if entry.mood in mood_distribution:
            mood_distribution[entry.mood] += 1

    total = len(entries)
    return {
        "total_entries":       total,
        "total_words":         total_words,
        "avg_words_per_entry": _round_half_up(total_words / total) if total else 0,
        "mood_distribution":   mood_distribution,
    }


def export_entries(db: Session, user_id: int) -> dict:
    entries = get_all_entries(db, user_id)
    return {
        "export_date":   _utcnow(),
        "total_entries": len(entries),
        "entries":       entries,
    }


# ════════════════════════════════════════
# HABIT SERVICES
# ════════════════════════════════════════

def calculate_habit_streak(completed_dates: set, today: date) -> tuple[int, bool]:
    """
    Returns (streak_count, completed_today). The streak is counted back
    from today when today is done, otherwise from yesterday.
    """
    completed_today = today in completed_dates
    check_date      = today if completed_today else today - timedelta(days=1)

    streak = 0
    while check_date in completed_dates:
        streak += 1
        check_date -= timedelta(days=1)

    return streak, completed_today


def _habit_to_dict(habit: Habit, streak: int = 0, completed_today: bool = False) -> dict:
    return {
        "id":              habit.id,
        "user_id":         habit.user_id,
        "name":            habit.name,
        "icon":            habit.icon,
        "color":           habit.color,
        "category":        habit.category,
        "frequency_days":  habit.frequency_days,
        "target_count":    habit.target_count,
        "created_at":      habit.created_at,
        "streak":          streak,
        "completed_today": completed_today,
    }


def get_habits(db: Session, user_id: int, today: Optional[date] = None) -> list[dict]:
    today  = today or date.today()
    habits = (
        db.query(Habit)
        .filter(Habit.user_id == user_id)
        .order_by(Habit.category, Habit.created_at, Habit.id)
        .all()
    )

    completed = defaultdict(set)
    rows = (
        db.query(HabitLog.habit_id, HabitLog.log_date)
        .filter(HabitLog.user_id == user_id, HabitLog.completed == True)
        .all()
    )
    for habit_id, log_date in rows:
        completed[habit_id].add(log_date)

    result = []
    for habit in habits:
        streak, completed_today = calculate_habit_streak(completed[habit.id], today)
        result.append(_habit_to_dict(habit, streak, completed_today))
    return result


def get_habit(db: Session, habit_id: int, user_id: int):
    return db.query(Habit).filter(
        Habit.id == habit_id,
        Habit.user_id == user_id
    ).first()


def create_habit(db: Session, user_id: int, name: str, icon: str, color: str,
                 category: str, frequency_days: list, target_count: int) -> dict:
    habit = Habit(
        user_id=user_id,
        name=name,
        icon=icon,
        color=color,
        category=category,
        frequency_days=list(frequency_days),
        target_count=target_count,
    )
    db.add(habit)
    db.commit()
    db.refresh(habit)
    return _habit_to_dict(habit)


def delete_habit(db: Session, habit_id: int, user_id: int) -> bool:
    habit = get_habit(db, habit_id, user_id)
    if not habit:
        return False

    db.delete(habit)   # logs go with it
    db.commit()
    return True


def toggle_habit(db: Session, habit_id: int, user_id: int,
                 log_date: Optional[date] = None) -> Optional[bool]:
    if not get_habit(db, habit_id, user_id):
        return None

    log_date = log_date or date.today()
    existing = db.query(HabitLog).filter(
        HabitLog.habit_id == habit_id,
        HabitLog.log_date == log_date
    ).first()

    if existing:
        existing.completed = not existing.completed
        completed = existing.completed
    else:
        db.add(HabitLog(habit_id=habit_id, user_id=user_id, log_date=log_date, completed=True))
        completed = True

    db.commit()
    return completed


def get_habit_history(db: Session, habit_id: int, user_id: int, days: int = 30,
                      today: Optional[date] = None) -> Optional[list[dict]]:
    if not get_habit(db, habit_id, user_id):
        return None

    today = today or date.today()
    start = today - timedelta(days=days - 1)
    done  = {
        log_date for (log_date,) in
        db.query(HabitLog.log_date).filter(
            HabitLog.habit_id == habit_id,
            HabitLog.completed == True,
            HabitLog.log_date >= start,
            HabitLog.log_date <= today,
        ).all()
    }

    history = []
    for offset in range(days):
        day = today - timedelta(days=offset)
        history.append({"date": day, "completed": day in done})
    return history


def _one_year_before(day: date) -> date:
    try:
        return day.replace(year=day.year - 1)
    except ValueError:
        return day.replace(year=day.year - 1, day=28)   # Feb 29


def insight_window(range_token: str, today: date) -> tuple[Optional[date], Optional[date]]:
    """Maps a range token to (start, end) bounds on log dates; None means open."""
    if range_token == "today":
        return today, today
    if range_token == "week":
        return today - timedelta(days=7), None
    if range_token == "year":
        return _one_year_before(today), None
    if range_token == "all":
        return None, None
    return today - timedelta(days=30), None


def completion_rate(count: int, range_token: str) -> int:
    days = RANGE_DAYS.get(range_token, RANGE_DAYS[DEFAULT_RANGE])
    # "all" has no fixed window, so it reports 0
    if not days:
        return 0
    return _round_half_up(count / days * 100)


def best_weekday(dates: list[date]) -> str:
    counts = Counter(d.isoweekday() % 7 for d in dates)   # Sunday = 0
    if not counts:
        return "N/A"
    # Ties go to the earliest weekday
    best = max(sorted(counts), key=lambda day: counts[day])
    return WEEKDAY_NAMES[best]


def get_habit_insights(db: Session, user_id: int, range_token: str = DEFAULT_RANGE,
                       today: Optional[date] = None) -> dict:
    today      = today or date.today()
    start, end = insight_window(range_token, today)

    query = db.query(HabitLog.habit_id, HabitLog.log_date).filter(
        HabitLog.user_id == user_id,
        HabitLog.completed == True
    )
    if start:
        query = query.filter(HabitLog.log_date >= start)
    if end:
        query = query.filter(HabitLog.log_date <= end)
    logs = query.all()

    per_habit = Counter(habit_id for habit_id, _ in logs)
    habits    = db.query(Habit).filter(Habit.user_id == user_id).order_by(Habit.id).all()

    habit_stats = []
    for habit in habits:
        count = per_habit.get(habit.id, 0)
        habit_stats.append({
            "id":               habit.id,
            "name":             habit.name,
            "icon":             habit.icon,
            "color":            habit.color,
            "completion_count": count,
            "rate":             completion_rate(count, range_token),
        })
    habit_stats.sort(key=lambda stat: stat["rate"], reverse=True)

    return {
        "total_completions": len(logs),
        "habit_stats":       habit_stats,
        "best_day":          best_weekday([log_date for _, log_date in logs]),
    }


# ════════════════════════════════════════
# QUICK NOTE SERVICES
# ════════════════════════════════════════

def get_notes(db: Session, user_id: int):
    return (
        db.query(QuickNote)
        .filter(QuickNote.user_id == user_id)
        .order_by(QuickNote.position.asc(), QuickNote.pinned.desc(), QuickNote.updated_at.desc())
        .all()
    )


def get_note(db: Session, note_id: int, user_id: int):
    return db.query(QuickNote).filter(
        QuickNote.id == note_id,
        QuickNote.user_id == user_id
    ).first()


def _next_position(db: Session, user_id: int) -> int:
    max_position = (
        db.query(func.max(QuickNote.position))
        .filter(QuickNote.user_id == user_id)
        .scalar()
    )
    return (max_position or 0) + 1


def create_note(db: Session, user_id: int, content: str, title: str = "",
                color: str = "#FFE066", tags: Optional[list] = None, note_type: str = "text"):
    note = QuickNote(
        user_id=user_id,
        title=title,
        content=content,
        color=color,
        tags=list(tags or []),
        type=note_type,
        position=_next_position(db, user_id),
    )
    db.add(note)
    db.commit()
    db.refresh(note)
    return note


def update_note(db: Session, note_id: int, user_id: int, changes: dict):
    note = get_note(db, note_id, user_id)
    if not note:
        return None

    for field, value in changes.items():
        if value is not None:
            setattr(note, field, list(value) if field == "tags" else value)

    db.commit()
    db.refresh(note)
    return note


def delete_note(db: Session, note_id: int, user_id: int) -> bool:
    note = get_note(db, note_id, user_id)
    if not note:
        return False

    db.delete(note)
    db.commit()
    return True


def toggle_pin(db: Session, note_id: int, user_id: int) -> Optional[bool]:
    note = get_note(db, note_id, user_id)
    if not note:
        return None

    note.pinned = not note.pinned
    db.commit()
    return note.pinned


def reorder_notes(db: Session, user_id: int, note_ids: list[int]):
    notes = {
        note.id: note for note in
        db.query(QuickNote).filter(
            QuickNote.user_id == user_id,
            QuickNote.id.in_(note_ids)
        ).all()
    }

    # Positions follow list order; ids the user doesn't own are skipped
    try:
        for position, note_id in enumerate(note_ids):
            if note_id in notes:
                notes[note_id].position = position
        db.commit()
    except Exception:
        db.rollback()
        raise


# ════════════════════════════════════════
# BACKUP SERVICES
# ════════════════════════════════════════

def export_backup(db: Session, user_id: int) -> dict:
    return {
        "version":     BACKUP_VERSION,
        "exported_at": _utcnow(),
        "data": {
            "entries":     db.query(Entry).filter(Entry.user_id == user_id).all(),
            "habits":      db.query(Habit).filter(Habit.user_id == user_id).all(),
            "habit_logs":  db.query(HabitLog).filter(HabitLog.user_id == user_id).all(),
            "quick_notes": db.query(QuickNote).filter(QuickNote.user_id == user_id).all(),
        },
    }


def check_import_conflicts(db: Session, user_id: int, data: schemas.BackupData) -> dict:
    existing_dates = {
        d for (d,) in db.query(Entry.entry_date).filter(Entry.user_id == user_id).all()
    }
    existing_names = {
        n for (n,) in db.query(Habit.name).filter(Habit.user_id == user_id).all()
    }
    existing_content = {
        c for (c,) in db.query(QuickNote.content).filter(QuickNote.user_id == user_id).all()
    }

    return {
        "entries":     sum(1 for e in data.entries if e.entry_date in existing_dates),
        "habits":      sum(1 for h in data.habits if h.name in existing_names),
        "quick_notes": sum(1 for n in data.quick_notes if n.content in existing_content),
    }


def _import_habits(db: Session, user_id: int, habits: list, overwrite: bool):
    id_map   = {}
    inserted = updated = 0

    for incoming in habits:
        habit = db.query(Habit).filter(
            Habit.user_id == user_id,
            Habit.name == incoming.name
        ).first()

        if habit:
            if overwrite:
                habit.icon           = incoming.icon
                habit.color          = incoming.color
                habit.category       = incoming.category
                habit.frequency_days = list(incoming.frequency_days)
                habit.target_count   = incoming.target_count
                updated += 1
        else:
            habit = Habit(
                user_id=user_id,
                name=incoming.name,
                icon=incoming.icon,
                color=incoming.color,
                category=incoming.category,
                frequency_days=list(incoming.frequency_days),
                target_count=incoming.target_count,
                created_at=incoming.created_at or _utcnow(),
            )
            db.add(habit)
            db.flush()
            inserted += 1

        if incoming.id is not None:
            id_map[incoming.id] = habit.id

    return id_map, inserted, updated


def _import_habit_logs(db: Session, user_id: int, logs: list, id_map: dict, overwrite: bool):
    inserted = updated = 0

    for incoming in logs:
        habit_id = id_map.get(incoming.habit_id)
        if habit_id is None:
            continue   # parent habit wasn't part of this import

        log = db.query(HabitLog).filter(
            HabitLog.habit_id == habit_id,
            HabitLog.log_date == incoming.log_date
        ).first()

        if log:
            if overwrite:
                log.completed = incoming.completed
                updated += 1
        else:
            db.add(HabitLog(
                habit_id=habit_id,
                user_id=user_id,
                log_date=incoming.log_date,
                completed=incoming.completed,
            ))
            db.flush()
            inserted += 1

    return inserted, updated


def _import_entries(db: Session, user_id: int, entries: list, overwrite: bool):
    inserted = updated = 0

    for incoming in entries:
        entry = get_entry(db, user_id, incoming.entry_date)

        if entry:
            if overwrite:
                entry.content = incoming.content
                entry.tags    = list(incoming.tags)
                entry.mood    = incoming.mood
                updated += 1
        else:
            db.add(Entry(
                user_id=user_id,
                entry_date=incoming.entry_date,
                content=incoming.content,
                tags=list(incoming.tags),
                mood=incoming.mood,
                created_at=incoming.created_at or _utcnow(),
                updated_at=incoming.updated_at or _utcnow(),
            ))
            db.flush()
            inserted += 1

    return inserted, updated


def _import_quick_notes(db: Session, user_id: int, notes: list, overwrite: bool):
    inserted = updated = 0
    position = _next_position(db, user_id)

    for incoming in notes:
        note = db.query(QuickNote).filter(
            QuickNote.user_id == user_id,
            QuickNote.content == incoming.content
        ).first()

        if note:
            if overwrite:
                note.title  = incoming.title
                note.color  = incoming.color
                note.pinned = incoming.pinned
                note.tags   = list(incoming.tags)
                note.type   = incoming.type
                updated += 1
        else:
            db.add(QuickNote(
                user_id=user_id,
                title=incoming.title,
                content=incoming.content,
                color=incoming.color,
                pinned=incoming.pinned,
                tags=list(incoming.tags),
                type=incoming.type,
                position=position,
                created_at=incoming.created_at or _utcnow(),
                updated_at=incoming.updated_at or _utcnow(),
            ))
            db.flush()
            position += 1
            inserted += 1

    return inserted, updated


def execute_import(db: Session, user_id: int, data: schemas.BackupData,
                   overwrite: schemas.OverwriteOptions) -> dict:
    """
    Imports a backup in one transaction. Habits go first so their logs can
    be re-pointed at the new habit ids. The habits flag also covers logs.
    """
    imported = {}
    updated  = {}

    try:
        id_map, imported["habits"], updated["habits"] = _import_habits(
            db, user_id, data.habits, overwrite.habits
        )
        imported["habit_logs"], updated["habit_logs"] = _import_habit_logs(
            db, user_id, data.habit_logs, id_map, overwrite.habits
        )
        imported["entries"], updated["entries"] = _import_entries(
            db, user_id, data.entries, overwrite.entries
        )
        imported["quick_notes"], updated["quick_notes"] = _import_quick_notes(
            db, user_id, data.quick_notes, overwrite.quick_notes
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.warning(f"Import rolled back for user {user_id}")
        raise

    return {"imported": imported, "updated": updated}


# ════════════════════════════════════════
# ADMIN SERVICES
# ════════════════════════════════════════

def get_system_stats(db: Session) -> dict:
    entries_size = db.query(func.coalesce(func.sum(func.length(Entry.content)), 0)).scalar()
    notes_size   = db.query(func.coalesce(func.sum(func.length(QuickNote.content)), 0)).scalar()

    return {
        "users":      db.query(User).count(),
        "entries":    db.query(Entry).count(),
        "habits":     db.query(Habit).count(),
        "notes":      db.query(QuickNote).count(),
        "storage_mb": round((entries_size + notes_size) / (1024 * 1024), 2),
    }


def get_users_overview(db: Session) -> list[dict]:
    rows = (
        db.query(
            User.id,
            User.username,
            func.count(Entry.id).label("entry_count"),
            func.max(Entry.created_at).label("last_active"),
        )
        .outerjoin(Entry, Entry.user_id == User.id)
        .group_by(User.id, User.username)
        .order_by(User.id)
        .all()
    )
    note_counts = dict(
        db.query(QuickNote.user_id, func.count(QuickNote.id))
        .group_by(QuickNote.user_id)
        .all()
    )

    return [
        {
            "id":          row.id,
            "username":    row.username,
            "entry_count": row.entry_count,
            "note_count":  note_counts.get(row.id, 0),
            "last_active": row.last_active,
        }
        for row in rows
    ]


def delete_user(db: Session, user_id: int) -> bool:
    if not get_user_by_id(db, user_id):
        return False

    # Children first so this works with or without FK cascades
    try:
        db.query(HabitLog).filter(HabitLog.user_id == user_id).delete(synchronize_session=False)
        db.query(Habit).filter(Habit.user_id == user_id).delete(synchronize_session=False)
        db.query(Entry).filter(Entry.user_id == user_id).delete(synchronize_session=False)
        db.query(QuickNote).filter(QuickNote.user_id == user_id).delete(synchronize_session=False)
        db.query(User).filter(User.id == user_id).delete(synchronize_session=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return True
