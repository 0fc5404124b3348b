import pytest

from journal import schemas, services
from journal.models import Habit, User


def seed(client, headers):
    client.post("/api/entries", json={"date": "2024-01-01", "content": "New year", "tags": ["goals"], "mood": 5},
                headers=headers)
    client.post("/api/entries", json={"date": "2024-01-02", "content": "Second day"}, headers=headers)
    habit = client.post("/api/habits", json={"name": "Read", "icon": "📚"}, headers=headers).json()
    client.post(f"/api/habits/{habit['id']}/toggle", json={"date": "2024-01-01"}, headers=headers)
    client.post(f"/api/habits/{habit['id']}/toggle", json={"date": "2024-01-02"}, headers=headers)
    client.post("/api/notes", json={"content": "Call mom", "tags": ["family"]}, headers=headers)


def test_export_envelope(client, auth_header):
    seed(client, auth_header)
    backup = client.get("/api/data/export", headers=auth_header).json()

    assert backup["version"] == 1
    assert "exportedAt" in backup
    data = backup["data"]
    assert len(data["entries"]) == 2
    assert len(data["habits"]) == 1
    assert len(data["habitLogs"]) == 2
    assert len(data["quickNotes"]) == 1
    assert data["entries"][0]["tags"] in (["goals"], [])

def test_import_into_empty_account(client, auth_header, second_auth_header):
    seed(client, auth_header)
    backup = client.get("/api/data/export", headers=auth_header).json()

    check = client.post("/api/data/import/check", json={"data": backup["data"]}, headers=second_auth_header)
    assert check.status_code == 200
    assert check.json() == {"conflicts": {"entries": 0, "habits": 0, "quickNotes": 0}}

    r = client.post("/api/data/import/execute", json={"data": backup["data"]}, headers=second_auth_header)
    assert r.status_code == 200
    assert r.json()["imported"] == {"entries": 2, "habits": 1, "habitLogs": 2, "quickNotes": 1}

    entries = client.get("/api/entries/all", headers=second_auth_header).json()
    assert [e["entry_date"] for e in entries] == ["2024-01-02", "2024-01-01"]
    assert entries[1]["tags"] == ["goals"]

    # Logs were re-pointed at the new habit
    habit   = client.get("/api/habits", headers=second_auth_header).json()[0]
    history = client.get("/api/data/export", headers=second_auth_header).json()["data"]["habitLogs"]
    assert {log["habit_id"] for log in history} == {habit["id"]}

def test_reimport_without_overwrite_changes_nothing(client, auth_header):
    seed(client, auth_header)
    backup = client.get("/api/data/export", headers=auth_header).json()

    # Local edits after the backup was taken
    client.post("/api/entries", json={"date": "2024-01-01", "content": "Edited"}, headers=auth_header)

    check = client.post("/api/data/import/check", json={"data": backup["data"]}, headers=auth_header)
    assert check.json() == {"conflicts": {"entries": 2, "habits": 1, "quickNotes": 1}}

    r = client.post("/api/data/import/execute", json={"data": backup["data"]}, headers=auth_header)
    assert r.status_code == 200
    assert r.json()["imported"] == {"entries": 0, "habits": 0, "habitLogs": 0, "quickNotes": 0}

    after = client.get("/api/data/export", headers=auth_header).json()["data"]
    assert len(after["entries"]) == 2
    assert len(after["habits"]) == 1
    assert len(after["habitLogs"]) == 2
    assert len(after["quickNotes"]) == 1
    assert client.get("/api/entries/2024-01-01", headers=auth_header).json()["content"] == "Edited"

def test_reimport_with_overwrite(client, auth_header):
    seed(client, auth_header)
    backup = client.get("/api/data/export", headers=auth_header).json()

    client.post("/api/entries", json={"date": "2024-01-01", "content": "Edited"}, headers=auth_header)
    habit = client.get("/api/habits", headers=auth_header).json()[0]
    client.post(f"/api/habits/{habit['id']}/toggle", json={"date": "2024-01-01"}, headers=auth_header)

    r = client.post("/api/data/import/execute",
                    json={"data": backup["data"],
                          "overwriteOptions": {"entries": True, "habits": True, "quickNotes": False}},
                    headers=auth_header)
    assert r.status_code == 200
    assert r.json()["updated"]["entries"] == 2
    assert r.json()["updated"]["habitLogs"] == 2

    assert client.get("/api/entries/2024-01-01", headers=auth_header).json()["content"] == "New year"
    history = client.get(f"/api/habits/{habit['id']}/history?days=3660", headers=auth_header).json()
    assert {"date": "2024-01-01", "completed": True} in history

def test_logs_without_a_known_habit_are_skipped(client, auth_header):
    data = {
        "habits": [{"id": 10, "name": "Walk"}],
        "habitLogs": [
            {"habit_id": 10, "log_date": "2024-03-01", "completed": 1},
            {"habit_id": 99, "log_date": "2024-03-01", "completed": 1},
        ],
    }
    r = client.post("/api/data/import/execute", json={"data": data}, headers=auth_header)
    assert r.status_code == 200
    assert r.json()["imported"]["habitLogs"] == 1

def test_import_accepts_json_text_lists(client, auth_header):
    data = {
        "entries": [{"entry_date": "2024-04-01", "content": "old format", "tags": '["legacy"]'}],
        "habits": [{"id": 1, "name": "Legacy", "frequency_days": "[1,2,3]"}],
        "quickNotes": [{"content": "old note", "pinned": 1, "tags": "[]"}],
    }
    r = client.post("/api/data/import/execute", json={"data": data}, headers=auth_header)
    assert r.status_code == 200
    assert client.get("/api/entries/2024-04-01", headers=auth_header).json()["tags"] == ["legacy"]
    assert client.get("/api/habits", headers=auth_header).json()[0]["frequency_days"] == [1, 2, 3]
    assert client.get("/api/notes", headers=auth_header).json()[0]["pinned"] is True

def test_invalid_backup_values_are_rejected(client, auth_header):
    bad_mood  = {"entries": [{"entry_date": "2024-04-02", "content": "x", "mood": 9}]}
    bad_habit = {"habits": [{"name": "Z", "frequency_days": [9, 42], "target_count": 0}]}

    for data in (bad_mood, bad_habit):
        assert client.post("/api/data/import/check", json={"data": data}, headers=auth_header).status_code == 400
        assert client.post("/api/data/import/execute", json={"data": data}, headers=auth_header).status_code == 400

    assert client.get("/api/entries/2024-04-02", headers=auth_header).status_code == 404
    assert client.get("/api/habits", headers=auth_header).json() == []

def test_import_requires_data(client, auth_header):
    assert client.post("/api/data/import/check", json={}, headers=auth_header).status_code == 400
    assert client.post("/api/data/import/execute", json={}, headers=auth_header).status_code == 400

def test_failed_import_rolls_back(db_session, monkeypatch):
    user = User(username="erin", password_hash="x")
    db_session.add(user)
    db_session.commit()

    def broken(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(services, "_import_quick_notes", broken)
    data = schemas.BackupData(
        habits=[schemas.BackupHabit(id=1, name="Swim")],
        entries=[schemas.BackupEntry(entry_date="2024-01-01", content="lost")],
    )

    with pytest.raises(RuntimeError):
        services.execute_import(db_session, user.id, data, schemas.OverwriteOptions())

    assert db_session.query(Habit).count() == 0
    assert services.get_all_entries(db_session, user.id) == []
