from datetime import date, timedelta


def create_habit(client, headers, name, **extra):
    r = client.post("/api/habits", json={"name": name, **extra}, headers=headers)
    assert r.status_code == 201
    return r.json()


def test_create_and_list_habits(client, auth_header):
    assert client.get("/api/habits", headers=auth_header).json() == []

    habit = create_habit(client, auth_header, "Meditate", icon="🧘", category="Mind",
                         frequency_days=[1, 3, 5, 1], target_count=2)
    assert habit["icon"] == "🧘"
    assert habit["frequency_days"] == [1, 3, 5]
    assert habit["streak"] == 0
    assert habit["completed_today"] is False

    defaults = create_habit(client, auth_header, "Water")
    assert defaults["category"] == "General"
    assert defaults["frequency_days"] == [0, 1, 2, 3, 4, 5, 6]
    assert defaults["target_count"] == 1

    # Ordered by category
    names = [h["name"] for h in client.get("/api/habits", headers=auth_header).json()]
    assert names == ["Water", "Meditate"]

def test_habit_validation(client, auth_header):
    assert client.post("/api/habits", json={}, headers=auth_header).status_code == 400
    r = client.post("/api/habits", json={"name": "x", "frequency_days": [7]}, headers=auth_header)
    assert r.status_code == 400

def test_toggle_twice_restores_state(client, auth_header):
    habit = create_habit(client, auth_header, "Read")
    url   = f"/api/habits/{habit['id']}/toggle"

    r = client.post(url, json={"date": "2024-01-01"}, headers=auth_header)
    assert r.json() == {"completed": True}
    r2 = client.post(url, json={"date": "2024-01-01"}, headers=auth_header)
    assert r2.json() == {"completed": False}
    r3 = client.post(url, json={"date": "2024-01-01"}, headers=auth_header)
    assert r3.json() == {"completed": True}

def test_toggle_defaults_to_today_and_builds_streak(client, auth_header):
    habit = create_habit(client, auth_header, "Run")
    today = date.today()
    url   = f"/api/habits/{habit['id']}/toggle"

    for offset in (1, 2):
        client.post(url, json={"date": str(today - timedelta(days=offset))}, headers=auth_header)

    listed = client.get("/api/habits", headers=auth_header).json()[0]
    assert listed["streak"] == 2
    assert listed["completed_today"] is False

    # No body: toggles today
    assert client.post(url, headers=auth_header).json() == {"completed": True}
    listed = client.get("/api/habits", headers=auth_header).json()[0]
    assert listed["streak"] == 3
    assert listed["completed_today"] is True

def test_habit_history(client, auth_header):
    habit = create_habit(client, auth_header, "Stretch")
    today = date.today()
    client.post(f"/api/habits/{habit['id']}/toggle",
                json={"date": str(today - timedelta(days=1))}, headers=auth_header)

    history = client.get(f"/api/habits/{habit['id']}/history?days=3", headers=auth_header).json()
    assert history == [
        {"date": str(today), "completed": False},
        {"date": str(today - timedelta(days=1)), "completed": True},
        {"date": str(today - timedelta(days=2)), "completed": False},
    ]
    assert len(client.get(f"/api/habits/{habit['id']}/history", headers=auth_header).json()) == 30
    for days in (0, 3661):
        r = client.get(f"/api/habits/{habit['id']}/history?days={days}", headers=auth_header)
        assert r.status_code == 400

def test_delete_habit(client, auth_header):
    habit = create_habit(client, auth_header, "Journal")
    client.post(f"/api/habits/{habit['id']}/toggle", headers=auth_header)

    r = client.delete(f"/api/habits/{habit['id']}", headers=auth_header)
    assert r.status_code == 200
    assert client.get("/api/habits", headers=auth_header).json() == []
    assert client.delete(f"/api/habits/{habit['id']}", headers=auth_header).status_code == 404

def test_habits_are_private(client, auth_header, second_auth_header):
    habit = create_habit(client, auth_header, "Private")
    r = client.post(f"/api/habits/{habit['id']}/toggle", headers=second_auth_header)
    assert r.status_code == 404
    r2 = client.get(f"/api/habits/{habit['id']}/history", headers=second_auth_header)
    assert r2.status_code == 404
    r3 = client.delete(f"/api/habits/{habit['id']}", headers=second_auth_header)
    assert r3.status_code == 404

def test_habit_insights_endpoint(client, auth_header):
    empty = client.get("/api/habits/insights", headers=auth_header).json()
    assert empty == {"total_completions": 0, "habit_stats": [], "best_day": "N/A"}

    gym   = create_habit(client, auth_header, "Gym")
    floss = create_habit(client, auth_header, "Floss")
    today = date.today()
    for offset in range(3):
        client.post(f"/api/habits/{floss['id']}/toggle",
                    json={"date": str(today - timedelta(days=offset))}, headers=auth_header)
    client.post(f"/api/habits/{gym['id']}/toggle", headers=auth_header)

    week = client.get("/api/habits/insights?range=week", headers=auth_header).json()
    assert week["total_completions"] == 4
    assert [s["name"] for s in week["habit_stats"]] == ["Floss", "Gym"]
    assert week["habit_stats"][0]["rate"] == 43
    assert week["habit_stats"][1]["rate"] == 14

    all_time = client.get("/api/habits/insights?range=all", headers=auth_header).json()
    assert all_time["total_completions"] == 4
    assert [s["rate"] for s in all_time["habit_stats"]] == [0, 0]
