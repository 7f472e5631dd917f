"""Logging completions and reading a day's entries back."""
from datetime import datetime

from bson import ObjectId

from database import GROUP_HABIT_ENTRIES, USER_HABIT_ENTRIES


async def test_log_user_entry_normalizes_date_to_midnight(client, mongo_db, fresh_id):
    habit, user = fresh_id(), fresh_id()

    res = await client.post("/api/userHabitEntries", json={
        "habitId": habit,
        "userId": user,
        "date": "2024-05-01",
        "notes": "felt good",
    })

    assert res.status_code == 201
    stored = mongo_db[USER_HABIT_ENTRIES].find_one({"_id": ObjectId(res.json()["insertedId"])})
    assert stored["date"] == datetime(2024, 5, 1)
    assert stored["habitId"] == ObjectId(habit)
    assert stored["userId"] == ObjectId(user)
    assert stored["status"] == "completed"
    assert stored["notes"] == "felt good"


async def test_log_user_entry_accepts_timestamp_text(client, mongo_db, fresh_id):
    res = await client.post("/api/userHabitEntries", json={
        "habitId": fresh_id(),
        "userId": fresh_id(),
        "date": "2024-05-01T18:45:00Z",
    })

    assert res.status_code == 201
    assert res.json()["insertedEntry"]["date"] == "2024-05-01T00:00:00+00:00"


async def test_log_user_entry_invalid_date_returns_400(client, mongo_db, fresh_id):
    res = await client.post("/api/userHabitEntries", json={
        "habitId": fresh_id(),
        "userId": fresh_id(),
        "date": "yesterday",
    })

    assert res.status_code == 400
    assert mongo_db[USER_HABIT_ENTRIES].count_documents({}) == 0


async def test_log_user_entry_bad_habit_id_returns_400(client, fresh_id):
    res = await client.post("/api/userHabitEntries", json={
        "habitId": "nope",
        "userId": fresh_id(),
        "date": "2024-05-01",
    })

    assert res.status_code == 400


async def test_log_group_entry_defaults_checked_by_and_notes(client, mongo_db, fresh_id):
    res = await client.post("/api/groupHabitEntries", json={
        "habitId": fresh_id(),
        "groupId": fresh_id(),
        "date": "2024-05-01",
    })

    assert res.status_code == 201
    stored = mongo_db[GROUP_HABIT_ENTRIES].find_one({"_id": ObjectId(res.json()["insertedId"])})
    assert stored["checkedBy"] == []
    assert stored["notes"] == {}


async def test_log_group_entry_stores_members_as_references(client, mongo_db, fresh_id):
    member = fresh_id()

    res = await client.post("/api/groupHabitEntries", json={
        "habitId": fresh_id(),
        "groupId": fresh_id(),
        "date": "2024-05-01",
        "checkedBy": [member],
        "notes": {member: "done before work"},
    })

    assert res.status_code == 201
    stored = mongo_db[GROUP_HABIT_ENTRIES].find_one({"_id": ObjectId(res.json()["insertedId"])})
    assert stored["checkedBy"] == [ObjectId(member)]
    assert stored["notes"] == {member: "done before work"}


async def test_log_group_entry_bad_member_id_returns_400(client, fresh_id):
    res = await client.post("/api/groupHabitEntries", json={
        "habitId": fresh_id(),
        "groupId": fresh_id(),
        "date": "2024-05-01",
        "checkedBy": ["123"],
    })

    assert res.status_code == 400


async def test_duplicate_entries_are_both_kept(client, mongo_db, fresh_id):
    payload = {"habitId": fresh_id(), "userId": fresh_id(), "date": "2024-05-01"}

    await client.post("/api/userHabitEntries", json=payload)
    await client.post("/api/userHabitEntries", json=payload)

    assert mongo_db[USER_HABIT_ENTRIES].count_documents({}) == 2


async def test_user_entries_for_day_use_inclusive_utc_bounds(client, mongo_db):
    user, habit = ObjectId(), ObjectId()
    mongo_db[USER_HABIT_ENTRIES].insert_many([
        {"habitId": habit, "userId": user, "date": datetime(2024, 4, 30, 23, 59, 59, 999000), "status": "completed"},
        {"habitId": habit, "userId": user, "date": datetime(2024, 5, 1), "status": "completed"},
        {"habitId": habit, "userId": user, "date": datetime(2024, 5, 1, 23, 59, 59, 999000), "status": "completed"},
        {"habitId": habit, "userId": user, "date": datetime(2024, 5, 2), "status": "completed"},
        {"habitId": habit, "userId": ObjectId(), "date": datetime(2024, 5, 1), "status": "completed"},
    ])

    res = await client.get(f"/api/users/{user}/habitEntries/2024-05-01")

    assert res.status_code == 200
    dates = sorted(e["date"] for e in res.json())
    assert dates == ["2024-05-01T00:00:00+00:00", "2024-05-01T23:59:59.999000+00:00"]


async def test_group_entries_for_day(client, mongo_db):
    group = ObjectId()
    mongo_db[GROUP_HABIT_ENTRIES].insert_many([
        {"habitId": ObjectId(), "groupId": group, "date": datetime(2024, 5, 1), "checkedBy": [], "notes": {}},
        {"habitId": ObjectId(), "groupId": group, "date": datetime(2024, 5, 3), "checkedBy": [], "notes": {}},
    ])

    res = await client.get(f"/api/groups/{group}/habitEntries/2024-05-01")

    assert res.status_code == 200
    assert len(res.json()) == 1
    assert res.json()[0]["groupId"] == str(group)


async def test_entries_for_day_empty_list_when_nothing_logged(client, fresh_id):
    res = await client.get(f"/api/users/{fresh_id()}/habitEntries/2024-05-01")

    assert res.status_code == 200
    assert res.json() == []


async def test_entries_for_day_bad_date_returns_400(client, fresh_id):
    res = await client.get(f"/api/users/{fresh_id()}/habitEntries/2024-13-45")

    assert res.status_code == 400
