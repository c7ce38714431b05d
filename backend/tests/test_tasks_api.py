import pytest


@pytest.fixture
def create_task(client):
    def _create(**fields):
        response = client.post("/tasks", params={"userId": "u1"}, json=fields)
        assert response.status_code == 201, response.text
        return response.json()
    return _create


def test_create_task_defaults(create_task):
    task = create_task(title="Test", priority="high")

    assert task["title"] == "Test"
    assert task["status"] == "pending"
    assert task["priority"] == "high"
    assert task["category"] == "Personal"
    assert task["completedAt"] is None
    assert task["userId"] == "u1"
    assert task["id"]


def test_create_task_uses_default_user(client, settings):
    client.post("/tasks", json={"title": "Anonymous"})
    tasks = client.get("/tasks").json()["tasks"]
    assert [t["userId"] for t in tasks] == [settings.default_user_id]


def test_create_task_requires_title(client):
    assert client.post("/tasks", json={"priority": "high"}).status_code == 400
    assert client.post("/tasks", json={"title": "   "}).status_code == 400


def test_create_task_rejects_unknown_priority(client):
    assert client.post("/tasks", json={"title": "x", "priority": "urgent"}).status_code == 400


def test_completion_toggles_completed_at(client, create_task):
    task = create_task(title="Write report")

    done = client.put(f"/tasks/{task['id']}", params={"userId": "u1"}, json={"status": "completed"}).json()
    assert done["status"] == "completed"
    assert done["completedAt"] is not None

    # re-completing keeps the original timestamp
    again = client.put(f"/tasks/{task['id']}", params={"userId": "u1"}, json={"status": "completed"}).json()
    assert again["completedAt"] == done["completedAt"]

    reopened = client.put(f"/tasks/{task['id']}", params={"userId": "u1"}, json={"status": "pending"}).json()
    assert reopened["status"] == "pending"
    assert reopened["completedAt"] is None


def test_update_without_status_leaves_completed_at(client, create_task):
    task = create_task(title="Write report")
    client.put(f"/tasks/{task['id']}", params={"userId": "u1"}, json={"status": "completed"})

    renamed = client.put(f"/tasks/{task['id']}", params={"userId": "u1"}, json={"title": "Write the report"}).json()
    assert renamed["title"] == "Write the report"
    assert renamed["completedAt"] is not None


def test_empty_update_is_rejected(client, create_task):
    task = create_task(title="Write report")
    response = client.put(f"/tasks/{task['id']}", params={"userId": "u1"}, json={})
    assert response.status_code == 400
    assert response.json()["error"] == "No fields to update"


def test_null_title_update_is_rejected(client, create_task):
    task = create_task(title="Write report")
    response = client.put(f"/tasks/{task['id']}", params={"userId": "u1"}, json={"title": None})
    assert response.status_code == 400
    assert response.json()["issues"] == ["title: must not be null"]


def test_list_filters(client, create_task):
    create_task(title="a", priority="high", category="Work")
    create_task(title="b", priority="low", category="Personal")

    work = client.get("/tasks", params={"userId": "u1", "category": "Work"}).json()["tasks"]
    assert [t["title"] for t in work] == ["a"]

    low = client.get("/tasks", params={"userId": "u1", "priority": "low"}).json()["tasks"]
    assert [t["title"] for t in low] == ["b"]

    pending = client.get("/tasks", params={"userId": "u1", "status": "completed"}).json()["tasks"]
    assert pending == []


def test_list_sort_order(client, create_task):
    create_task(title="low", priority="low", dueDate="2030-01-01T00:00:00Z")
    create_task(title="high undated", priority="high")
    create_task(title="high later", priority="high", dueDate="2030-06-01T00:00:00Z")
    create_task(title="high sooner", priority="high", dueDate="2030-02-01T00:00:00Z")

    titles = [t["title"] for t in client.get("/tasks", params={"userId": "u1"}).json()["tasks"]]
    assert titles == ["high sooner", "high later", "high undated", "low"]


def test_tasks_are_scoped_per_user(client, create_task):
    task = create_task(title="mine")
    assert client.get("/tasks", params={"userId": "u2"}).json()["tasks"] == []
    assert client.get(f"/tasks/{task['id']}", params={"userId": "u2"}).status_code == 404


def test_get_and_delete(client, create_task):
    task = create_task(title="Write report")

    fetched = client.get(f"/tasks/{task['id']}", params={"userId": "u1"}).json()
    assert fetched["title"] == "Write report"

    assert client.delete(f"/tasks/{task['id']}", params={"userId": "u1"}).json() == {"deleted": True}
    assert client.get(f"/tasks/{task['id']}", params={"userId": "u1"}).status_code == 404
    assert client.delete(f"/tasks/{task['id']}", params={"userId": "u1"}).status_code == 404


@pytest.mark.parametrize("task_id", ["not-an-id", "64b7f0c2a1b2c3d4e5f60718"])
def test_unknown_task_ids_are_404(client, task_id):
    assert client.get(f"/tasks/{task_id}").status_code == 404
    assert client.put(f"/tasks/{task_id}", json={"title": "x"}).status_code == 404
    assert client.delete(f"/tasks/{task_id}").status_code == 404
