from conftest import PROJECT_ID


def generation_event(event_id="evt-1", **body):
    body.setdefault("id", "gen-1")
    return {
        "id": event_id,
        "type": "generation-create",
        "timestamp": "2024-06-01T12:00:00Z",
        "body": body,
    }


def test_valid_events_are_queued(client, auth_headers, fake_queue):
    batch = [
        generation_event("evt-1", model="gpt-4o", input="hi"),
        generation_event("evt-2", id="gen-2", model="gpt-4o", usage={"promptTokens": 3}),
    ]

    response = client.post("/api/public/ingestion", json={"batch": batch}, headers=auth_headers)

    assert response.status_code == 207
    assert response.json() == {
        "successes": [{"id": "evt-1", "status": 201}, {"id": "evt-2", "status": 201}],
        "errors": [],
    }
    assert fake_queue.jobs == [(PROJECT_ID, batch[0]), (PROJECT_ID, batch[1])]


def test_invalid_events_are_reported_individually(client, auth_headers, fake_queue):
    batch = [
        generation_event("evt-ok", model="gpt-4o"),
        {"id": "evt-no-body", "type": "generation-create", "timestamp": "2024-06-01T12:00:00Z"},
        {"id": "evt-span", "type": "observation-create", "timestamp": "2024-06-01T12:00:00Z",
         "body": {"id": "span-1", "type": "SPAN"}},
        generation_event("evt-negative", usage={"input": -5}),
        "not an event",
    ]

    response = client.post("/api/public/ingestion", json={"batch": batch}, headers=auth_headers)

    assert response.status_code == 207
    body = response.json()
    assert [s["id"] for s in body["successes"]] == ["evt-ok"]
    assert [e["id"] for e in body["errors"]] == ["evt-no-body", "evt-span", "evt-negative", ""]
    assert all(e["status"] == 400 for e in body["errors"])
    assert all(e["message"] == "Invalid request data" for e in body["errors"])
    assert "body" in body["errors"][0]["error"]
    assert len(fake_queue.jobs) == 1


def test_batch_size_limit(client, auth_headers, settings, fake_queue):
    settings.ingestion_max_batch_size = 2
    batch = [generation_event(f"evt-{i}", id=f"gen-{i}") for i in range(3)]

    response = client.post("/api/public/ingestion", json={"batch": batch}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_request"
    assert fake_queue.jobs == []


def test_requires_api_key(client, fake_queue):
    response = client.post("/api/public/ingestion", json={"batch": [generation_event()]})
    assert response.status_code == 401
    assert fake_queue.jobs == []


def test_missing_batch_is_unprocessable(client, auth_headers):
    response = client.post("/api/public/ingestion", json={}, headers=auth_headers)
    assert response.status_code == 422
