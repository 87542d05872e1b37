# tests/test_live_query.py
"""
Recent-records projection, blob URL resolution and the websocket live feed.
"""
import pytest

from gallery import db as dbmod
from gallery.live import LiveQueryBroker, broker
from gallery.schemas import PromptList
from gallery.service import session_hue


def _seed(n, session_id="s1"):
    return [dbmod.insert_prompt(session_id, f"prompt {i}") for i in range(n)]


def test_list_recent_is_newest_first_and_bounded(service):
    ids = _seed(5)
    views = service.list_recent(3)
    assert [v.id for v in views] == list(reversed(ids))[:3]


def test_list_recent_zero_returns_empty(service):
    _seed(2)
    assert service.list_recent(0) == []


def test_list_recent_count_larger_than_table(service):
    ids = _seed(2)
    assert [v.id for v in service.list_recent(50)] == list(reversed(ids))


def test_negative_count_rejected(client):
    _seed(1)
    assert client.get("/api/prompts", params={"count": -1}).status_code == 422
    with pytest.raises(ValueError):
        dbmod.list_recent(-1)


def test_deleted_blob_resolves_to_sentinel(client, service):
    prompt_id = dbmod.insert_prompt("s1", "a cat")
    blob_ref = service.blob_store.store(b"png", "image/png")
    assert dbmod.set_image_result(prompt_id, blob_ref)

    first = client.get("/api/prompts").json()["prompts"][0]
    assert first["result"] == {"type": "image", "value": f"/api/storage/{blob_ref}"}

    service.blob_store.delete(blob_ref)
    again = client.get("/api/prompts").json()["prompts"][0]
    assert again["result"] == {"type": "image", "value": None}
    # stored record still holds the reference, not a URL
    assert dbmod.get_prompt(prompt_id)["result"] == {"type": "image", "value": blob_ref}
    assert client.get(f"/api/storage/{blob_ref}").status_code == 404


def test_resolution_reruns_on_every_read(service, monkeypatch):
    prompt_id = dbmod.insert_prompt("s1", "a cat")
    blob_ref = service.blob_store.store(b"png", "image/png")
    dbmod.set_image_result(prompt_id, blob_ref)

    assert service.list_recent(1)[0].result.value == f"/api/storage/{blob_ref}"
    monkeypatch.setattr(service.blob_store, "base_url", "https://cdn.example")
    assert service.list_recent(1)[0].result.value == f"https://cdn.example/api/storage/{blob_ref}"


def test_same_session_shares_hue(service):
    dbmod.insert_prompt("s1", "tell a joke")
    dbmod.insert_prompt("s1", "something entirely different")
    dbmod.insert_prompt("another-session", "tell a joke")
    views = {v.prompt + v.session_id: v for v in service.list_recent(10)}
    assert views["tell a jokes1"].hue == views["something entirely differents1"].hue
    assert views["tell a jokes1"].hue == session_hue("s1")


def test_session_hue_values():
    assert session_hue("") == 0
    assert session_hue("a") == 254
    assert session_hue("s1") == 211
    assert all(0 <= session_hue(s) < 360 for s in ["x", "session-123", "ünïcode", "😀"])


def test_broker_fans_out_and_unsubscribes():
    b = LiveQueryBroker()
    hits = []
    unsub_a = b.subscribe(lambda: hits.append("a"))
    b.subscribe(lambda: hits.append("b"))
    b.publish()
    unsub_a()
    b.publish()
    assert hits == ["a", "b", "b"]
    assert b.subscriber_count() == 1


def test_broker_survives_failing_subscriber():
    b = LiveQueryBroker()
    hits = []

    def broken():
        raise RuntimeError("client gone")

    b.subscribe(broken)
    b.subscribe(lambda: hits.append(1))
    b.publish()
    assert hits == [1]


def test_every_store_mutation_publishes():
    hits = []
    unsubscribe = broker.subscribe(lambda: hits.append(1))
    try:
        prompt_id = dbmod.insert_prompt("s1", "hi")
        dbmod.set_text_result(prompt_id, "ha")
        dbmod.delete_prompt(prompt_id)
        # no-ops do not notify
        dbmod.delete_prompt(prompt_id)
    finally:
        unsubscribe()
    assert len(hits) == 3


def test_websocket_pushes_updates(client, service):
    existing = dbmod.insert_prompt("s0", "older")
    with client.websocket_connect("/api/prompts/live?count=5") as ws:
        initial = ws.receive_json()
        assert [p["id"] for p in initial["prompts"]] == [existing]

        r = client.post("/api/prompts", json={"sessionId": "s1", "prompt": "tell a joke", "outputType": "text"})
        new_id = r.json()["id"]
        pending = ws.receive_json()
        assert [p["id"] for p in pending["prompts"]] == [new_id, existing]
        assert pending["prompts"][0]["result"] is None

        service.scheduler.run_due()
        done = ws.receive_json()
        # MOCK_OPENAI echoes the user message
        assert done["prompts"][0]["result"] == {"type": "text", "value": "tell a joke"}
    assert broker.subscriber_count() == 0


def test_http_listing_matches_prompt_list_model(client):
    _seed(2)
    body = client.get("/api/prompts?count=5").json()
    parsed = PromptList.model_validate(body)
    assert [p.prompt for p in parsed.prompts] == ["prompt 1", "prompt 0"]
    assert set(body["prompts"][0]) == {"id", "sessionId", "prompt", "result", "creationTime", "hue"}
