# tests/test_submission.py
"""
Submission path: a pending record is visible before the fulfillment job runs,
and exactly one job is scheduled per submission.
"""
import pytest

from gallery import db as dbmod
from gallery.scheduler import STATE_QUEUED


def test_submit_creates_pending_record_before_job_runs(client, service):
    r = client.post("/api/prompts", json={"sessionId": "s1", "prompt": "tell a joke", "outputType": "text"})
    assert r.status_code == 202
    j = r.json()
    assert j["status"] == "accepted"

    listing = client.get("/api/prompts", params={"count": 10}).json()["prompts"]
    assert len(listing) == 1
    assert listing[0]["id"] == j["id"]
    assert listing[0]["sessionId"] == "s1"
    assert listing[0]["prompt"] == "tell a joke"
    assert listing[0]["result"] is None


def test_submit_enqueues_exactly_one_generate_job(service):
    prompt_id = service.submit("s1", "tell a joke", "text")
    jobs = service.scheduler.list_jobs()
    assert len(jobs) == 1
    assert jobs[0]["name"] == "generate"
    assert jobs[0]["state"] == STATE_QUEUED
    assert jobs[0]["args"] == {"prompt_id": prompt_id, "prompt": "tell a joke", "output_type": "text"}


def test_empty_prompt_is_accepted(client):
    r = client.post("/api/prompts", json={"sessionId": "s1", "prompt": "", "outputType": "text"})
    assert r.status_code == 202
    rec = dbmod.get_prompt(r.json()["id"])
    assert rec["prompt"] == ""
    assert rec["result"] is None


def test_output_type_defaults_to_text(service, client):
    r = client.post("/api/prompts", json={"sessionId": "s1", "prompt": "hi"})
    assert r.status_code == 202
    assert service.scheduler.list_jobs()[0]["args"]["output_type"] == "text"


def test_unknown_output_type_rejected(client):
    r = client.post("/api/prompts", json={"sessionId": "s1", "prompt": "hi", "outputType": "video"})
    assert r.status_code == 422
    assert client.get("/api/prompts").json()["prompts"] == []


def test_image_submission_rejected_when_disabled(client, monkeypatch):
    from gallery import app as app_module
    monkeypatch.setattr(app_module, "IMAGE_GENERATION_ENABLED", False)
    r = client.post("/api/prompts", json={"sessionId": "s1", "prompt": "a cat", "outputType": "image"})
    assert r.status_code == 422
    assert r.json()["error_code"] == "E_OUTPUT_DISABLED"


def test_enqueue_failure_removes_pending_record(service, monkeypatch):
    def broken_enqueue(name, args, delay_s=0.0):
        raise RuntimeError("scheduler unavailable")

    monkeypatch.setattr(service.scheduler, "enqueue", broken_enqueue)
    with pytest.raises(RuntimeError):
        service.submit("s1", "hi", "text")
    assert dbmod.list_recent(10) == []


def test_store_failure_is_reported(client, monkeypatch):
    def boom(session_id, prompt):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(dbmod, "insert_prompt", boom)
    r = client.post("/api/prompts", json={"sessionId": "s1", "prompt": "hi", "outputType": "text"})
    assert r.status_code == 500
    assert r.json()["error_code"] == "E_INTERNAL"
    assert "database is locked" in r.json()["details"]["exception"]
