import json
import time
from unittest.mock import patch

import pytest
import redis

from services.admission_service import JobAdmissionController
from services.status_store import StatusStore

from conftest import SECRET


def post(controller, body, headers=None, method="POST"):
    all_headers = {"x-api-key": SECRET}
    all_headers.update(headers or {})
    raw = body if isinstance(body, (bytes, str)) or body is None else json.dumps(body)
    return controller.admit(method, all_headers, raw)


def store_keys(fake_redis):
    return sorted(fake_redis.keys("*"))


class TestAdmission:

    def test_creates_status_record_and_queue_entry(self, controller, fake_redis, queued):
        outcome = post(controller, {"spaceKey": "uploads/a.mp4"})

        assert outcome.status_code == 201
        job_id = outcome.payload["jobId"]
        assert outcome.payload == {"ok": True, "jobId": job_id}

        status = fake_redis.hgetall(f"job:status:{job_id}")
        assert status["status"] == "queued"
        assert status["key"] == "uploads/a.mp4"
        assert status["outFolder"] == "uploads-shd"
        assert status["queuedAt"].endswith("Z")

        entries = queued()
        assert len(entries) == 1
        assert entries[0]["id"] == job_id
        assert entries[0]["key"] == "uploads/a.mp4"
        assert entries[0]["type"] == "transcode"

    def test_queue_entry_carries_optional_fields(self, controller, queued):
        post(controller, {
            "spaceKey": "uploads/a.mp4",
            "originalFilename": "a.mp4",
            "contentType": "video/mp4",
            "outFolder": "out",
            "correlationId": "corr-1",
        })
        entry = queued()[0]
        assert entry["originalFilename"] == "a.mp4"
        assert entry["contentType"] == "video/mp4"
        assert entry["outFolder"] == "out"
        assert entry["correlationId"] == "corr-1"

    def test_status_record_uses_retention_ttl(self, settings, fake_redis):
        settings.JOB_STATUS_TTL_SECONDS = 120
        controller = JobAdmissionController.from_redis(settings, fake_redis)
        job_id = post(controller, {"spaceKey": "k"}).payload["jobId"]
        assert 0 < fake_redis.ttl(f"job:status:{job_id}") <= 120

    def test_without_token_every_call_is_a_new_job(self, controller, queued):
        first = post(controller, {"spaceKey": "k"})
        second = post(controller, {"spaceKey": "k"})

        assert first.payload["jobId"] != second.payload["jobId"]
        assert len(queued()) == 2

    def test_cors_headers_on_every_response(self, controller):
        outcome = post(controller, {"spaceKey": "k"})
        assert outcome.headers["Access-Control-Allow-Origin"] == "*"
        assert outcome.headers["Access-Control-Max-Age"] == "86400"
        assert "Idempotency-Key" in outcome.headers["Access-Control-Allow-Headers"]


class TestIdempotency:

    def test_replay_returns_same_job_without_writes(self, controller, fake_redis, queued):
        first = post(controller, {"spaceKey": "k"}, {"Idempotency-Key": "abc"})
        keys_after_first = store_keys(fake_redis)

        second = post(controller, {"spaceKey": "k"}, {"Idempotency-Key": "abc"})

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.payload == {"ok": True, "jobId": first.payload["jobId"], "deduped": True}
        assert len(queued()) == 1
        assert store_keys(fake_redis) == keys_after_first

    def test_different_tokens_create_different_jobs(self, controller, queued):
        first = post(controller, {"spaceKey": "k"}, {"Idempotency-Key": "abc"})
        second = post(controller, {"spaceKey": "k"}, {"Idempotency-Key": "def"})
        assert first.payload["jobId"] != second.payload["jobId"]
        assert len(queued()) == 2

    def test_token_reusable_after_retention_window(self, settings, fake_redis, queued):
        settings.JOB_STATUS_TTL_SECONDS = 1
        controller = JobAdmissionController.from_redis(settings, fake_redis)

        first = post(controller, {"spaceKey": "k"}, {"Idempotency-Key": "abc"})
        time.sleep(1.2)
        second = post(controller, {"spaceKey": "k"}, {"Idempotency-Key": "abc"})

        assert second.status_code == 201
        assert second.payload["jobId"] != first.payload["jobId"]
        assert "deduped" not in second.payload

    def test_blank_token_is_ignored(self, controller, fake_redis):
        post(controller, {"spaceKey": "k"}, {"Idempotency-Key": "   "})
        assert fake_redis.keys("job:idem:*") == []

    def test_overlong_token_is_rejected(self, controller, fake_redis):
        outcome = post(controller, {"spaceKey": "k"}, {"Idempotency-Key": "x" * 201})
        assert outcome.status_code == 400
        assert outcome.payload["error"] == "invalid_idempotency_key"
        assert store_keys(fake_redis) == []

    def test_mapping_failure_still_admits(self, controller, queued):
        with patch.object(controller.ledger, "record", side_effect=redis.ConnectionError("down")):
            outcome = post(controller, {"spaceKey": "k"}, {"Idempotency-Key": "abc"})
        assert outcome.status_code == 201
        assert len(queued()) == 1

    def test_lookup_race_creates_two_jobs_in_base_mode(self, controller, queued):
        # Both submissions miss the lookup before either records its mapping.
        with patch.object(controller.ledger, "lookup", return_value=None):
            first = post(controller, {"spaceKey": "k"}, {"Idempotency-Key": "abc"})
            second = post(controller, {"spaceKey": "k"}, {"Idempotency-Key": "abc"})

        assert first.payload["jobId"] != second.payload["jobId"]
        assert len(queued()) == 2
        assert controller.ledger.lookup("abc") == second.payload["jobId"]


class TestReserveMode:

    @pytest.fixture
    def reserving(self, settings, fake_redis):
        settings.IDEMPOTENCY_RESERVE = True
        return JobAdmissionController.from_redis(settings, fake_redis)

    def test_replay_is_deduped(self, reserving, queued):
        first = post(reserving, {"spaceKey": "k"}, {"Idempotency-Key": "abc"})
        second = post(reserving, {"spaceKey": "k"}, {"Idempotency-Key": "abc"})

        assert second.status_code == 200
        assert second.payload["jobId"] == first.payload["jobId"]
        assert len(queued()) == 1

    def test_successful_admission_extends_reservation(self, reserving, fake_redis):
        post(reserving, {"spaceKey": "k"}, {"Idempotency-Key": "abc"})
        assert fake_redis.ttl("job:idem:abc") > reserving.settings.IDEMPOTENCY_CLAIM_TTL_SECONDS

    def test_concurrent_claim_returns_winner(self, reserving, queued):
        reserving.ledger.reserve("abc", "winner-job")

        outcome = post(reserving, {"spaceKey": "k"}, {"Idempotency-Key": "abc"})

        assert outcome.payload == {"ok": True, "jobId": "winner-job", "deduped": True}
        assert queued() == []

    def test_failed_enqueue_releases_reservation(self, reserving, fake_redis):
        with patch.object(reserving.work_queue, "push", side_effect=redis.ConnectionError("down")):
            outcome = post(reserving, {"spaceKey": "k"}, {"Idempotency-Key": "abc"})

        assert outcome.status_code == 502
        assert fake_redis.keys("job:idem:*") == []


class TestRejections:

    def test_options_touches_nothing(self, controller, fake_redis):
        outcome = controller.admit("OPTIONS", {}, None)
        assert outcome.status_code == 204
        assert outcome.payload is None
        assert outcome.headers["Access-Control-Allow-Methods"] == "POST, OPTIONS"
        assert store_keys(fake_redis) == []

    @pytest.mark.parametrize("method", ["GET", "PUT", "DELETE", "PATCH"])
    def test_other_methods_rejected(self, controller, fake_redis, method):
        outcome = post(controller, {"spaceKey": "k"}, method=method)
        assert outcome.status_code == 405
        assert outcome.payload == {"ok": False, "error": "method_not_allowed"}
        assert outcome.headers["Allow"] == "POST, OPTIONS"
        assert store_keys(fake_redis) == []

    def test_missing_secret_config_is_500(self, settings, fake_redis):
        settings.ENQUEUE_SHARED_SECRET = None
        controller = JobAdmissionController.from_redis(settings, fake_redis)

        outcome = post(controller, {"spaceKey": "k"})

        assert outcome.status_code == 500
        assert outcome.payload == {"ok": False, "error": "misconfigured"}
        assert store_keys(fake_redis) == []

    def test_missing_redis_client_is_500(self, settings):
        controller = JobAdmissionController.from_redis(settings, None)
        outcome = post(controller, {"spaceKey": "k"})
        assert outcome.status_code == 500

    def test_missing_redis_url_is_500(self, settings, fake_redis):
        settings.REDIS_URL = None
        controller = JobAdmissionController.from_redis(settings, fake_redis)
        assert post(controller, {"spaceKey": "k"}).status_code == 500

    def test_wrong_secret_rejected_before_validation(self, controller, fake_redis):
        outcome = controller.admit("POST", {"x-api-key": "wrong"}, b'{"spaceKey": ""}')
        assert outcome.status_code == 401
        assert outcome.payload == {"ok": False, "error": "unauthorized"}
        assert store_keys(fake_redis) == []

    def test_missing_secret_rejected_before_parse(self, controller):
        outcome = controller.admit("POST", {}, b"{not json")
        assert outcome.status_code == 401

    def test_malformed_json(self, controller, fake_redis):
        outcome = post(controller, b"{not json")
        assert outcome.status_code == 400
        assert outcome.payload["error"] == "invalid_json"
        assert store_keys(fake_redis) == []

    def test_empty_body_is_schema_failure(self, controller):
        outcome = post(controller, b"")
        assert outcome.status_code == 422
        assert "spaceKey" in outcome.payload["details"]["fieldErrors"]

    def test_schema_failure_lists_fields(self, controller, fake_redis):
        outcome = post(controller, {"spaceKey": "", "contentType": 5})
        assert outcome.status_code == 422
        assert outcome.payload["error"] == "invalid_payload"
        assert set(outcome.payload["details"]["fieldErrors"]) == {"spaceKey", "contentType"}
        assert store_keys(fake_redis) == []

    def test_invalid_payload_not_recorded_under_token(self, controller, fake_redis):
        post(controller, {"spaceKey": ""}, {"Idempotency-Key": "abc"})
        assert fake_redis.keys("job:idem:*") == []


class TestDependencyFailures:

    def test_status_write_failure_is_502(self, controller, queued):
        with patch.object(controller.status_store, "create", side_effect=redis.TimeoutError("slow")):
            outcome = post(controller, {"spaceKey": "k"})

        assert outcome.status_code == 502
        assert outcome.payload == {"ok": False, "error": "enqueue_failed"}
        assert queued() == []

    def test_queue_failure_leaves_orphaned_status(self, controller, fake_redis):
        with patch.object(controller.work_queue, "push", side_effect=redis.ConnectionError("down")):
            outcome = post(controller, {"spaceKey": "k"}, {"Idempotency-Key": "abc"})

        assert outcome.status_code == 502
        assert len(fake_redis.keys("job:status:*")) == 1
        assert fake_redis.keys("job:idem:*") == []

    def test_retry_after_failure_creates_job(self, controller, queued):
        with patch.object(controller.work_queue, "push", side_effect=redis.ConnectionError("down")):
            post(controller, {"spaceKey": "k"}, {"Idempotency-Key": "abc"})

        retry = post(controller, {"spaceKey": "k"}, {"Idempotency-Key": "abc"})

        assert retry.status_code == 201
        assert len(queued()) == 1

    def test_ledger_lookup_failure_is_502(self, controller):
        with patch.object(controller.ledger, "lookup", side_effect=redis.ConnectionError("down")):
            outcome = post(controller, {"spaceKey": "k"}, {"Idempotency-Key": "abc"})
        assert outcome.status_code == 502


def test_injected_clock_and_ids(settings, fake_redis):
    controller = JobAdmissionController.from_redis(
        settings,
        fake_redis,
        clock=lambda: "2025-08-11T10:00:00.000Z",
        id_factory=lambda: "fixed-id"
    )
    outcome = post(controller, {"spaceKey": "uploads/a.mp4", "contentType": "video/mp4"})

    assert outcome.payload["jobId"] == "fixed-id"
    record = StatusStore(fake_redis, 60).get("fixed-id")
    assert record.queuedAt == "2025-08-11T10:00:00.000Z"
    assert record.contentType == "video/mp4"
