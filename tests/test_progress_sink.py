"""
Tests for progress reporting and webhook notifications.
"""

import hashlib
import hmac
import json

import httpx
import pytest

from clipworker.models import Clip, JobStatus
from clipworker.services.progress_sink import JobProgressSink, LostClaimError
from clipworker.services.webhook_service import WebhookService


def make_clip() -> Clip:
    return Clip(
        id="proj_1_clip_0",
        title="Clip 1",
        description="",
        start_time=0.0,
        end_time=30.0,
        duration=30.0,
        thumbnail_url="https://klap.app/player/c0/thumbnail",
        tags=[],
        virality_score=0.5,
        export_url="https://cdn.example.com/clip_0.mp4",
    )


class RecordingWebhook:
    """Collects webhook deliveries through an httpx.MockTransport."""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code)

    @property
    def payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def claimed_job(queue, project):
    queue.enqueue("proj_1", "https://example.com/video.mp4")
    return queue.dequeue_next()


class TestJobProgressSink:
    """Tests for JobProgressSink."""

    @pytest.mark.asyncio
    async def test_report_never_moves_backwards(self, queue, projects, claimed_job):
        sink = JobProgressSink(queue, projects)

        await sink.report(claimed_job, 40)
        await sink.report(claimed_job, 30)

        assert claimed_job.progress == 40
        assert queue.get_job(claimed_job.id).progress == 40

    @pytest.mark.asyncio
    async def test_report_mirrors_project_task(self, queue, projects, claimed_job):
        sink = JobProgressSink(queue, projects)

        await sink.report(claimed_job, 25, external_task_id="task_1")

        task = next(t for t in projects.get_project("proj_1")["tasks"] if t["type"] == "clips")
        assert task["status"] == "processing"
        assert task["progress"] == 25
        assert task["started_at"]
        assert claimed_job.external_task_id == "task_1"

    @pytest.mark.asyncio
    async def test_project_store_errors_do_not_propagate(self, queue, projects, claimed_job, mocker):
        mocker.patch.object(projects, "update_task_progress", side_effect=RuntimeError("db down"))
        sink = JobProgressSink(queue, projects)

        await sink.report(claimed_job, 30)

        assert queue.get_job(claimed_job.id).progress == 30

    @pytest.mark.asyncio
    async def test_completed_updates_working_copy(self, queue, projects, claimed_job):
        sink = JobProgressSink(queue, projects)

        await sink.completed(claimed_job, [make_clip()])

        assert claimed_job.status == JobStatus.COMPLETED
        assert claimed_job.progress == 100
        assert queue.get_job(claimed_job.id).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_failed_marks_project_task(self, queue, projects, claimed_job):
        sink = JobProgressSink(queue, projects)

        await sink.failed(claimed_job, "Clip generation failed: bad source")

        assert claimed_job.status == JobStatus.FAILED
        task = next(t for t in projects.get_project("proj_1")["tasks"] if t["type"] == "clips")
        assert task["status"] == "failed"

    @pytest.mark.asyncio
    async def test_terminal_events_are_sent(self, queue, projects, claimed_job):
        recorder = RecordingWebhook()
        webhooks = WebhookService(transport=httpx.MockTransport(recorder), retry_delay_seconds=0)
        sink = JobProgressSink(queue, projects, webhooks, "https://hooks.example.com/clips")

        await sink.completed(claimed_job, [make_clip()])

        assert len(recorder.payloads) == 1
        payload = recorder.payloads[0]
        assert payload["event"] == "job.completed"
        assert payload["job_id"] == claimed_job.id
        assert payload["status"] == "completed"
        assert payload["clips_count"] == 1

    @pytest.mark.asyncio
    async def test_no_webhook_without_url(self, queue, projects, claimed_job):
        recorder = RecordingWebhook()
        webhooks = WebhookService(transport=httpx.MockTransport(recorder))
        sink = JobProgressSink(queue, projects, webhooks, webhook_url=None)

        await sink.failed(claimed_job, "boom")

        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_report_after_claim_lost_raises(self, queue, projects, claimed_job):
        queue.fail(claimed_job.id, "Job timed out")
        sink = JobProgressSink(queue, projects)

        with pytest.raises(LostClaimError):
            await sink.report(claimed_job, 60)

        assert queue.get_job(claimed_job.id).progress == 0
        task = next(t for t in projects.get_project("proj_1")["tasks"] if t["type"] == "clips")
        assert task["progress"] != 60

    @pytest.mark.asyncio
    async def test_completed_after_claim_lost_sends_nothing(self, queue, projects, claimed_job):
        recorder = RecordingWebhook()
        webhooks = WebhookService(transport=httpx.MockTransport(recorder), retry_delay_seconds=0)
        sink = JobProgressSink(queue, projects, webhooks, "https://hooks.example.com/clips")
        queue.fail(claimed_job.id, "Job timed out")

        with pytest.raises(LostClaimError):
            await sink.completed(claimed_job, [make_clip()])

        assert claimed_job.status == JobStatus.PROCESSING
        assert queue.get_job(claimed_job.id).status == JobStatus.FAILED
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_failed_leaves_settled_job_alone(self, queue, projects, claimed_job):
        recorder = RecordingWebhook()
        webhooks = WebhookService(transport=httpx.MockTransport(recorder), retry_delay_seconds=0)
        sink = JobProgressSink(queue, projects, webhooks, "https://hooks.example.com/clips")
        queue.complete(claimed_job.id, [make_clip()])

        await sink.failed(claimed_job, "late failure")

        stored = queue.get_job(claimed_job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.error is None
        assert claimed_job.error is None
        assert recorder.requests == []


class TestWebhookService:
    """Tests for WebhookService delivery."""

    @pytest.mark.asyncio
    async def test_signature_header(self, monkeypatch):
        from clipworker.config import get_settings

        monkeypatch.setenv("WEBHOOK_SECRET", "s3cret")
        get_settings.cache_clear()
        recorder = RecordingWebhook()
        service = WebhookService(transport=httpx.MockTransport(recorder))
        payload = service.build_payload("job.failed", "job_1", "proj_1", "failed", 30, error="boom")

        result = await service.send("https://hooks.example.com", payload)

        assert result.success
        request = recorder.requests[0]
        expected = hmac.new(b"s3cret", request.content, hashlib.sha256).hexdigest()
        assert request.headers["X-Clipworker-Signature"] == f"sha256={expected}"
        assert request.headers["X-Webhook-Event"] == "job.failed"

    @pytest.mark.asyncio
    async def test_retries_then_gives_up(self):
        recorder = RecordingWebhook(status_code=500)
        service = WebhookService(transport=httpx.MockTransport(recorder), max_retries=3, retry_delay_seconds=0)
        payload = service.build_payload("job.completed", "job_1", "proj_1", "completed", 100, clips_count=2)

        result = await service.send("https://hooks.example.com", payload)

        assert not result.success
        assert result.attempts == 3
        assert len(recorder.requests) == 3
        assert "HTTP 500" in result.error
