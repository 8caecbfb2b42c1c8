"""
Tests for the clip pipeline (export, download, upload, persist).
"""

import httpx
import pytest

from clipworker.models import Job, JobStatus
from clipworker.services.clip_pipeline import ClipPipeline, NoClipsError, ProjectGoneError
from clipworker.services.klap_client import KlapClient


@pytest.fixture
def job():
    return Job(
        id="job_1",
        project_id="proj_1",
        source_media_url="https://example.com/video.mp4",
        status=JobStatus.PROCESSING,
        progress=50,
    )


@pytest.fixture
def pipeline(klap_api, storage, projects):
    return ClipPipeline(
        KlapClient(transport=klap_api.transport),
        storage,
        projects,
        transport=klap_api.transport,
    )


class TestClipPipeline:
    """Tests for ClipPipeline.run."""

    @pytest.mark.asyncio
    async def test_partial_failures_keep_surviving_clips_in_order(self, pipeline, klap_api, project, projects, job):
        klap_api.clips = ["c0", "c1", "c2", "c3", "c4"]
        klap_api.failing_exports = {"c1"}
        klap_api.failing_downloads = {"c3"}

        clips = await pipeline.run(job, "folder_1")

        assert [clip.vendor_clip_id for clip in clips] == ["c0", "c2", "c4"]
        assert [clip.id for clip in clips] == ["proj_1_clip_0", "proj_1_clip_2", "proj_1_clip_4"]
        stored = projects.get_project("proj_1")
        assert [clip["id"] for clip in stored["folders"]["clips"]] == [clip.id for clip in clips]

    @pytest.mark.asyncio
    async def test_clips_point_at_durable_storage(self, pipeline, klap_api, project, job, mock_s3_client):
        klap_api.clips = ["c0"]

        clips = await pipeline.run(job, "folder_1")

        call = mock_s3_client.put_object.call_args.kwargs
        assert call["Bucket"] == "test-bucket"
        assert call["Key"].startswith("videos/proj_1/clips/clip_0_")
        assert call["Key"].endswith(".mp4")
        assert call["Body"] == b"video-bytes-c0"
        assert call["ContentType"] == "video/mp4"
        assert clips[0].export_url == f"https://test-bucket.s3.us-east-1.amazonaws.com/{call['Key']}"

    @pytest.mark.asyncio
    async def test_defaults_when_details_are_missing(self, pipeline, klap_api, project, job):
        klap_api.clips = ["c0"]

        clip = (await pipeline.run(job, "folder_1"))[0]

        assert clip.title == "Clip 1"
        assert clip.duration == 30.0
        assert clip.virality_score == 0.5
        assert clip.thumbnail_url == "https://klap.app/player/c0/thumbnail"
        assert clip.tags == []

    @pytest.mark.asyncio
    async def test_details_are_mapped(self, pipeline, klap_api, project, job):
        klap_api.clips = ["c0"]
        klap_api.clip_details = {
            "c0": {
                "name": "The hook",
                "virality_score": 87,
                "virality_score_explanation": "Strong opening",
                "start_time": 12.5,
                "end_time": 40.0,
                "duration": 27.5,
                "transcript": "so here's the thing",
            }
        }

        clip = (await pipeline.run(job, "folder_1"))[0]

        assert clip.title == "The hook"
        assert clip.virality_score == pytest.approx(0.87)
        assert clip.description == "Strong opening"
        assert clip.start_time == 12.5
        assert clip.duration == 27.5
        assert clip.transcript == "so here's the thing"

    @pytest.mark.asyncio
    async def test_out_of_range_score_is_clamped(self, pipeline, klap_api, project, job):
        klap_api.clips = ["c0"]
        klap_api.clip_details = {"c0": {"virality_score": 140}}

        clip = (await pipeline.run(job, "folder_1"))[0]

        assert clip.virality_score == 1.0

    @pytest.mark.asyncio
    async def test_progress_reported_per_clip(self, pipeline, klap_api, project, job, mocker):
        klap_api.clips = ["c0", "c1", "c2", "c3"]
        on_progress = mocker.AsyncMock()

        await pipeline.run(job, "folder_1", on_progress=on_progress)

        assert [c.args[0] for c in on_progress.call_args_list] == [60, 70, 80, 90]

    @pytest.mark.asyncio
    async def test_all_clips_failing_writes_nothing(self, pipeline, klap_api, project, projects, job):
        klap_api.clips = ["c0", "c1"]
        klap_api.failing_exports = {"c0", "c1"}

        with pytest.raises(NoClipsError, match="All 2 clips failed"):
            await pipeline.run(job, "folder_1")

        assert projects.get_project("proj_1")["folders"]["clips"] == []

    @pytest.mark.asyncio
    async def test_empty_folder(self, pipeline, klap_api, project, job):
        klap_api.clips = []

        with pytest.raises(NoClipsError, match="No clips generated"):
            await pipeline.run(job, "folder_1")

    @pytest.mark.asyncio
    async def test_upload_failure_skips_clip(self, pipeline, klap_api, project, job, mock_s3_client):
        from botocore.exceptions import ClientError

        klap_api.clips = ["c0", "c1"]
        mock_s3_client.put_object.side_effect = [
            ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"),
            {"ETag": '"ok"'},
        ]

        clips = await pipeline.run(job, "folder_1")

        assert [clip.vendor_clip_id for clip in clips] == ["c1"]

    @pytest.mark.asyncio
    async def test_project_deleted_during_extraction(self, pipeline, klap_api, project, projects, job, mock_s3_client):
        klap_api.clips = ["c0"]
        mock_s3_client.put_object.side_effect = lambda **kwargs: projects.delete_project("proj_1")

        with pytest.raises(ProjectGoneError):
            await pipeline.run(job, "folder_1")

        assert projects.get_project("proj_1") is None

    @pytest.mark.asyncio
    async def test_other_folders_are_preserved(self, pipeline, klap_api, project, projects, job):
        folders = projects.get_project("proj_1")["folders"]
        folders["blog"] = [{"id": "post_1"}]
        projects.update_project("proj_1", folders=folders)
        klap_api.clips = ["c0"]

        await pipeline.run(job, "folder_1")

        stored = projects.get_project("proj_1")
        assert stored["folders"]["blog"] == [{"id": "post_1"}]
        assert len(stored["folders"]["clips"]) == 1
        clips_task = next(t for t in stored["tasks"] if t["type"] == "clips")
        assert clips_task["status"] == "completed"
        assert clips_task["progress"] == 100

    @pytest.mark.asyncio
    async def test_empty_download_skips_clip(self, pipeline, klap_api, project, job, mock_s3_client):
        klap_api.clips = ["c0", "c1"]
        klap_api.empty_downloads = {"c0"}

        clips = await pipeline.run(job, "folder_1")

        assert [clip.vendor_clip_id for clip in clips] == ["c1"]
        assert mock_s3_client.put_object.call_count == 1

    @pytest.mark.asyncio
    async def test_download_is_streamed(self, pipeline, project, job, mocker):
        stream = mocker.spy(httpx.AsyncClient, "stream")

        data = await pipeline._download("https://cdn.klap.test/exports/c0.mp4")

        assert data == b"video-bytes-c0"
        assert stream.call_args.args[-2:] == ("GET", "https://cdn.klap.test/exports/c0.mp4")


class TestInvocationBudget:
    """Tests for the expiry check between clips."""

    @pytest.mark.asyncio
    async def test_remaining_clips_skipped_once_expired(self, pipeline, klap_api, project, projects, job, mocker):
        klap_api.clips = ["c0", "c1", "c2"]
        expired = mocker.Mock(side_effect=[False, True, True])

        clips = await pipeline.run(job, "folder_1", expired=expired)

        assert [clip.vendor_clip_id for clip in clips] == ["c0"]
        assert len(projects.get_project("proj_1")["folders"]["clips"]) == 1
        exports = [r for r in klap_api.requests if r.method == "POST" and r.url.path.endswith("/exports")]
        assert len(exports) == 1

    @pytest.mark.asyncio
    async def test_expired_before_first_clip(self, pipeline, klap_api, project, projects, job):
        klap_api.clips = ["c0", "c1"]

        with pytest.raises(NoClipsError, match="timed out before any of 2 clips"):
            await pipeline.run(job, "folder_1", expired=lambda: True)

        assert projects.get_project("proj_1")["folders"]["clips"] == []
