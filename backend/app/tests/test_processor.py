"""
processor.py 单元测试

测试流水线的完整流程：接收、适配、审核、状态写入、事件推送，以及工作者循环
"""

import asyncio

import pytest

from app.core.models import VideoStatus, SensitivityStatus
from app.services.media.notifier import ProgressNotifier
from app.services.media.poller import ModerationPoller
from app.services.media.processor import PipelineOrchestrator, worker_loop
from app.services.media.status_manager import StatusManager

from fakes import (
    FakeModerationClient,
    failed,
    in_progress,
    load_video,
    make_video,
    succeeded,
)


async def no_sleep(_seconds):
    await asyncio.sleep(0)


class KeyedModerationClient(FakeModerationClient):
    """按对象键区分脚本的审核客户端，任务ID即对象键"""

    def __init__(self, scripts):
        super().__init__()
        self.scripts = {key: list(script) for key, script in scripts.items()}

    async def start_job(self, object_key, min_confidence):
        self.started.append((object_key, min_confidence))
        return object_key

    async def get_job(self, job_id):
        self.polls += 1
        script = self.scripts[job_id]
        return script.pop(0) if script else in_progress()


def build_orchestrator(session_factory, client, blob_store, publisher, settings):
    status_manager = StatusManager(session_factory, ProgressNotifier(publisher))
    return PipelineOrchestrator(
        db_session_factory=session_factory,
        queue=asyncio.Queue(),
        status_manager=status_manager,
        poller=ModerationPoller(client, settings, sleep=no_sleep),
        blob_store=blob_store,
        settings=settings,
    )


class TestAccept:
    """测试接收上传完成的视频"""

    @pytest.mark.asyncio
    async def test_accept_moves_to_processing_and_enqueues(
        self, db_session_factory, blob_store, publisher, test_settings, sample_video
    ):
        orchestrator = build_orchestrator(
            db_session_factory, FakeModerationClient(), blob_store, publisher, test_settings
        )

        assert await orchestrator.accept(sample_video.id) is True

        video = load_video(db_session_factory, sample_video.id)
        assert video.status == VideoStatus.PROCESSING
        assert video.processing_progress == 0
        assert orchestrator.queue.get_nowait() == sample_video.id
        assert publisher.progress_values() == [0]

    @pytest.mark.asyncio
    async def test_accept_twice_enqueues_once(
        self, db_session_factory, blob_store, publisher, test_settings, sample_video
    ):
        orchestrator = build_orchestrator(
            db_session_factory, FakeModerationClient(), blob_store, publisher, test_settings
        )

        assert await orchestrator.accept(sample_video.id) is True
        assert await orchestrator.accept(sample_video.id) is False
        assert orchestrator.queue.qsize() == 1


class TestRun:
    """测试流水线执行"""

    @pytest.mark.asyncio
    async def test_flagged_end_to_end(self, db_session_factory, blob_store, publisher, test_settings, sample_video):
        client = FakeModerationClient([in_progress(), in_progress(), in_progress(), succeeded(85.0)])
        orchestrator = build_orchestrator(db_session_factory, client, blob_store, publisher, test_settings)

        await orchestrator.accept(sample_video.id)
        result = await orchestrator.run(sample_video.id)

        assert result.success is True
        video = load_video(db_session_factory, sample_video.id)
        assert video.status == VideoStatus.COMPLETED
        assert video.sensitivity_status == SensitivityStatus.FLAGGED
        assert video.processing_progress == 100

        progress = publisher.progress_values()
        assert progress[:3] == [0, 10, 30]
        assert progress[-1] == 98
        assert progress == sorted(progress)
        assert publisher.names().count("video:completed") == 1
        assert publisher.names()[-1] == "video:completed"
        assert publisher.events[-1][2]["sensitivityStatus"] == "flagged"
        assert "video:failed" not in publisher.names()

    @pytest.mark.asyncio
    async def test_timeout_fails_video(self, db_session_factory, blob_store, publisher, test_settings, sample_video):
        """审核一直未完成：视频转为 failed，且不会出现 completed 事件"""
        orchestrator = build_orchestrator(
            db_session_factory, FakeModerationClient(), blob_store, publisher, test_settings
        )

        await orchestrator.accept(sample_video.id)
        result = await orchestrator.run(sample_video.id)

        assert result.success is False
        video = load_video(db_session_factory, sample_video.id)
        assert video.status == VideoStatus.FAILED
        assert video.sensitivity_status is None
        assert "超时" in video.error_message
        assert publisher.names().count("video:failed") == 1
        assert "video:completed" not in publisher.names()

    @pytest.mark.asyncio
    async def test_failed_job_with_fail_open_completes_safe(
        self, db_session_factory, blob_store, publisher, test_settings, sample_video
    ):
        settings = test_settings.model_copy(update={"MODERATION_FAIL_OPEN": True})
        client = FakeModerationClient([failed("Internal error")])
        orchestrator = build_orchestrator(db_session_factory, client, blob_store, publisher, settings)

        await orchestrator.accept(sample_video.id)
        assert (await orchestrator.run(sample_video.id)).success is True

        video = load_video(db_session_factory, sample_video.id)
        assert video.status == VideoStatus.COMPLETED
        assert video.sensitivity_status == SensitivityStatus.SAFE

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_video(
        self, db_session_factory, blob_store, publisher, test_settings, sample_video
    ):
        class BrokenClient(FakeModerationClient):
            async def start_job(self, object_key, min_confidence):
                raise ValueError("unexpected response")

        orchestrator = build_orchestrator(db_session_factory, BrokenClient(), blob_store, publisher, test_settings)

        await orchestrator.accept(sample_video.id)
        result = await orchestrator.run(sample_video.id)

        assert result.success is False
        video = load_video(db_session_factory, sample_video.id)
        assert video.status == VideoStatus.FAILED
        assert video.error_message == "unexpected response"

    @pytest.mark.asyncio
    async def test_conversion_runs_before_moderation(
        self, db_session_factory, blob_store, publisher, test_settings, monkeypatch
    ):
        from app.services.media import format_adapter

        async def _transcode(input_path, output_path, **kwargs):
            output_path.write_bytes(b"mp4")
            return output_path

        monkeypatch.setattr(format_adapter, "transcode_to_mp4", _transcode)

        key = "org-1/user-1/1-clip.avi"
        blob_store.objects[key] = (b"avi", "video/x-msvideo")
        video = make_video(db_session_factory, object_key=key, mime_type="video/x-msvideo")
        client = FakeModerationClient([succeeded(5.0)])
        orchestrator = build_orchestrator(db_session_factory, client, blob_store, publisher, test_settings)

        await orchestrator.accept(video.id)
        assert (await orchestrator.run(video.id)).success is True

        assert client.started[0][0] == f"{key}.converted.mp4"
        assert blob_store.deleted == [f"{key}.converted.mp4"]
        assert 20 in publisher.progress_values()
        assert load_video(db_session_factory, video.id).sensitivity_status == SensitivityStatus.SAFE

    @pytest.mark.asyncio
    async def test_failed_verdict_write_fails_video(
        self, db_session_factory, blob_store, publisher, test_settings, sample_video, monkeypatch
    ):
        """审核结论写入失败时视频不会一直停在 processing"""
        client = FakeModerationClient([succeeded(1.0)])
        orchestrator = build_orchestrator(db_session_factory, client, blob_store, publisher, test_settings)

        async def refuse_completion(video_id, sensitivity_status):
            return False

        monkeypatch.setattr(orchestrator._status_manager, "set_completed", refuse_completion)

        await orchestrator.accept(sample_video.id)
        result = await orchestrator.run(sample_video.id)

        assert result.success is False
        video = load_video(db_session_factory, sample_video.id)
        assert video.status == VideoStatus.FAILED
        assert video.sensitivity_status is None
        assert publisher.names().count("video:failed") == 1

    @pytest.mark.asyncio
    async def test_skips_video_not_processing(
        self, db_session_factory, blob_store, publisher, test_settings, sample_video
    ):
        client = FakeModerationClient()
        orchestrator = build_orchestrator(db_session_factory, client, blob_store, publisher, test_settings)

        result = await orchestrator.run(sample_video.id)

        assert result.success is False
        assert client.started == []
        assert load_video(db_session_factory, sample_video.id).status == VideoStatus.UPLOADING

    @pytest.mark.asyncio
    async def test_missing_video(self, db_session_factory, blob_store, publisher, test_settings):
        orchestrator = build_orchestrator(
            db_session_factory, FakeModerationClient(), blob_store, publisher, test_settings
        )
        result = await orchestrator.run(12345)
        assert result.success is False
        assert "12345" in result.message


class TestConcurrentPipelines:
    """测试并发流水线互不影响"""

    @pytest.mark.asyncio
    async def test_two_videos_in_parallel(self, file_db_session_factory, blob_store, publisher, test_settings):
        first = make_video(
            file_db_session_factory, user_id="alice", object_key="org-1/alice/1-a.mp4"
        )
        second = make_video(
            file_db_session_factory, user_id="bob", object_key="org-1/bob/2-b.mp4"
        )
        client = KeyedModerationClient({
            first.object_key: [in_progress(), succeeded(95.0)],
            second.object_key: [in_progress(), in_progress(), in_progress(), succeeded(1.0)],
        })
        orchestrator = build_orchestrator(file_db_session_factory, client, blob_store, publisher, test_settings)

        await orchestrator.accept(first.id)
        await orchestrator.accept(second.id)
        results = await asyncio.gather(orchestrator.run(first.id), orchestrator.run(second.id))

        assert all(result.success for result in results)
        assert load_video(file_db_session_factory, first.id).sensitivity_status == SensitivityStatus.FLAGGED
        assert load_video(file_db_session_factory, second.id).sensitivity_status == SensitivityStatus.SAFE

        # 每个用户只收到自己视频的事件，且进度各自单调
        for user, video in (("alice", first), ("bob", second)):
            events = [(e, p) for c, e, p in publisher.events if c == f"user:{user}"]
            assert all(p["videoId"] == str(video.id) for _, p in events)
            progress = [p["progress"] for e, p in events if e == "video:processing"]
            assert progress == sorted(progress)
            assert [e for e, _ in events].count("video:completed") == 1


class TestWorkerLoop:
    """测试工作者循环"""

    @pytest.mark.asyncio
    async def test_worker_processes_queue(self, db_session_factory, blob_store, publisher, test_settings):
        videos = [
            make_video(db_session_factory, object_key=f"org-1/user-1/{i}-clip.mp4")
            for i in range(3)
        ]
        client = FakeModerationClient([succeeded(1.0), succeeded(99.0), failed("Internal error")])
        orchestrator = build_orchestrator(db_session_factory, client, blob_store, publisher, test_settings)

        for video in videos:
            await orchestrator.accept(video.id)
        worker = asyncio.create_task(worker_loop(1, orchestrator.queue, orchestrator))

        await asyncio.wait_for(orchestrator.queue.join(), timeout=5)
        worker.cancel()
        await asyncio.gather(worker, return_exceptions=True)

        statuses = [load_video(db_session_factory, v.id).status for v in videos]
        assert statuses == [VideoStatus.COMPLETED, VideoStatus.COMPLETED, VideoStatus.FAILED]

    @pytest.mark.asyncio
    async def test_worker_survives_exceptions(self):
        queue = asyncio.Queue()

        class ExplodingOrchestrator:
            def __init__(self):
                self.seen = []

            async def run(self, video_id):
                self.seen.append(video_id)
                raise RuntimeError("boom")

        orchestrator = ExplodingOrchestrator()
        worker = asyncio.create_task(worker_loop(1, queue, orchestrator))
        await queue.put(1)
        await queue.put(2)

        await asyncio.wait_for(queue.join(), timeout=5)
        worker.cancel()
        await asyncio.gather(worker, return_exceptions=True)

        assert orchestrator.seen == [1, 2]
