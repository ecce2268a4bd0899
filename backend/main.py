import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from app.api import router as api_router, tags_metadata
from app.config import settings
from app.core.moderation import ModerationClient
from app.core.storage import BlobStore
from app.db import create_db_and_tables, get_session_factory
from app.services.media.notifier import ProgressNotifier
from app.services.media.poller import ModerationPoller
from app.services.media.processor import PipelineOrchestrator, worker_loop
from app.services.media.status_manager import StatusManager
from app.services.realtime import ChannelHub

# 日志输出到标准输出，bind 的 video_id / worker_id 显示在 {extra} 中
logger.remove()
logger.add(
    sink=lambda msg: print(msg, end=""),
    level=settings.LOG_LEVEL.value,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level}</level> | "
            "{extra} {message}"
)


def build_orchestrator(hub: ChannelHub) -> tuple[PipelineOrchestrator, BlobStore, StatusManager]:
    """按配置组装对象存储、审核客户端、状态机和流水线，每个进程各一个实例"""
    session_factory = get_session_factory()

    blob_store = BlobStore(
        settings.S3_BUCKET,
        region_name=settings.AWS_REGION,
        endpoint_url=settings.S3_ENDPOINT_URL,
        access_key_id=settings.AWS_ACCESS_KEY_ID,
        secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
    )
    moderation_client = ModerationClient(
        settings.S3_BUCKET,
        region_name=settings.AWS_REGION,
        access_key_id=settings.AWS_ACCESS_KEY_ID,
        secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        sns_topic_arn=settings.REKOGNITION_SNS_TOPIC_ARN,
        role_arn=settings.REKOGNITION_ROLE_ARN,
    )

    notifier = ProgressNotifier(hub, include_organization=settings.NOTIFY_ORGANIZATION_CHANNEL)
    status_manager = StatusManager(session_factory, notifier)

    orchestrator = PipelineOrchestrator(
        db_session_factory=session_factory,
        queue=asyncio.Queue(),
        status_manager=status_manager,
        poller=ModerationPoller(moderation_client, settings),
        blob_store=blob_store,
        settings=settings,
    )
    return orchestrator, blob_store, status_manager


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"SafeReel 启动中 (env={settings.APP_ENV.value}, bucket={settings.S3_BUCKET})")
    create_db_and_tables()

    hub = ChannelHub()
    orchestrator, blob_store, status_manager = build_orchestrator(hub)

    # API 路由通过 app.state 取用进程级单例
    app.state.hub = hub
    app.state.blob_store = blob_store
    app.state.orchestrator = orchestrator

    # 上次进程退出时仍在 processing 的视频不会被任何工作者继续处理
    if settings.RECONCILE_ON_STARTUP:
        recovered = await status_manager.fail_stuck_videos()
        if recovered:
            logger.warning(f"已将 {recovered} 个中断的视频标记为 failed")

    workers = []
    for worker_id in range(1, settings.WORKER_COUNT + 1):
        task = asyncio.create_task(
            worker_loop(worker_id=worker_id, queue=orchestrator.queue, orchestrator=orchestrator),
            name=f"worker-{worker_id}",
        )
        workers.append(task)
    logger.info(f"流水线工作者已启动: {len(workers)} 个")

    yield

    logger.info("停止流水线工作者...")
    for task in workers:
        task.cancel()
    results = await asyncio.gather(*workers, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
            logger.error(f"工作者退出时发生异常: {result}")
    logger.info("SafeReel 已停止")


app = FastAPI(title="SafeReel API", lifespan=lifespan, openapi_tags=tags_metadata)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/")
def read_root():
    return {"message": "Welcome to SafeReel API"}
