"""测试配置和共享fixture"""

import os
import tempfile
from pathlib import Path

import pytest
from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy.pool import StaticPool

from app.config import Settings
from app.core.models import VideoStatus

from fakes import FakeBlobStore, RecordingPublisher, make_video


# ---------------------------------------------------------------------------
#   数据库
# ---------------------------------------------------------------------------

@pytest.fixture
def in_memory_db():
    """创建内存SQLite数据库用于测试"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session_factory(in_memory_db):
    """数据库会话工厂"""
    def _get_session():
        return Session(in_memory_db)
    return _get_session


@pytest.fixture
def file_db_session_factory(tmp_path):
    """基于文件的SQLite会话工厂，每个线程使用独立连接，用于并发测试"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    SQLModel.metadata.create_all(engine)

    def _get_session():
        return Session(engine)
    return _get_session


@pytest.fixture
def sample_video(db_session_factory):
    """创建 uploading 状态的示例视频"""
    return make_video(db_session_factory)


@pytest.fixture
def processing_video(db_session_factory):
    """创建 processing 状态的示例视频"""
    return make_video(db_session_factory, status=VideoStatus.PROCESSING)


# ---------------------------------------------------------------------------
#   配置与外部服务
# ---------------------------------------------------------------------------

@pytest.fixture
def test_settings(tmp_path):
    """测试用配置：轮询间隔极短、上限较小"""
    return Settings(
        DATABASE_URL="sqlite:///:memory:",
        S3_BUCKET="test-bucket",
        REKOGNITION_MIN_CONFIDENCE=30,
        REKOGNITION_POLL_INTERVAL_SECONDS=0.001,
        REKOGNITION_MAX_POLL_ATTEMPTS=5,
        REKOGNITION_REQUEST_TIMEOUT_SECONDS=1,
        MODERATION_FAIL_OPEN=False,
        SCRATCH_DIR=tmp_path / "scratch",
        STREAM_CHUNK_SIZE=1024,
        WORKER_COUNT=1,
    )


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def env_vars():
    """提供测试用的环境变量"""
    old_env = {}
    scratch_dir = Path(tempfile.mkdtemp())

    test_vars = {
        "S3_BUCKET": "bucket-from-env",
        "SCRATCH_DIR": str(scratch_dir),
        "REKOGNITION_MIN_CONFIDENCE": "55",
    }

    for k, v in test_vars.items():
        if k in os.environ:
            old_env[k] = os.environ[k]
        os.environ[k] = v

    yield test_vars

    # 恢复原始环境变量
    for k in test_vars:
        if k in old_env:
            os.environ[k] = old_env[k]
        else:
            del os.environ[k]


@pytest.fixture(autouse=True)
def clear_metadata_cache():
    """自动清除对象元数据缓存的fixture"""
    from app.services.media import streaming
    streaming.cached_metadata.cache_clear()

    yield

    streaming.cached_metadata.cache_clear()
