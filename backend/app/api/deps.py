"""
FastAPI 依赖模块

- 调用者身份：由上游认证网关通过请求头传入，本服务只做读取和角色校验
- 查询参数校验：不支持的参数值返回 HTTP 422
- 进程级单例（对象存储、流水线、频道注册表）从 app.state 获取
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, Query
from starlette.requests import HTTPConnection

from ..config import Settings, get_settings
from ..core.models import VideoStatus, SensitivityStatus
from ..core.storage import BlobStore
from ..services.media.processor import PipelineOrchestrator
from ..services.realtime import ChannelHub


class Role:
    VIEWER = "viewer"
    EDITOR = "editor"
    ADMIN = "admin"


VALID_ROLES = [Role.VIEWER, Role.EDITOR, Role.ADMIN]

# 定义所有有效的视频状态
VALID_STATUSES = [
    VideoStatus.UPLOADING,
    VideoStatus.PROCESSING,
    VideoStatus.COMPLETED,
    VideoStatus.FAILED,
]

VALID_SENSITIVITY_STATUSES = [SensitivityStatus.SAFE, SensitivityStatus.FLAGGED]


@dataclass
class CurrentUser:
    user_id: str
    organization_id: str
    role: str


def get_current_user(
    x_user_id: Optional[str] = Header(None, description="调用者用户ID（由认证网关注入）"),
    x_organization_id: Optional[str] = Header(None, description="调用者所属组织ID（由认证网关注入）"),
    x_user_role: str = Header(Role.VIEWER, description="调用者角色: viewer/editor/admin"),
) -> CurrentUser:
    """
    读取调用者身份

    Raises:
        HTTPException: 缺少身份信息时返回401，角色无效时返回403
    """
    if not x_user_id or not x_organization_id:
        raise HTTPException(status_code=401, detail="需要认证：缺少用户或组织信息")

    role = x_user_role.strip().lower()
    if role not in VALID_ROLES:
        raise HTTPException(status_code=403, detail=f"无效的角色: {x_user_role}")

    return CurrentUser(user_id=x_user_id, organization_id=x_organization_id, role=role)


def require_role(*roles: str):
    """生成校验调用者角色的依赖"""

    def _check_role(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="权限不足")
        return user

    return _check_role


def validate_status_parameter(status: Optional[str] = Query(
    None,
    description=f"按处理状态筛选: {', '.join(VALID_STATUSES)}"
)) -> Optional[str]:
    """
    验证状态参数有效性

    Raises:
        HTTPException: 当状态值无效时抛出422错误
    """
    if not status or not status.strip():
        return None

    status = status.strip().lower()
    if status not in VALID_STATUSES:
        raise HTTPException(
            status_code=422,
            detail=f"不支持的状态值: {status}。支持的状态: {', '.join(VALID_STATUSES)}"
        )
    return status


def validate_sensitivity_parameter(sensitivity_status: Optional[str] = Query(
    None,
    alias="sensitivityStatus",
    description=f"按审核结论筛选: {', '.join(VALID_SENSITIVITY_STATUSES)}"
)) -> Optional[str]:
    """
    验证审核结论参数有效性

    Raises:
        HTTPException: 当审核结论无效时抛出422错误
    """
    if not sensitivity_status or not sensitivity_status.strip():
        return None

    sensitivity_status = sensitivity_status.strip().lower()
    if sensitivity_status not in VALID_SENSITIVITY_STATUSES:
        raise HTTPException(
            status_code=422,
            detail=f"不支持的审核结论: {sensitivity_status}。支持的值: {', '.join(VALID_SENSITIVITY_STATUSES)}"
        )
    return sensitivity_status


def get_app_settings() -> Settings:
    return get_settings()


def get_blob_store(connection: HTTPConnection) -> BlobStore:
    return connection.app.state.blob_store


def get_orchestrator(connection: HTTPConnection) -> PipelineOrchestrator:
    return connection.app.state.orchestrator


def get_hub(connection: HTTPConnection) -> ChannelHub:
    return connection.app.state.hub
