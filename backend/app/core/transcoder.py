"""ffmpeg 转码模块

将审核服务不支持的视频转为 H.264/AAC 的 MP4 容器。
ffmpeg 以 asyncio 子进程方式运行，不阻塞事件循环。
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

from loguru import logger

from .exceptions import TerminalPipelineError

MP4_TRANSCODE_ARGS = [
    "-c:v", "libx264",
    "-preset", "fast",
    "-crf", "23",
    "-c:a", "aac",
    "-b:a", "128k",
    "-movflags", "+faststart",
]


def build_transcode_command(input_path: Path, output_path: Path, ffmpeg_binary: str = "ffmpeg") -> list[str]:
    return [ffmpeg_binary, "-y", "-i", str(input_path), *MP4_TRANSCODE_ARGS, str(output_path)]


async def transcode_to_mp4(
    input_path: Path,
    output_path: Path,
    *,
    ffmpeg_binary: str = "ffmpeg",
    timeout: Optional[float] = None,
) -> Path:
    """
    调用 ffmpeg 将 input_path 转码为 output_path。

    Raises:
        TerminalPipelineError: ffmpeg 不存在、执行失败、超时或未生成输出文件
    """
    cmd = build_transcode_command(input_path, output_path, ffmpeg_binary)
    logger.debug(f"执行转码命令: {' '.join(cmd)}")

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise TerminalPipelineError("视频转码失败：未找到 ffmpeg，请确认已安装") from e

    try:
        _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        process.kill()
        await process.wait()
        raise TerminalPipelineError(f"视频转码超时（{timeout}秒）") from e

    if process.returncode != 0:
        # 只保留 stderr 末尾，ffmpeg 的完整输出很长
        tail = (stderr or b"").decode(errors="replace")[-2000:]
        logger.error(f"ffmpeg 退出码 {process.returncode}: {tail}")
        raise TerminalPipelineError(f"视频转码失败：ffmpeg 退出码 {process.returncode}")

    if not output_path.exists():
        raise TerminalPipelineError("视频转码失败：未生成转码文件")

    return output_path
