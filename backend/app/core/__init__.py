"""Core module exports

SafeReel 项目的核心功能模块，提供数据模型和外部服务的基础能力。

主要模块：
- models: SQLModel 数据模型定义
- schemas: API 请求/响应模型
- exceptions: 视频处理异常类型
- storage: S3 对象存储客户端
- moderation: Rekognition 内容审核客户端
- transcoder: ffmpeg 转码
"""
