#!/usr/bin/env python3
"""
本地API服务启动脚本
用于本地开发调试，连接到Docker中的PostgreSQL与Redis
"""

import os

import uvicorn


def setup_local_env():
    """设置本地开发环境变量"""
    # 数据库配置 - 连接到Docker中的PostgreSQL
    os.environ.setdefault("POSTGRES_SERVER", "localhost")
    os.environ.setdefault("POSTGRES_PORT", "5433")
    os.environ.setdefault("POSTGRES_USER", "postgres")
    os.environ.setdefault("POSTGRES_PASSWORD", "postgres")
    os.environ.setdefault("POSTGRES_DB", "chatapp")

    # 流状态存储 - 连接到Docker中的Redis
    os.environ.setdefault("STREAM_STATE_BACKEND", "redis")
    os.environ.setdefault("REDIS_HOST", "localhost")
    os.environ.setdefault("REDIS_PORT", "6380")

    os.environ.setdefault("SECRET_KEY", "dev-secret-key-change-in-production")
    os.environ.setdefault("LOG_LEVEL", "DEBUG")

    print("🔧 本地开发环境变量设置完成")
    print(f"🗄️  PostgreSQL: {os.environ.get('POSTGRES_SERVER')}:{os.environ.get('POSTGRES_PORT')}")
    print(f"📡 Redis: {os.environ.get('REDIS_HOST')}:{os.environ.get('REDIS_PORT')}")
    print(f"🔁 流状态存储: {os.environ.get('STREAM_STATE_BACKEND')}")


if __name__ == "__main__":
    setup_local_env()

    print("\n🚀 启动本地API服务...")
    print("📄 API文档: http://localhost:8000/api/v1/docs")
    print("\n按 Ctrl+C 停止服务\n")

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["app"],
        log_level="info",
    )
