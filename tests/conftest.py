"""
Pytest 公共配置和 Fixtures

提供测试所需的公共资源：
- 数据库连接（内存 SQLite）
- 博客模型与客户端
- 临时文件
"""

import os
import tempfile
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ycascade.transaction import transaction_manager

from tests.helpers import make_blog_models, make_client, reset_transaction_manager


# ==================== 基础 Fixtures ====================

@pytest.fixture(scope="session")
def temp_dir():
    """创建临时目录"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def temp_file(temp_dir):
    """创建临时文件的工厂函数"""
    created_files = []

    def _create_file(filename: str, content: str = "") -> str:
        filepath = os.path.join(temp_dir, filename)
        if os.path.dirname(filepath):
            os.makedirs(os.path.dirname(filepath), exist_ok=True)
        with open(filepath, "w", encoding="utf-8") as f:
            f.write(content)
        created_files.append(filepath)
        return filepath

    yield _create_file

    # 清理
    for f in created_files:
        if os.path.exists(f):
            os.remove(f)


@pytest.fixture(autouse=True)
def clean_transaction_state():
    """每个测试前后清除残留的事务上下文"""
    reset_transaction_manager(transaction_manager)
    yield
    reset_transaction_manager(transaction_manager)


@pytest.fixture(autouse=True)
def clean_cascade_env(monkeypatch):
    """避免外部 YCASCADE_ 环境变量影响默认配置"""
    for key in list(os.environ):
        if key.startswith("YCASCADE_"):
            monkeypatch.delenv(key, raising=False)


# ==================== 数据库 Fixtures ====================

@pytest.fixture(scope="function")
def memory_engine():
    """创建内存数据库引擎

    使用 StaticPool 和 check_same_thread=False 确保：
    1. 所有操作使用同一个连接（StaticPool）
    2. 允许跨线程访问（check_same_thread=False）
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(memory_engine) -> Generator[Session, None, None]:
    """创建数据库会话"""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=memory_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


# ==================== 客户端 Fixtures ====================

@pytest.fixture
def blog_models():
    """博客模型（可空删除字段，适用于 mangle / none 策略）"""
    return make_blog_models()


@pytest.fixture
def client(blog_models, memory_engine):
    """mangle 策略客户端"""
    return make_client(blog_models, memory_engine, unique_strategy="mangle")


@pytest.fixture
def seeded(client):
    """预置数据

    u1 ── p1 ── c1, c2
       │     └─ a1（附件）
       └─ p2 ── c3
    u2 ── p3
    """
    client.User.create({"id": "u1", "email": "a@x.com", "name": "Alice"})
    client.User.create({"id": "u2", "email": "b@x.com", "name": "Bob"})
    client.Post.create({"id": "p1", "author_id": "u1", "title": "first", "views": 10})
    client.Post.create({"id": "p2", "author_id": "u1", "title": "second", "views": 5})
    client.Post.create({"id": "p3", "author_id": "u2", "title": "third", "views": 7})
    client.Comment.create({"id": "c1", "post_id": "p1", "body": "nice"})
    client.Comment.create({"id": "c2", "post_id": "p1", "body": "great"})
    client.Comment.create({"id": "c3", "post_id": "p2", "body": "ok"})
    client.Attachment.create({"id": "a1", "post_id": "p1", "filename": "a.png"})
    return client
