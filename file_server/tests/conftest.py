"""pytest配置和fixtures"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from file_server.core.config import Settings
from file_server.main import create_app
from file_server.services.file_service import FileService


TEST_USERNAME = "direct"
TEST_PASSWORD = "s3cret"


@pytest.fixture(scope="function")
def temp_dir() -> Generator[Path, None, None]:
    """创建临时目录"""
    # realpath: 部分系统的临时目录本身是符号链接
    temp_path = Path(os.path.realpath(tempfile.mkdtemp()))
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture(scope="function")
def test_settings(temp_dir: Path) -> Settings:
    """测试配置, 根目录为临时目录"""
    settings = Settings(root=temp_dir, _env_file=None)
    settings.ensure_directories()
    return settings


@pytest.fixture(scope="function")
def client(test_settings: Settings) -> Generator[TestClient, None, None]:
    """测试客户端 (未配置密码)"""
    with TestClient(create_app(test_settings)) as test_client:
        yield test_client


@pytest.fixture(scope="function")
def auth():
    """正确的 Basic 凭据"""
    return (TEST_USERNAME, TEST_PASSWORD)


@pytest.fixture(scope="function")
def secured_client(temp_dir: Path, auth) -> Generator[TestClient, None, None]:
    """配置了共享凭据的测试客户端"""
    settings = Settings(root=temp_dir, auth_username=auth[0], auth_password=auth[1], _env_file=None)
    with TestClient(create_app(settings)) as test_client:
        yield test_client


@pytest_asyncio.fixture(scope="function")
async def file_service(test_settings: Settings) -> AsyncGenerator[FileService, None]:
    """已初始化的文件服务"""
    service = FileService(test_settings)
    await service.initialize()
    yield service
    await service.cleanup()
