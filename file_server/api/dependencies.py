"""API依赖项"""

import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from file_server.core.config import Settings
from file_server.core.logging import security_monitor
from file_server.middleware.performance import get_client_ip
from file_server.services.file_service import FileService


REALM = "file-server"

basic_auth = HTTPBasic(auto_error=False, realm=REALM)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_file_service(request: Request) -> FileService:
    return request.app.state.file_service


def _challenge(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": f'Basic realm="{REALM}"'},
    )


def require_credentials(
    request: Request,
    credentials: Optional[HTTPBasicCredentials] = Depends(basic_auth),
    settings: Settings = Depends(get_settings),
) -> Optional[str]:
    """修改操作的共享凭据检查

    未配置密码时不做检查。

    Returns:
        Optional[str]: 通过检查的用户名
    """
    if settings.auth_password is None:
        return None

    client_ip = get_client_ip(request)
    if credentials is None:
        security_monitor.log_auth_attempt("<none>", False, client_ip)
        raise _challenge("需要认证")

    # 两次比较都要执行, 避免按字段泄露时序
    username_ok = secrets.compare_digest(
        credentials.username.encode("utf-8"), settings.auth_username.encode("utf-8")
    )
    password_ok = secrets.compare_digest(
        credentials.password.encode("utf-8"), settings.auth_password.encode("utf-8")
    )
    if not (username_ok and password_ok):
        security_monitor.log_auth_attempt(credentials.username, False, client_ip)
        raise _challenge("用户名或密码错误")

    security_monitor.log_auth_attempt(credentials.username, True, client_ip)
    return credentials.username


def logout_challenge() -> HTTPException:
    """让浏览器丢弃缓存的 Basic 凭据"""
    return _challenge("已退出登录")
