from __future__ import annotations

import asyncio
import base64
import binascii
from collections import defaultdict
from typing import Any

import keyring
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError
from loguru import logger

from ..config.constants import NAMESPACE, PASSWORD_LENGTH
from ..config.loader import generate_random_password
from ..errors import CredentialStoreUnavailable


def _is_base64(value: str) -> bool:
    """判断字符串是否已经是标准 base64 形式（严格校验 + 往返一致）"""
    if not value or len(value) % 4:
        return False
    try:
        decoded = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return False
    return base64.b64encode(decoded).decode("ascii") == value


def _encode(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


class CredentialStore:
    """基于系统密钥环的凭据存储

    为每个逻辑名称（如 "pgpass"）提供一个稳定的随机密钥：首次访问时生成并写入密钥环，
    之后在同一台主机上跨进程重启保持不变

    编码约定：
    - 写入密钥环的永远是解码后的原始值
    - 返回给调用方的永远是 base64 形式（已是 base64 的存量值原样返回）
    - CredentialStore 是进程内唯一负责编码的组件，其余组件把密钥当作不透明字符串

    并发：同名调用在进程内按名称串行化，避免两个协程同时生成不同的密钥

    Attributes:
        self._service (str): 密钥环服务名
        self._backend (KeyringBackend | None): 显式注入的密钥环后端，None 表示使用 keyring 全局配置
        self._locks (dict[str, asyncio.Lock]): 按名称的互斥锁
    """

    def __init__(
            self,
            service: str = NAMESPACE,
            *,
            backend: KeyringBackend | None = None,
            secret_length: int = PASSWORD_LENGTH,
    ) -> None:
        self._service = service
        self._backend = backend
        self._secret_length = secret_length
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def service(self) -> str:
        return self._service

    def _keyring(self) -> Any:
        # 注入的后端与 keyring 模块提供相同的 get/set/delete_password 接口
        return self._backend if self._backend is not None else keyring

    async def _call(self, method: str, *args: str) -> Any:
        fn = getattr(self._keyring(), method)
        try:
            return await asyncio.to_thread(fn, self._service, *args)
        except PasswordDeleteError:
            raise
        except KeyringError as exc:
            raise CredentialStoreUnavailable(f"系统密钥环不可用: {exc}") from exc

    async def get(self, name: str) -> str | None:
        """读取已存在的密钥（base64 形式），不存在时返回 None

        Raises:
            CredentialStoreUnavailable: 密钥环不可用
        """
        async with self._locks[name]:
            stored = await self._call("get_password", name)
        if stored is None:
            return None
        return stored if _is_base64(stored) else _encode(stored)

    async def get_or_generate(self, name: str) -> str:
        """获取或生成指定逻辑名称的密钥

        Args:
            name: 逻辑名称（如 "pgpass"）

        Returns:
            str: base64 形式的密钥

        Raises:
            CredentialStoreUnavailable: 密钥环不可用（不会静默降级为内存密钥）
        """
        async with self._locks[name]:
            stored = await self._call("get_password", name)
            if stored is None:
                stored = generate_random_password(self._secret_length)
                await self._call("set_password", name, stored)
                logger.info(f"已为 '{name}' 生成新的凭据并写入密钥环")

        return stored if _is_base64(stored) else _encode(stored)

    async def delete(self, name: str) -> None:
        """删除指定名称的密钥（不存在视为成功）"""
        async with self._locks[name]:
            try:
                await self._call("delete_password", name)
            except PasswordDeleteError:
                logger.debug(f"凭据 '{name}' 不存在，跳过删除")
