"""
配置加载模块：支持 .env、环境变量、工作目录 config.json（或 CONFIG_FILE 指定）多来源合并。
公开接口：
- Config: 读取配置的设置类
- config: Config 的单例实例
- JsonFileSettingsSource: 读取 config.json 的配置来源
内部方法：
- Config.settings_customise_sources: 自定义配置来源顺序
- Config.normalize_hash_name: 规范化签名摘要算法名称
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Tuple

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource

SUPPORTED_SIGNATURE_HASHES = ("SHA1", "SHA256", "SHA384", "SHA512")


def config_file_path() -> Path:
    """CONFIG_FILE 环境变量优先，否则使用工作目录下的 config.json。"""
    cfg_path = os.environ.get("CONFIG_FILE")
    return Path(cfg_path) if cfg_path else Path.cwd() / "config.json"


class JsonFileSettingsSource(PydanticBaseSettingsSource):
    """
    从 JSON 文件读取配置。
    文件不存在时返回空配置；文件存在但无法读取或不是 JSON 对象时抛出 ValueError。
    """

    def __init__(self, settings_cls: type[BaseSettings]):
        super().__init__(settings_cls)
        self.path = config_file_path()
        self.data = self._read()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ValueError(f"无法读取配置文件 {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"配置文件 {self.path} 的顶层必须是 JSON 对象")
        return data

    def get_field_value(self, field, field_name):  # type: ignore[override]
        return self.data.get(field_name), field_name, False

    def __call__(self) -> Dict[str, Any]:
        return dict(self.data)


class Config(BaseSettings):
    # 平台证书托管位置与签名证书身份
    cert_host: str = "s3.amazonaws.com"
    cert_path_prefix: str = "/echo.api/"
    service_identity: str = "echo-api.amazon.com"

    # 请求鉴权参数
    max_timestamp_skew_seconds: int = 30
    cert_fetch_timeout_seconds: float = 10.0
    signature_hash_algorithm: str = "SHA1"
    trust_store_path: str | None = None

    # 示例技能
    hello_skill_endpoint: str = "/skills/hello"
    hello_skill_application_id: str = Field(
        default="",
        validation_alias=AliasChoices("hello_skill_application_id", "ask_app_id"),
    )

    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("signature_hash_algorithm", mode="before")
    @classmethod
    def normalize_hash_name(cls, value: Any) -> str:
        """支持 sha1 / SHA-256 等写法，统一为大写无连字符形式。"""
        name = str(value or "").replace("-", "").strip().upper()
        if name not in SUPPORTED_SIGNATURE_HASHES:
            raise ValueError(f"不支持的签名摘要算法: {value}")
        return name

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """自定义配置来源顺序：入参 > 环境变量 > .env > config.json > secrets。"""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonFileSettingsSource(settings_cls),
            file_secret_settings,
        )


config = Config()
