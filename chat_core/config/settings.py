"""配置管理模块。

支持从初始化参数、环境变量、.env 以及 config.yaml 加载配置。
配置只在启动时读取一次，由 api.service 以普通值的形式交给引擎核心，
核心代码本身不再读取环境变量。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- API ----
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    api_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="API 基础URL，chat/completions、completions、models 都挂在其下",
    )
    http_proxy: Optional[str] = Field(
        default=None,
        description="转发代理地址；设置后所有请求经代理发出",
    )
    default_chat_model: str = Field(default="gpt-3.5-turbo", description="新建对话的默认模型")
    default_completion_model: str = Field(
        default="text-davinci-003",
        description="新建补全会话的默认模型",
    )
    system_message: Optional[str] = Field(
        default=None,
        description="新建对话时插入的默认 system 消息",
    )

    # ---- 生成 ----
    stream_channel_size: int = Field(
        default=100,
        ge=1,
        description="解码器与控制器之间有界通道的容量",
    )
    drop_blank_deltas: bool = Field(
        default=True,
        description="是否丢弃单独的空行增量（服务端偶尔会发出多余的 \\n\\n）",
    )

    # ---- 存储与日志 ----
    sessions_file: str = Field(default="chats.json", description="会话持久化文件")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("system_message", "http_proxy", "openai_api_key")
    @classmethod
    def empty_as_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("http_proxy")
    @classmethod
    def validate_proxy(cls, v: Optional[str]) -> Optional[str]:
        if v and "://" not in v:
            raise ValueError("proxy must include a scheme, e.g. http://127.0.0.1:7890")
        return v

    @field_validator("api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
