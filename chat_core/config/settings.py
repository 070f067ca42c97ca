"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("AGENT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
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


class ChatSettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(
        default="openai",
        description="默认使用的 Provider 名称，例如 openai、groq",
    )
    ai_model: str = Field(
        default="llama-3.2-11b-vision-preview",
        description="发给生成后端的模型 ID",
    )
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI 兼容接口的 API 密钥")
    openai_base_url: Optional[str] = Field(
        default=None,
        description="OpenAI 兼容接口基础URL，为空时使用 registry 中的默认值",
    )
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0, description="生成温度")
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 上下文窗口 ----
    tokenizer: str = Field(default="tiktoken", description="token 估算方式：tiktoken 或 heuristic")
    tokenizer_model: str = Field(default="o1-mini", description="用于 tiktoken 编码查找的模型名")
    tokenizer_fallback_encoding: str = Field(
        default="o200k_base",
        description="模型名无法识别时使用的 tiktoken 编码",
    )
    context_window_tokens: int = Field(default=128000, ge=1, description="模型上下文总长度")
    submission_token_budget: Optional[int] = Field(
        default=None,
        ge=1,
        description="单次请求提交的 token 预算，为空时取 context_window_tokens - max_output_tokens",
    )
    max_output_tokens: int = Field(default=1800, ge=1, description="单次回答的最大输出 token 数")

    # ---- 流式渲染 ----
    flush_interval: float = Field(default=1.0, gt=0.0, description="两次可见更新之间的最小间隔（秒）")
    message_char_limit: int = Field(default=2000, ge=1, description="单条可见消息的长度上限")
    placeholder_text: str = Field(default="Generating response...", description="生成开始前展示的占位文本")
    disclaimer_url: str = Field(
        default="https://lib.guides.umd.edu/c.php?g=1340355&p=9880574",
        description="回答页脚中免责声明的链接",
    )

    # ---- 机器人行为 ----
    bot_name: str = Field(default="assistant", description="机器人在系统提示词中的名称")
    autorespond_channels: str = Field(default="", description="自动回复的会话 ID，逗号分隔")
    ignore_prefix: str = Field(default="~", description="自动回复频道中以该前缀开头的消息不回复")
    system_prompt_file: Optional[str] = Field(default=None, description="自定义系统提示词文件路径")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别，例如 DEBUG、INFO、WARNING")
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

    @field_validator("openai_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

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

    @property
    def submission_budget(self) -> int:
        """单次请求可提交的 token 预算。"""
        if self.submission_token_budget is not None:
            return self.submission_token_budget
        return max(self.context_window_tokens - self.max_output_tokens, 1)

    @property
    def autorespond_channel_ids(self) -> List[str]:
        return [c.strip() for c in self.autorespond_channels.split(",") if c.strip()]


settings = ChatSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = type(settings)
