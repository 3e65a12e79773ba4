"""配置管理模块。

支持从初始化参数、环境变量、.env 以及 config.yaml 加载配置。

注意：这里的 settings 只由 api 层读取，并被快照为不可变的
GenerationConfig / ExportConfig 传入核心；核心模块本身不读取全局配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant. Use {tone} tone and answer in {language}."


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_RELAY_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
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


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 生成相关配置 ----
    default_provider: str = Field(
        default="Gemini",
        description="默认使用的 Provider：Gemini / OpenAI / Volcengine / Aliyun",
    )

    gemini_api_key: Optional[str] = Field(default=None, description="Gemini API 密钥")
    gemini_model: str = Field(default="gemini-3-flash-preview")

    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    openai_model: str = Field(default="gpt-4o")
    openai_base_url: str = Field(default="https://api.openai.com/v1")

    volcengine_api_key: Optional[str] = Field(default=None, description="火山方舟 API 密钥")
    volcengine_model: str = Field(default="", description="推理接入点 ID (ep-xxxx)")
    volcengine_base_url: str = Field(default="https://ark.cn-beijing.volces.com/api/v3")

    aliyun_api_key: Optional[str] = Field(default=None, description="阿里云百炼 API 密钥")
    aliyun_model: str = Field(default="qwen-plus")
    aliyun_base_url: str = Field(default="https://dashscope.aliyuncs.com/compatible-mode/v1")

    system_prompt_template: str = Field(default=DEFAULT_SYSTEM_PROMPT)
    system_prompt_arguments: List[Dict[str, str]] = Field(
        default_factory=lambda: [
            {"key": "tone", "value": "professional"},
            {"key": "language", "value": "Chinese"},
        ],
        description="按顺序排列的模板参数，同名 key 先出现者生效",
    )
    user_prompt_template: str = Field(default="{message}", description="必须包含 {message}")

    # ---- 导出相关配置 ----
    export_target: str = Field(default="Notion", description="Notion / Feishu")

    notion_token: Optional[str] = Field(default=None, description="Notion integration token")
    notion_database_id: Optional[str] = Field(default=None)
    notion_title_property: str = Field(default="Name", description="数据库标题列名称")
    notion_api_base: str = Field(default="https://api.notion.com/v1")
    notion_version: str = Field(default="2022-06-28")

    feishu_app_id: Optional[str] = Field(default=None)
    feishu_app_secret: Optional[str] = Field(default=None)
    feishu_wiki_node_token: Optional[str] = Field(default=None, description="父级知识库节点 token")
    feishu_api_base: str = Field(default="https://open.feishu.cn/open-apis")

    # ---- 通用 ----
    http_timeout: Optional[float] = Field(
        default=None,
        description="HTTP 超时时间（秒）；默认不设超时",
    )
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

    @field_validator("http_timeout")
    @classmethod
    def validate_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("http_timeout must be positive")
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


settings = Settings()
