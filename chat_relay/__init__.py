"""Chat Relay 顶层包。

该包提供多后端流式对话与对话记录导出的核心实现，
包括配置加载、领域模型、Provider 适配、生成编排、
提示词模板解析以及 Notion / 飞书导出编排等能力。
"""

from chat_relay.api.service import ChatConfig, ChatService, export_chat_history, generate

__all__ = ["ChatConfig", "ChatService", "export_chat_history", "generate"]
