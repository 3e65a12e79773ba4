"""领域层模型与协议。

包含：
- models: Message / Attachment / ResolvedRequest / ExportJob 等数据结构。
- conversation: 进程内会话容器。
- exceptions: 业务异常类型定义。
"""
