"""领域层模型与协议。

包含：
- models: ChatMessage / Session / TextCompletion 以及流式协议帧模型。
- session: SessionStore，会话的规范存储与快照。
- exceptions: 业务异常类型定义。
"""
