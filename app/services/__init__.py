"""
业务逻辑服务模块

包含以下服务：
- stream_orchestrator: 流式轮次状态机（发送、重试、续传共用）
- chat_send_orchestrator: 发送消息
- resume_orchestrator: 续传中断的流
- retry_orchestrator: 重新生成助手消息
- context_builder: 构建提供商上下文
- title_service: 会话标题生成
- conversation_service: 对话管理服务
"""
