"""上下文窗口管理。

- tokenizer: Tokenizer 协议与 tiktoken / 经验规则两种估算器。
- window: 在 token 预算内选择要重新发送给后端的历史尾部。
"""
