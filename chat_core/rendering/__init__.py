"""流式渲染。

- sink: 输出端协议与进程内实现。
- renderer: 限速更新、溢出恢复的 StreamRenderer 状态机。
"""
