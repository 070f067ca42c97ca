"""系统提示词加载与 preamble 构造。

静态指令默认从本目录的 assistant_system.md 读取，也可以通过
settings.system_prompt_file 指向自定义文件。preamble 每次请求重新生成，
在静态指令之后附加当前时间、机器人身份与会话所在位置，不写入历史。
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from chat_core.domain.models import Role, Turn


PROMPTS_DIR = Path(__file__).resolve().parent


def load_system_prompt(path: Optional[str] = None) -> str:
    """加载系统提示词文本；path 为空时使用内置提示词。"""

    fname = Path(path).expanduser() if path else PROMPTS_DIR / "assistant_system.md"
    return fname.read_text(encoding="utf-8").strip()


def build_preamble(
    instructions: str,
    *,
    bot_name: str,
    venue: str = "",
    now: Optional[datetime] = None,
) -> Turn:
    now = now or datetime.now(timezone.utc)
    facts = [
        f"Current time: {now.astimezone(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')}",
        f"Your name: {bot_name}",
    ]
    if venue:
        facts.append(f"You are talking in: {venue}")
    content = instructions + "\n\n" + "\n".join(f"- {fact}" for fact in facts)
    return Turn(role=Role.SYSTEM, speaker_label=bot_name, content=content)
