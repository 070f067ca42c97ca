import json
import logging
from pathlib import Path
from datetime import datetime, timezone
from chat_core.config.settings import settings


# 按这个顺序放在 msg 之后，便于按一次请求或一个会话 grep
_LEADING_FIELDS = ("trace_id", "conversation_id")
# 可能夹带后端返回内容的字段，脱敏时截断
_REDACTED_FIELDS = ("error",)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        redact = settings.log_redact_content
        if redact:
            msg = (msg or "")[:64]
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            fields = dict(extra)
            for key in _LEADING_FIELDS:
                if key in fields:
                    payload[key] = fields.pop(key)
            if redact:
                for key in _REDACTED_FIELDS:
                    if isinstance(fields.get(key), str):
                        fields[key] = fields[key][:64]
            payload.update(fields)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger() -> logging.Logger:
    logger = logging.getLogger("chat_core")
    logger.setLevel(settings.log_level.upper())
    if logger.handlers:
        # 重复导入（如测试重载模块）时不再叠加 handler
        return logger
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_dir / "chat.log", encoding="utf-8")
    fh.setFormatter(JsonFormatter())
    logger.addHandler(fh)
    return logger


logger = setup_logger()
