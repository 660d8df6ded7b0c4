import json
import logging
import datetime

from settings import settings

logging.basicConfig(
    level=getattr(logging, str(settings.log_level or "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger("wiki")
audit_logger = logging.getLogger("wiki.audit")

def write_audit(action, username, page_id, before, after):
    audit_logger.info(json.dumps({
        "ts": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "user": username, "action": action, "page_id": page_id,
        "before": before, "after": after
    }, default=str, ensure_ascii=False))
