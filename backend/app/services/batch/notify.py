from __future__ import annotations

import requests
import structlog

log = structlog.get_logger()


def send_webhook(url: str | None, payload: dict, timeout: int = 10) -> bool:
    """POST del resumen del batch. Un fallo de entrega se loguea y no afecta al batch."""
    url = (url or "").strip()
    if not url:
        return False
    try:
        resp = requests.post(url, json=payload, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as e:
        log.warning("webhook_failed", url=url, request_id=payload.get("requestId"), error=str(e))
        return False
    log.info("webhook_sent", url=url, request_id=payload.get("requestId"), status_code=resp.status_code)
    return True
