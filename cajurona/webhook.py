"""
HTTP surface of the bot: the gateway webhook plus health and classifier
test endpoints.
"""

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from cajurona.config import Settings
from cajurona.domain.intent import IntentClassifier
from cajurona.domain.phones import only_digits, phone_from_jid
from cajurona.pipeline import InboundMessage, Pipeline

log = logging.getLogger(__name__)

SKIPPED = {"success": True, "skipped": True}


class ClassifyRequest(BaseModel):
    numero: str | None = None
    texto: str | None = None


def _section(container: dict, name: str) -> dict:
    value = container.get(name)
    return value if isinstance(value, dict) else {}


def _text(value: object) -> str:
    return value if isinstance(value, str) else ""


def parse_webhook(payload: object) -> InboundMessage | None:
    """
    Extract the text message from a gateway webhook payload.

    Returns None for anything that needs no action: self-sent messages,
    non-text messages, and payloads without a sender.
    """
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if not isinstance(data, dict):
        return None

    key = _section(data, "key")
    if key.get("fromMe"):
        return None

    remote_jid = _text(key.get("remoteJid"))
    message = _section(data, "message")
    text = message.get("conversation") or _section(message, "extendedTextMessage").get("text")

    is_group = remote_jid.endswith("@g.us")
    sender_jid = _text(key.get("participant")) or remote_jid
    phone = phone_from_jid(sender_jid)
    reply_to = remote_jid

    # LID senders hide their number; senderPn carries the real one.
    sender_pn = only_digits(_text(data.get("senderPn")) or _text(key.get("senderPn")))
    if sender_jid.endswith("@lid") and sender_pn:
        phone = sender_pn
        if not is_group:
            reply_to = f"{sender_pn}@s.whatsapp.net"

    if not isinstance(text, str) or not text.strip() or not phone or not remote_jid:
        return None

    return InboundMessage(
        text=text,
        phone=phone,
        sender_jid=sender_jid,
        reply_to=reply_to,
        group_jid=remote_jid if is_group else None,
    )


def create_app(settings: Settings, pipeline: Pipeline, classifier: IntentClassifier) -> FastAPI:
    app = FastAPI(title="Cajurona Bot")

    @app.post("/webhook")
    async def webhook(request: Request, x_webhook_secret: str | None = Header(default=None)):
        if settings.webhook_secret and x_webhook_secret != settings.webhook_secret:
            return JSONResponse(status_code=401, content={"error": "Unauthorized"})

        try:
            payload = await request.json()
        except ValueError:
            return SKIPPED

        msg = parse_webhook(payload)
        if msg is None:
            return SKIPPED

        try:
            result = await pipeline.process(msg)
        except Exception:
            log.exception("Webhook processing failed for %s", msg.phone)
            return JSONResponse(status_code=500, content={"error": "Internal server error"})

        return {"success": True, "action": result.action}

    @app.get("/health")
    def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.post("/test")
    def classify(body: ClassifyRequest):
        if not body.numero or not body.texto:
            raise HTTPException(status_code=400, detail="numero e texto são obrigatórios")
        intent = classifier.classify(body.texto)
        return {"intent": intent.to_dict(), "msgRecebida": body.texto}

    return app
