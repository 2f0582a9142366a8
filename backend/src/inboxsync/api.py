"""FastAPI application receiving inbound message webhooks."""

import logging

from fastapi import Depends, FastAPI, HTTPException

from inboxsync import __version__
from inboxsync.config import settings
from inboxsync.db import Database, db
from inboxsync.errors import BackendError
from inboxsync.models import InboundMessagePayload, InboundMessageResponse

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Inbox Sync API",
    description="Webhook receiver feeding the inbox change feed",
    version=__version__,
)


@app.on_event("startup")
async def startup_event():
    """Connect to PostgreSQL and install the schema."""
    await db.connect()
    await db.ensure_tables_exist()


@app.on_event("shutdown")
async def shutdown_event():
    """Clean up on shutdown."""
    await db.disconnect()


def get_db() -> Database:
    return db


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


@app.post("/webhooks/inbound", response_model=InboundMessageResponse)
async def receive_message(
    payload: InboundMessagePayload,
    database: Database = Depends(get_db),
):
    """Store a provider message once.

    Redelivered webhooks carry the same message_id and are acknowledged
    without a second insert. The insert trigger publishes the new row to
    the realtime channel.
    """
    if not (payload.text or payload.speech_text or payload.attachments):
        raise HTTPException(status_code=422, detail="Message has no content")

    try:
        thread = await database.get_or_create_thread(payload.group_id, payload.participants)
        message = await database.insert_message(
            thread_id=thread.id,
            message_id=payload.message_id,
            direction=payload.direction,
            text=payload.text,
            speech_text=payload.speech_text,
            sender_phone_number=payload.sender_phone_number,
            sender_name=payload.sender_name,
            message_type=payload.message_type,
            sent_by_team_member_id=payload.sent_by_team_member_id,
            client_ref=payload.client_ref,
            attachment_urls=payload.attachments,
        )
    except BackendError as e:
        logger.error(f"Error storing message {payload.message_id}: {e}")
        raise HTTPException(status_code=503, detail="Storage unavailable")

    if message is None:
        logger.info(f"Ignoring duplicate delivery of {payload.message_id}")
    return InboundMessageResponse(thread_id=thread.id, duplicate=message is None, message=message)


# ============= Run =============


def run():
    """Run the application."""
    import uvicorn

    uvicorn.run(
        "inboxsync.api:app",
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    run()
