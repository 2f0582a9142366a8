"""Outbound sends with optimistic display and rollback."""

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum

from inbox_models import Message, OutboundState, TeamMember, Thread
from inboxsync.errors import SendError, StorageError
from inboxsync.ports import AttachmentStorage, ImageFile, Notifier, SendGateway, SendRequest
from inboxsync.stores.messages import MessageStore
from inboxsync.stores.threads import ThreadStore

logger = logging.getLogger(__name__)

MAX_IMAGES = 3
MAX_IMAGE_BYTES = 50 * 1024 * 1024


class SendOutcome(str, Enum):
    REJECTED = "rejected"  # Nothing to send
    UPLOAD_FAILED = "upload_failed"  # Aborted before any optimistic change
    FAILED_REMOVED = "failed_removed"
    SENT = "sent"  # Accepted by the proxy, waiting for realtime confirmation


@dataclass
class SendResult:
    outcome: SendOutcome
    message: Message | None = None
    attachments: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def state(self) -> OutboundState:
        if self.outcome == SendOutcome.SENT:
            return OutboundState.OPTIMISTIC
        if self.outcome == SendOutcome.FAILED_REMOVED:
            return OutboundState.FAILED_REMOVED
        return OutboundState.COMPOSING


@dataclass
class ImageSelection:
    accepted: list[ImageFile]
    rejected: list[str]


def select_images(current: list[ImageFile], incoming: list[ImageFile]) -> ImageSelection:
    """Add picked files to the compose selection.

    Only images of at most 50 MB are taken, and never more than three in
    total. Reasons for every file left out are returned for display.
    """
    remaining = max(MAX_IMAGES - len(current), 0)
    accepted = list(current)
    rejected = []
    for image in incoming[:remaining]:
        if not image.content_type.startswith("image/"):
            rejected.append(f"{image.name} is not an image file")
            continue
        if image.size > MAX_IMAGE_BYTES:
            rejected.append(f"{image.name} is too large (max 50MB)")
            continue
        accepted.append(image)
    if len(incoming) > remaining:
        added = len(accepted) - len(current)
        rejected.append(f"Maximum {MAX_IMAGES} images allowed. Only {added} added.")
    return ImageSelection(accepted=accepted, rejected=rejected)


def outbound_content(text: str, attachment_count: int) -> str:
    if text.strip():
        return text
    return f"📷 {attachment_count} image(s)" if attachment_count else ""


class MessageSender:
    """Sends a message through upload, optimistic display, and the send proxy.

    Upload failures abort before the UI changes. A proxy failure removes the
    optimistic entry and restores the thread preview. A successful send
    stays optimistic until the realtime insert confirms it.
    """

    def __init__(
        self,
        threads: ThreadStore,
        messages: MessageStore,
        storage: AttachmentStorage,
        gateway: SendGateway,
        notifier: Notifier,
    ):
        self.threads = threads
        self.messages = messages
        self.storage = storage
        self.gateway = gateway
        self.notifier = notifier

    async def send(
        self,
        thread: Thread,
        text: str,
        images: list[ImageFile],
        sender: TeamMember,
    ) -> SendResult:
        if not text.strip() and not images:
            self.notifier.error("Please enter a message or select images")
            return SendResult(SendOutcome.REJECTED, error="empty message")

        urls: list[str] = []
        for image in images:
            try:
                urls.append(await self.storage.upload(thread.id, image))
            except StorageError as e:
                logger.error(f"Upload error for thread {thread.id}: {e}")
                self.notifier.error(str(e) or "Failed to upload images")
                return SendResult(SendOutcome.UPLOAD_FAILED, error=str(e))

        content = outbound_content(text, len(urls))
        client_ref = uuid.uuid4().hex
        snapshot = self.threads.snapshot_preview(thread.id)
        optimistic = self.messages.send_optimistic(thread.id, content, sender, client_ref)
        self.threads.apply_incoming(optimistic)

        request = SendRequest(
            group_id=thread.group_id,
            content=content,
            sender_name=sender.full_name,
            team_member_id=sender.id,
            attachments=urls,
            client_ref=client_ref,
        )
        try:
            response = await self.gateway.send(request)
        except SendError as e:
            logger.error(f"Error sending message to thread {thread.id}: {e}")
            self.messages.remove(optimistic.message_id)
            self.threads.revert_preview(thread.id, snapshot, optimistic)
            self.notifier.error("Failed to send message")
            return SendResult(
                SendOutcome.FAILED_REMOVED,
                message=optimistic,
                attachments=urls,
                error=str(e),
            )

        logger.info(f"Message sent to thread {thread.id} by {sender.full_name}: {response}")
        self.notifier.success(f"Message sent by {sender.full_name}!")
        return SendResult(SendOutcome.SENT, message=optimistic, attachments=urls)
