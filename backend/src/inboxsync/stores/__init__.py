"""Client-side state for the thread list and the open thread."""

from inboxsync.stores.messages import MergeOutcome, MessageStore
from inboxsync.stores.threads import ThreadFilter, ThreadOrder, ThreadStore

__all__ = ["MergeOutcome", "MessageStore", "ThreadFilter", "ThreadOrder", "ThreadStore"]
