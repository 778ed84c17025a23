from termchat.store.message_store import DB_VERSION, MessageStore, StoreError

__all__ = [
    "DB_VERSION",
    "MessageStore",
    "StoreError",
]
