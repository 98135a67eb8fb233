from chatrelay.substrate.chat_store import ChatStore

__all__ = ["ChatStore"]
