"""
kernel/__init__.py — RecoChat wiring
"""

from recochat.kernel.bootstrap import ChatStack, build_chat_stack

__all__ = ["ChatStack", "build_chat_stack"]
