"""
Dispatch Module - Black Box Interface

Purpose: Internal asynchronous request/reply messaging
Interface: DispatchBus.consumer(), DispatchBus.send(), Message.reply(), Message.fail()
Hidden: Reply bookkeeping, timeouts, late reply discarding

Can be replaced with an external message broker.
"""

from .bus import DEFAULT_TIMEOUT, DispatchBus, Message

__all__ = ["DEFAULT_TIMEOUT", "DispatchBus", "Message"]
