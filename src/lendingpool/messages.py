"""Execution context passed into commands and the response they return.

Outbound messages are not executed by the pool: the host runs them after the
command returns, in the order they were queued.
"""

from dataclasses import dataclass, field
from typing import Any, List, Tuple, Union

from .engine.state import Asset


@dataclass(frozen=True)
class Env:
    """Host environment of the current transaction."""
    block_time: int  # Seconds
    contract_address: str = "lending_pool"


@dataclass(frozen=True)
class MessageInfo:
    """Caller of the current command."""
    sender: str


@dataclass(frozen=True)
class TransferMessage:
    """Send `amount` of `asset` from the pool to `recipient`."""
    recipient: str
    asset: Asset
    amount: int


@dataclass(frozen=True)
class InstantiateShareToken:
    """Create the share token contract of a newly listed market."""
    asset: Asset
    admin: str
    name: str
    symbol: str


OutboundMessage = Union[TransferMessage, InstantiateShareToken]


@dataclass
class Response:
    """Result of a successful command."""
    attributes: List[Tuple[str, str]] = field(default_factory=list)
    messages: List[OutboundMessage] = field(default_factory=list)

    def add_attribute(self, key: str, value: Any) -> 'Response':
        self.attributes.append((key, str(value)))
        return self

    def add_message(self, message: OutboundMessage) -> 'Response':
        self.messages.append(message)
        return self

    def attribute(self, key: str) -> str:
        """Value of the first attribute named `key`."""
        for name, value in self.attributes:
            if name == key:
                return value
        raise KeyError(key)
