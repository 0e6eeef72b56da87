"""OptimisticUpdate: a local change applied before the server confirms it.

Used by the notification feed (read state) and the profile resolver
(display name, avatar). Callers apply() first, await the server, then
commit() or rollback().
"""

from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class OptimisticUpdate(Generic[T]):
    """apply() writes ``change(current)``; rollback() writes ``revert(current)``.

    ``revert`` is the inverse change, applied to whatever the state is at
    rollback time so unrelated edits made meanwhile survive. commit() just
    settles the update.

    Args:
        read: Returns the current state.
        write: Replaces the current state.
        change: Maps the current state to the optimistic one.
        revert: Maps the current state back, undoing ``change``.
    """

    def __init__(
        self,
        read: Callable[[], T],
        write: Callable[[T], None],
        change: Callable[[T], T],
        revert: Callable[[T], T],
    ) -> None:
        self._read = read
        self._write = write
        self._change = change
        self._revert = revert
        self.state = "new"

    def apply(self) -> "OptimisticUpdate[T]":
        self._write(self._change(self._read()))
        self.state = "pending"
        return self

    def commit(self) -> None:
        self.state = "committed"

    def rollback(self) -> None:
        if self.state == "pending":
            self._write(self._revert(self._read()))
        self.state = "rolled_back"
