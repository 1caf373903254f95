"""Track claims that are being provisioned."""

import asyncio
from datetime import timedelta

from ..models.domain.kubernetes import Claim, ClaimPhase

__all__ = ["ClaimTracker"]


class ClaimTracker:
    """Table of claims with provisioning in progress.

    Each registered claim UID has a queue of updates to that claim, fed by
    the claim watch. Registering doubles as deduplication: a claim already
    in the table is being handled and must not be provisioned again.
    """

    def __init__(self) -> None:
        self._queues: dict[str, asyncio.Queue[Claim]] = {}

    def __contains__(self, uid: str) -> bool:
        return uid in self._queues

    def __len__(self) -> int:
        return len(self._queues)

    def register(self, uid: str) -> bool:
        """Start tracking a claim.

        Returns
        -------
        bool
            `True` if the claim was newly registered, `False` if it was
            already being tracked.
        """
        if uid in self._queues:
            return False
        self._queues[uid] = asyncio.Queue()
        return True

    def notify(self, claim: Claim) -> None:
        """Pass an update to whoever is waiting on that claim, if anyone."""
        if queue := self._queues.get(claim.uid):
            queue.put_nowait(claim)

    def release(self, uid: str) -> None:
        """Stop tracking a claim. Unknown UIDs are ignored."""
        self._queues.pop(uid, None)

    async def wait_for_bound(self, uid: str, timeout: timedelta) -> Claim:
        """Wait for a tracked claim to report phase ``Bound``.

        Parameters
        ----------
        uid
            UID of a registered claim.
        timeout
            How long to wait.

        Returns
        -------
        Claim
            The first update showing the claim as bound.

        Raises
        ------
        KeyError
            Raised if the claim is not registered.
        TimeoutError
            Raised if the claim did not become bound in time.
        """
        queue = self._queues[uid]
        async with asyncio.timeout(timeout.total_seconds()):
            while True:
                claim = await queue.get()
                if claim.phase == ClaimPhase.BOUND:
                    return claim
