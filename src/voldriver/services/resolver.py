"""Interpretation of claims: class names, selectors, overrides, clones."""

import asyncio
from collections.abc import Iterable
from typing import Any

from kubernetes_asyncio.client import (
    V1ObjectReference,
    V1PersistentVolumeClaim,
)
from structlog.stdlib import BoundLogger

from ..constants import BETA_STORAGE_CLASS_ANNOTATION, EVENT_REASON
from ..exceptions import ClaimNotFoundError
from ..models.domain.kubernetes import (
    Claim,
    ClaimPhase,
    EventType,
    claim_from_object,
)
from ..storage.kubernetes.events import EventRecorder
from ..storage.kubernetes.informer import KubernetesInformer

__all__ = [
    "CloneSourceResolver",
    "get_claim_class_name",
    "get_claim_match_labels",
    "merge_override_options",
]


def get_claim_class_name(claim: Claim) -> str:
    """Determine the storage class requested by a claim.

    The legacy beta annotation takes precedence over ``storageClassName``
    whenever it is present, even if its value is empty.

    Parameters
    ----------
    claim
        Claim to inspect.

    Returns
    -------
    str
        Name of the storage class, or the empty string if none was given.
    """
    if BETA_STORAGE_CLASS_ANNOTATION in claim.annotations:
        return claim.annotations[BETA_STORAGE_CLASS_ANNOTATION]
    return claim.storage_class_name or ""


def get_claim_match_labels(claim: Claim) -> dict[str, str]:
    """Return the claim's selector labels, or an empty mapping."""
    return dict(claim.match_labels or {})


def merge_override_options(
    claim: Claim,
    overrides: Iterable[str],
    options: dict[str, Any],
    prefix: str,
    logger: BoundLogger,
) -> dict[str, Any]:
    """Apply claim annotations that override volume options.

    An annotation overrides option ``key`` if the annotation name, compared
    case-insensitively, starts with the provisioner prefix followed by
    ``key``. The annotation value is copied verbatim.

    Parameters
    ----------
    claim
        Claim whose annotations should be applied.
    overrides
        Option names that claims are allowed to override.
    options
        Options derived from the storage class. Not modified.
    prefix
        Provisioner name prefix, such as ``hpe.com/``.
    logger
        Logger to use.

    Returns
    -------
    dict of str
        New options with overrides applied.
    """
    result = dict(options)
    for override in overrides:
        wanted = prefix + override.lower()
        for key, value in claim.annotations.items():
            if not key.lower().startswith(wanted):
                continue
            if override in result:
                logger.info(
                    "Overriding option from claim annotation",
                    option=override,
                    old_value=result[override],
                    value=value,
                    annotation=key,
                )
            result[override] = value
    return result


class CloneSourceResolver:
    """Find the bound claim that a new volume should be cloned from.

    Parameters
    ----------
    claims
        Informer holding all currently known claims.
    event_recorder
        Used to report a missing clone source.
    max_wait
        Maximum number of seconds to wait for the source claim.
    logger
        Logger to use.
    """

    def __init__(
        self,
        claims: KubernetesInformer[V1PersistentVolumeClaim],
        event_recorder: EventRecorder,
        max_wait: int,
        logger: BoundLogger,
    ) -> None:
        self._claims = claims
        self._events = event_recorder
        self._max_wait = max_wait
        self._logger = logger

    async def find_bound_claim(
        self, target: V1ObjectReference, source_name: str
    ) -> Claim:
        """Wait for a bound claim with the given name in the target namespace.

        The known claims are checked immediately and then once a second until
        ``max_wait`` seconds have passed.

        Parameters
        ----------
        target
            Reference to the object being provisioned. Its namespace is the
            namespace searched, and a warning event is recorded against it if
            the source is never found.
        source_name
            Name of the source claim.

        Returns
        -------
        Claim
            The bound source claim.

        Raises
        ------
        ClaimNotFoundError
            Raised if no matching bound claim appeared in time.
        """
        namespace = target.namespace
        waited = 0
        while True:
            if claim := self._find(source_name, namespace):
                self._logger.debug(
                    "Found clone source",
                    source=source_name,
                    namespace=namespace,
                    waited=waited,
                )
                return claim
            if waited >= self._max_wait:
                break
            await asyncio.sleep(1)
            waited += 1

        msg = (
            f"Clone of claim {source_name} in namespace {namespace} was"
            " requested but it could not be found"
        )
        self._logger.error(msg, waited=waited)
        await self._events.record(target, EventType.WARNING, EVENT_REASON, msg)
        raise ClaimNotFoundError(source_name, namespace, waited)

    def _find(self, name: str, namespace: str) -> Claim | None:
        for obj in self._claims.list():
            claim = claim_from_object(obj)
            if (
                claim.name == name
                and claim.namespace == namespace
                and claim.phase == ClaimPhase.BOUND
            ):
                return claim
        return None
