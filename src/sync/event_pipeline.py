"""Decode-and-apply step shared by backfill and live sync."""

from __future__ import annotations

from typing import Mapping

from core.errors import DecodeError
from core.logging_config import get_logger
from core.types import ApplyOutcome, LedgerLog
from ledger.decoder import decode_log
from ledger.event_registry import EventSpec, build_topic_index
from projection.mutator import ProjectionMutator

_LOGGER = get_logger(__name__)


class EventPipeline:
    """Runs one raw log through the decoder and the projection mutator."""

    def __init__(
        self,
        mutator: ProjectionMutator,
        topic_index: Mapping[str, EventSpec] | None = None,
    ) -> None:
        self._mutator = mutator
        self._topic_index = topic_index if topic_index is not None else build_topic_index()

    def process(self, log: LedgerLog) -> ApplyOutcome | None:
        """Decode and apply one log.

        Args:
            log: Raw ledger log.

        Returns:
            Apply outcome, or None when the log was skipped as undecodable.

        Raises:
            ProjectionWriteError: If the store keeps rejecting the mutation.
        """
        try:
            event = decode_log(log, self._topic_index)
        except DecodeError as error:
            _LOGGER.warning(
                "event_decode_skipped",
                transaction_hash=log.transaction_hash,
                log_index=log.log_index,
                block_number=log.block_number,
                error=str(error),
            )
            return None
        return self._mutator.apply(event)
