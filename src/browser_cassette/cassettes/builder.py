"""Append-only accumulation of interactions for one capture run."""

import logging

from ..exceptions import CassetteFinalizedError
from .models import FixtureDocument, Interaction

logger = logging.getLogger(__name__)


class FixtureBuilder:
    """Collects interactions in completion order and snapshots them once.

    Usage:
        builder = FixtureBuilder()
        builder.append(interaction)
        document = builder.finalize()
    """

    def __init__(self) -> None:
        self._interactions: list[Interaction] = []
        self._document: FixtureDocument | None = None

    def append(self, interaction: Interaction) -> None:
        if self._document is not None:
            raise CassetteFinalizedError("Cannot append to a finalized cassette")
        self._interactions.append(interaction)

    def finalize(self) -> FixtureDocument:
        """Return the immutable document. Later calls return the same snapshot."""
        if self._document is None:
            self._document = FixtureDocument(interactions=tuple(self._interactions))
            logger.debug(f"Finalized cassette with {len(self._interactions)} interactions")
        return self._document

    @property
    def finalized(self) -> bool:
        return self._document is not None

    def __len__(self) -> int:
        return len(self._interactions)
