from __future__ import annotations

from datetime import datetime
from typing import Protocol

from ..domain.models import CorpusPage


class CorpusSourcePort(Protocol):
    def fetch_page(
        self,
        start_index: int,
        *,
        last_modified_start: datetime | None = None,
        last_modified_end: datetime | None = None,
    ) -> CorpusPage:
        """Fetch one page of the remote corpus.

        Raises TransientRemoteError for failures worth retrying, RemoteRequestError
        or RemoteSchemaError otherwise.
        """
        ...

    @property
    def results_per_page(self) -> int:
        ...
