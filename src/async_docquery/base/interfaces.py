# src/async_docquery/base/interfaces.py

from abc import ABC, abstractmethod
from logging import LoggerAdapter
from typing import Any, AsyncGenerator, Dict

from async_docquery.base.references import DocumentReference
from async_docquery.base.snapshot import RunQueryResponse
from async_docquery.base.structured_query import RunQueryRequest


class Transport(ABC):
    """
    Executes lowered queries against a backing store.

    Implementations stream :class:`RunQueryResponse` records for a
    :class:`RunQueryRequest`. Every call to :meth:`run_query` must start a new,
    independent request; the returned generator must release its resources when
    closed early or cancelled. Retries, if any, belong to the implementation.
    """

    @abstractmethod
    def run_query(
        self, request: RunQueryRequest, logger: LoggerAdapter
    ) -> AsyncGenerator[RunQueryResponse, None]:
        """
        Run a structured query.

        Args:
            request: The lowered query and the parent resource it is scoped to.
            logger: Logger adapter for recording operations.

        Returns:
            An async generator of responses. At least one response must carry a
            read time; responses without a document are progress heartbeats.
        """
        pass

    @abstractmethod
    async def store(
        self,
        reference: DocumentReference,
        data: Dict[str, Any],
        logger: LoggerAdapter,
    ) -> None:
        """
        Create or replace the document at ``reference``.

        Args:
            reference: The target document.
            data: Plain Python document data; serialized by the transport.
            logger: Logger adapter for recording operations.
        """
        pass

    async def close(self) -> None:
        """Release any resources held by the transport."""
        return None
