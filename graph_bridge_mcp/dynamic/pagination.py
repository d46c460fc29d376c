"""Follows continuation links across a paged result set."""

import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from .errors import PaginationLimitExceeded

NEXT_LINK_FIELD = "@odata.nextLink"


class PaginationDriver:
    """Drives page fetches until the remote API stops returning continuations

    Args:
        max_pages: Hard cap on pages yielded, first page included
        next_link_field: Body field carrying the continuation reference
    """

    def __init__(self, max_pages: int = 100, next_link_field: str = NEXT_LINK_FIELD):
        if max_pages < 1:
            raise ValueError("max_pages must be at least 1")
        self.max_pages = max_pages
        self.next_link_field = next_link_field

    def next_link(self, body: Any) -> Optional[str]:
        if not isinstance(body, dict):
            return None
        link = body.get(self.next_link_field)
        return link if isinstance(link, str) and link else None

    async def drive(
        self,
        first_body: Any,
        fetch_next: Callable[[str], Awaitable[Any]],
    ) -> AsyncIterator[Any]:
        """Yield the first page body and then every continuation page

        The original request is never re-issued; only continuation
        references found in the pages are fetched.

        Args:
            first_body: Decoded body of the initial response
            fetch_next: Coroutine fetching a continuation URL verbatim and returning its decoded body

        Raises:
            PaginationLimitExceeded: If a continuation remains after ``max_pages`` pages
        """
        body = first_body
        pages = 1
        yield body
        while True:
            link = self.next_link(body)
            if link is None:
                return
            if pages >= self.max_pages:
                logging.warning(f"[Pagination] Page limit {self.max_pages} reached with more pages pending")
                raise PaginationLimitExceeded(pages, self.max_pages)
            body = await fetch_next(link)
            pages += 1
            logging.info(f"[Pagination] Fetched page {pages}")
            yield body


__all__ = [
    "NEXT_LINK_FIELD",
    "PaginationDriver",
]
