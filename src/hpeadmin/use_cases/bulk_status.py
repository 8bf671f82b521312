"""Per-item outcome ledger shared by every mutating command.

A command accepts any number of identifiers (subscription keys, serial
numbers, device types, service names). Each accepted identifier becomes a
`BulkOperationItem` that starts `Pending` and is resolved exactly once:

- during precondition checks (`warn` / `fail`), or
- after the batched network call (`submit_batch` / `submit_each`).

`results()` returns one status record per accepted item, in input order.
Blank identifiers are never accepted and never show up in the results.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, TextIO, Union

import requests

from src.hpeadmin.integrations.errors import ErrorDetails, GreenLakeError, extract_error_details

logger = logging.getLogger(__name__)

# Errors a batch can end with; anything else propagates.
BATCH_ERRORS = (GreenLakeError, requests.RequestException)


class Outcome(str, Enum):
    PENDING = "Pending"
    WARNING = "Warning"
    COMPLETE = "Complete"
    FAILED = "Failed"


@dataclass(slots=True)
class BulkOperationItem:
    identifier: str
    outcome: Outcome = Outcome.PENDING
    detail: str | None = None
    cause: Any = None

    @property
    def is_pending(self) -> bool:
        return self.outcome is Outcome.PENDING

    def as_record(self, identifier_field: str = "identifier") -> dict[str, Any]:
        return {
            identifier_field: self.identifier,
            "status": self.outcome.value,
            "details": self.detail,
            "exception": self.cause,
        }


FailureDetail = Union[str, Callable[[ErrorDetails], str]]


def _format_failure(detail: FailureDetail, err: ErrorDetails) -> str:
    return detail(err) if callable(detail) else detail


class BulkStatusTracker:
    def __init__(self, *, identifier_field: str = "identifier", operation: str = "operation") -> None:
        self._identifier_field = identifier_field
        self._operation = operation
        self._items: list[BulkOperationItem] = []

    @property
    def items(self) -> list[BulkOperationItem]:
        return list(self._items)

    def accept(self, identifier: Any) -> BulkOperationItem | None:
        value = "" if identifier is None else str(identifier).strip()
        if not value:
            logger.warning("%s: skipping empty %s", self._operation, self._identifier_field)
            return None
        item = BulkOperationItem(identifier=value)
        self._items.append(item)
        return item

    def accept_all(self, identifiers: Iterable[Any]) -> list[BulkOperationItem]:
        accepted = []
        for identifier in identifiers:
            item = self.accept(identifier)
            if item is not None:
                accepted.append(item)
        return accepted

    def pending(self) -> list[BulkOperationItem]:
        return [i for i in self._items if i.is_pending]

    def _resolve(self, item: BulkOperationItem, outcome: Outcome, detail: str, cause: Any = None) -> None:
        if not item.is_pending:
            raise ValueError(
                f"Outcome for '{item.identifier}' is already {item.outcome.value}; cannot set {outcome.value}"
            )
        item.outcome = outcome
        item.detail = detail
        item.cause = cause if outcome is Outcome.FAILED else None

    def warn(self, item: BulkOperationItem, detail: str) -> None:
        self._resolve(item, Outcome.WARNING, detail)

    def fail(self, item: BulkOperationItem, detail: str, cause: Any = None) -> None:
        self._resolve(item, Outcome.FAILED, detail, cause)

    def complete(self, item: BulkOperationItem, detail: str) -> None:
        self._resolve(item, Outcome.COMPLETE, detail)

    def submit_batch(
        self,
        send: Callable[[list[BulkOperationItem]], Any],
        *,
        success_detail: str,
        failure_detail: FailureDetail,
    ) -> bool:
        """Send all pending items in one call and resolve them together.

        Returns True when the call succeeded, False when it failed or nothing
        was pending. A transport/HTTP failure marks every pending item Failed
        with the same decoded cause.
        """

        batch = self.pending()
        if not batch:
            return False

        logger.info("%s: submitting %d item(s) in one request", self._operation, len(batch))
        try:
            send(batch)
        except BATCH_ERRORS as e:
            err = extract_error_details(e)
            logger.warning("%s: batch of %d failed: %s", self._operation, len(batch), err.message)
            for item in batch:
                self.fail(item, _format_failure(failure_detail, err), cause=err.as_dict())
            return False

        for item in batch:
            self.complete(item, success_detail)
        return True

    def submit_each(
        self,
        send: Callable[[BulkOperationItem], Any],
        *,
        success_detail: str,
        failure_detail: FailureDetail,
    ) -> None:
        """Send one request per pending item (single-resource endpoints)."""

        for item in self.pending():
            try:
                send(item)
            except BATCH_ERRORS as e:
                err = extract_error_details(e)
                logger.warning("%s: '%s' failed: %s", self._operation, item.identifier, err.message)
                self.fail(item, _format_failure(failure_detail, err), cause=err.as_dict())
                continue
            self.complete(item, success_detail)

    def results(self) -> list[dict[str, Any]]:
        for item in self.pending():
            self.fail(item, "No outcome was recorded for this item.")
        return [item.as_record(self._identifier_field) for item in self._items]


def emit_whatif(method: str, url: str, body: Any = None, *, stream: TextIO | None = None) -> None:
    """Describe the request a dry run would have sent."""

    lines = [f'What if: Performing the operation "{method}" on target "{url}".']
    if body is not None:
        lines.append("Body:")
        lines.append(json.dumps(body, indent=2))
    print("\n".join(lines), file=stream or sys.stderr)
