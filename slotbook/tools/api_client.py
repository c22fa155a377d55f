"""HTTP client for the activity center's booking backend."""

import logging
from typing import Any, Optional

import httpx

from slotbook.config import ApiConfig, CatalogConfig, settings
from slotbook.errors import RemoteServiceError
from slotbook.schemas.booking_schema import (
    BookingReceipt,
    BookingRequest,
    BulkBookingRequest,
    FailedSlot,
)
from slotbook.tools.sources import DateRange, Row, SlotPage
from slotbook.utils import format_ymd, to_date

logger = logging.getLogger(__name__)

MESSAGE_KEYS = ("message", "error", "title")


def extract_message(body: Any) -> Optional[str]:
    """Server-provided error text, if the body carries one."""
    if isinstance(body, dict):
        for key in MESSAGE_KEYS:
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    if isinstance(body, str) and body.strip():
        return body.strip()
    return None


def _items(body: Any) -> list[Row]:
    if isinstance(body, list):
        return [row for row in body if isinstance(row, dict)]
    if isinstance(body, dict) and isinstance(body.get("items"), list):
        return [row for row in body["items"] if isinstance(row, dict)]
    return []


def parse_receipt(body: Any) -> BookingReceipt:
    """Read a booking response in any of the shapes the backend returns.

    A bare list means one created reservation per element. An object may
    carry ``message``, ``successCount`` and ``failedSlots``.
    """
    if isinstance(body, list):
        return BookingReceipt(success_count=len(body))
    if not isinstance(body, dict):
        return BookingReceipt()

    failed: list[FailedSlot] = []
    for row in body.get("failedSlots") or []:
        if not isinstance(row, dict):
            row = {"error": str(row)}
        raw = row.get("date")
        failed_on = to_date(raw) if isinstance(raw, str) else None
        if failed_on is None:
            logger.warning("Failed-slot entry has no readable date: %r", row)
        failed.append(FailedSlot(
            date=failed_on,
            raw_date=str(raw) if failed_on is None and raw is not None else None,
            error=str(row.get("error") or ""),
        ))

    success_count = body.get("successCount")
    if success_count is None and isinstance(body.get("items"), list):
        success_count = len(body["items"])
    return BookingReceipt(
        message=body.get("message"),
        success_count=int(success_count) if success_count is not None else None,
        failed_slots=failed,
    )


class SlotbookApiClient:
    """REST implementation of the slot, reservation, subscription and booking interfaces."""

    def __init__(
        self,
        config: Optional[ApiConfig] = None,
        paging: Optional[CatalogConfig] = None,
        http: Optional[httpx.AsyncClient] = None,
        fallback_message: Optional[str] = None,
    ) -> None:
        self.config = config or settings.api
        self.paging = paging or settings.catalog
        self.fallback_message = fallback_message or settings.booking.default_error_message
        headers = {"Accept": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        self.http = http or httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.timeout_sec),
            headers=headers,
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "SlotbookApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def call(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[Any] = None,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Raises:
            RemoteServiceError: On transport failure or any 4xx/5xx status,
                carrying the server's message when it sent one.
        """
        try:
            response = await self.http.request(method, path, params=params, json=json)
        except httpx.TimeoutException as exc:
            logger.warning("%s %s timed out", method, path)
            raise RemoteServiceError(self.fallback_message) from exc
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise RemoteServiceError(self.fallback_message) from exc

        try:
            body = response.json()
        except ValueError:
            body = response.text

        if response.status_code >= 400:
            message = extract_message(body) or self.fallback_message
            logger.warning("%s %s returned %d: %s", method, path, response.status_code, message)
            raise RemoteServiceError(message, status_code=response.status_code)
        return body

    # Slot source

    async def list_available_slots(
        self,
        student_id: str,
        page: int,
        page_size: int,
        date_range: Optional[DateRange] = None,
    ) -> SlotPage:
        params: dict[str, Any] = {"pageIndex": page, "pageSize": page_size}
        if date_range is not None:
            params["date"] = format_ymd(date_range.start)
        body = await self.call(
            "GET", f"/api/BranchSlot/available-for-student/{student_id}", params=params
        )
        has_next = bool(body.get("hasNextPage")) if isinstance(body, dict) else False
        return SlotPage(items=_items(body), has_next_page=has_next)

    async def list_rooms(self, template_id: str) -> list[Row]:
        body = await self.call("GET", f"/api/BranchSlot/{template_id}/rooms")
        return _items(body)

    # Reservation source

    async def list_reservations(self, student_id: str, upcoming_only: bool = False) -> list[Row]:
        """All pages of a student's reservations.

        A failed first page raises; a failed later page ends paging with
        what was already loaded.
        """
        rows: list[Row] = []
        for page in range(1, self.paging.ledger_max_pages + 1):
            params = {
                "studentId": student_id,
                "pageIndex": page,
                "pageSize": self.paging.ledger_page_size,
                "upcomingOnly": str(upcoming_only).lower(),
            }
            try:
                body = await self.call("GET", "/api/StudentSlot", params=params)
            except RemoteServiceError:
                if page == 1:
                    raise
                logger.warning("Reservation paging stopped at page %d", page)
                break
            rows.extend(_items(body))
            if not (isinstance(body, dict) and body.get("hasNextPage")):
                break
        return rows

    # Subscription source

    async def list_subscriptions(self, student_id: str) -> list[Row]:
        body = await self.call("GET", f"/api/PackageSubscription/by-student/{student_id}")
        return _items(body)

    async def list_package_totals(self, student_id: str) -> dict[str, int]:
        body = await self.call("GET", f"/api/Package/student/{student_id}/suitable-packages")
        totals: dict[str, int] = {}
        for row in _items(body):
            total = row.get("totalSlots")
            if row.get("id") and isinstance(total, int) and total > 0:
                totals[str(row["id"])] = total
        return totals

    # Booking sink

    async def book_one(self, request: BookingRequest) -> BookingReceipt:
        body = await self.call("POST", "/api/StudentSlot/book", json=request.to_payload())
        receipt = parse_receipt(body)
        if receipt.success_count is None:
            receipt = receipt.model_copy(update={"success_count": 1})
        return receipt

    async def book_many(self, request: BulkBookingRequest) -> BookingReceipt:
        body = await self.call("POST", "/api/StudentSlot/bulk-book", json=request.to_payload())
        return parse_receipt(body)
