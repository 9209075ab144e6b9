"""Form controller: field state, validation, submission and QR URL state."""

import math
import re
import sys
import threading
from dataclasses import dataclass
from typing import Callable

from fabric_form import FIELD_NAMES, NUMERIC_FIELDS
from fabric_form.api_client import BaseAPIClient, FabricRecord
from fabric_form.errors import FabricFormError, SubmissionFault, ValidationError
from fabric_form.print_dispatcher import PrintDispatcher


MSG_INVALID_NUMBERS = "Please enter valid numeric values for length, width, and price."
MSG_SUBMITTED = "Form submitted successfully!"
MSG_SUBMIT_FAILED = "Error submitting the form."
MSG_IN_PROGRESS = "A submission is already in progress."
MSG_DISCARDED = "Form was closed before the response arrived."

# Longest numeric prefix, the way a browser's parseFloat reads it
_FLOAT_PREFIX = re.compile(
    r"[+-]?(?:Infinity|(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?)"
)


def parse_float(value: str) -> float:
    """Parse the leading number of a string; NaN if there is none.

    ``"12abc"`` gives 12.0, ``""`` and ``"abc"`` give NaN.
    """
    match = _FLOAT_PREFIX.match(value.lstrip())
    if not match:
        return math.nan
    return float(match.group(0).replace("Infinity", "inf"))


def coerce_numeric(fields: dict) -> dict:
    """Copy of the field mapping with length, width and price as floats."""
    coerced = dict(fields)
    for name in NUMERIC_FIELDS:
        coerced[name] = parse_float(fields[name])
    return coerced


@dataclass
class SubmissionResult:
    """Outcome of a single submit action."""

    ok: bool
    qr_code_url: str | None = None
    message: str = ""


def _extract_qr_code_url(data: dict | None) -> str:
    if not isinstance(data, dict):
        raise SubmissionFault("Mutation returned no data.")
    details = data.get("insertFabricDetails")
    url = details.get("qrCodeUrl") if isinstance(details, dict) else None
    if not isinstance(url, str) or not url:
        raise SubmissionFault("Mutation returned no QR code URL.")
    return url


def _print_alert(message: str) -> None:
    print(message)


class FabricForm:
    """Owns the fabric entry state for one form instance.

    Every state change is announced to subscribers, which stand in for a
    re-render. User-facing messages go to ``alert``.
    """

    def __init__(
        self,
        client: BaseAPIClient,
        dispatcher: PrintDispatcher | None = None,
        alert: Callable[[str], None] = _print_alert,
    ):
        self._client = client
        self._dispatcher = dispatcher or PrintDispatcher()
        self._alert = alert
        self._fields = {name: "" for name in FIELD_NAMES}
        self._listeners: list[Callable[["FabricForm"], None]] = []
        self._submit_lock = threading.Lock()
        self._unmounted = False

        self.qr_code_url: str | None = None
        self.loading = False
        self.error: str | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def fields(self) -> dict:
        return dict(self._fields)

    @property
    def unmounted(self) -> bool:
        return self._unmounted

    def subscribe(self, listener: Callable[["FabricForm"], None]) -> Callable[[], None]:
        """Register a change listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if self._unmounted:
            return
        for listener in list(self._listeners):
            listener(self)

    def update_field(self, name: str, value: str) -> None:
        if name not in self._fields:
            raise KeyError(f"Unknown field '{name}'. Expected one of: {', '.join(FIELD_NAMES)}")
        self._fields[name] = value
        self._notify()

    def unmount(self) -> None:
        """Tear the form down. Responses arriving later are dropped."""
        self._unmounted = True
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    def validate(self) -> FabricRecord:
        """Coerce the current fields into a record.

        Raises:
            ValidationError: If length, width or price is not a finite number.
        """
        coerced = coerce_numeric(self._fields)
        if not all(math.isfinite(coerced[name]) for name in NUMERIC_FIELDS):
            raise ValidationError(MSG_INVALID_NUMBERS)

        return FabricRecord(
            fabric_type=coerced["fabricType"],
            colour=coerced["colour"],
            length=coerced["length"],
            width=coerced["width"],
            price=coerced["price"],
            date_of_purchase=coerced["dateOfPurchase"],
        )

    def submit(self) -> SubmissionResult:
        try:
            record = self.validate()
        except ValidationError as e:
            self._alert(str(e))
            return SubmissionResult(ok=False, message=str(e))

        if not self._submit_lock.acquire(blocking=False):
            self._alert(MSG_IN_PROGRESS)
            return SubmissionResult(ok=False, message=MSG_IN_PROGRESS)

        fault = None
        qr_code_url = None
        try:
            self.loading = True
            self.error = None
            self._notify()
            try:
                data = self._client.insert_fabric_details(record)
                qr_code_url = _extract_qr_code_url(data)
            except Exception as e:
                fault = e
        finally:
            self.loading = False
            self._submit_lock.release()

        if self._unmounted:
            return SubmissionResult(ok=False, message=MSG_DISCARDED)

        if fault is not None:
            return self._fail(fault)

        self.qr_code_url = qr_code_url
        self._notify()
        self._alert(MSG_SUBMITTED)
        return SubmissionResult(ok=True, qr_code_url=qr_code_url, message=MSG_SUBMITTED)

    def _fail(self, exc: Exception) -> SubmissionResult:
        # Any earlier QR code URL is kept
        self.error = str(exc)
        self._notify()
        print(f"Error submitting the form: {exc}", file=sys.stderr)
        self._alert(MSG_SUBMIT_FAILED)
        return SubmissionResult(ok=False, message=MSG_SUBMIT_FAILED)

    # ------------------------------------------------------------------
    # Print
    # ------------------------------------------------------------------

    def print_qr_code(self) -> bool:
        """Print the stored QR code. Returns False if printing was refused."""
        try:
            self._dispatcher.print_qr(self.qr_code_url)
        except FabricFormError as e:
            self._alert(str(e))
            return False
        return True
