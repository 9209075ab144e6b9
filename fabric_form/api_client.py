"""GraphQL client for the fabric details mutation."""

import math
import os
import sys
import time
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass

import requests

from fabric_form.errors import SubmissionFault


# ---------------------------------------------------------------------------
# Spinner for visual feedback while a mutation is in flight
# ---------------------------------------------------------------------------

class Spinner:
    """Simple terminal spinner for long-running operations."""

    FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]

    def __init__(self, message: str = "Submitting..."):
        self._message = message
        self._running = False
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> "Spinner":
        self._running = True
        self._thread = threading.Thread(target=self._spin, daemon=True)
        self._thread.start()
        return self

    def stop(self, final_message: str = "") -> None:
        self._running = False
        if self._thread:
            self._thread.join()
            self._thread = None
        # Clear spinner line
        sys.stderr.write("\r\033[K")
        if final_message:
            sys.stderr.write(f"  {final_message}\n")
        sys.stderr.flush()

    def _spin(self) -> None:
        idx = 0
        while self._running:
            frame = self.FRAMES[idx % len(self.FRAMES)]
            start = time.time()
            while self._running and time.time() - start < 0.1:
                time.sleep(0.05)
            sys.stderr.write(f"\r  {frame} {self._message}")
            sys.stderr.flush()
            idx += 1


# ---------------------------------------------------------------------------
# Payload
# ---------------------------------------------------------------------------

@dataclass
class FabricRecord:
    """A validated fabric record, ready to be sent as mutation variables."""

    fabric_type: str
    colour: str
    length: float
    width: float
    price: float
    date_of_purchase: str

    def to_variables(self) -> dict:
        return {
            "fabricType": self.fabric_type,
            "colour": self.colour,
            "length": self.length,
            "width": self.width,
            "price": self.price,
            "dateOfPurchase": self.date_of_purchase,
        }


INSERT_FABRIC_DETAILS = """
mutation InsertFabricDetails(
  $fabricType: String!
  $colour: String!
  $length: Float!
  $width: Float!
  $price: Float!
  $dateOfPurchase: String!
) {
  insertFabricDetails(
    fabricType: $fabricType
    colour: $colour
    length: $length
    width: $width
    price: $price
    dateOfPurchase: $dateOfPurchase
  ) {
    qrCodeUrl
  }
}
""".strip()

DEFAULT_TIMEOUT_SECONDS = 30


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------

class BaseAPIClient(ABC):
    """Abstract base class for fabric mutation clients."""

    @abstractmethod
    def insert_fabric_details(self, record: FabricRecord) -> dict | None:
        """Run the insertFabricDetails mutation.

        Args:
            record: The coerced fabric record.

        Returns:
            The ``data`` object of the GraphQL response (may be None).

        Raises:
            SubmissionFault: On any transport, HTTP or GraphQL error.
        """
        ...

    @abstractmethod
    def name(self) -> str:
        ...


# ---------------------------------------------------------------------------
# GraphQL over HTTP
# ---------------------------------------------------------------------------

class GraphQLClient(BaseAPIClient):
    """Posts the mutation as a JSON GraphQL request to a single endpoint.

    No retries: a failed call is reported once and the user resubmits.
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ):
        if not endpoint:
            raise ValueError("GraphQL endpoint must not be empty.")
        self.endpoint = endpoint
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
        })

    def name(self) -> str:
        return f"GraphQL ({self.endpoint})"

    def insert_fabric_details(self, record: FabricRecord) -> dict | None:
        return self.execute(INSERT_FABRIC_DETAILS, record.to_variables())

    def execute(self, query: str, variables: dict) -> dict | None:
        payload = {"query": query, "variables": variables}
        try:
            r = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
            r.raise_for_status()
        except requests.RequestException as e:
            raise SubmissionFault(f"Request to {self.endpoint} failed: {e}") from e

        try:
            body = r.json()
        except ValueError as e:
            raise SubmissionFault(f"Response from {self.endpoint} is not valid JSON.") from e

        if not isinstance(body, dict):
            raise SubmissionFault("Unexpected GraphQL response shape.")

        errors = body.get("errors")
        if errors:
            messages = "; ".join(
                err.get("message", str(err)) if isinstance(err, dict) else str(err)
                for err in errors
            )
            raise SubmissionFault(messages)

        return body.get("data")


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def get_client(endpoint: str | None = None, timeout: float | None = None) -> BaseAPIClient:
    """Build a client, falling back to FABRIC_GRAPHQL_URL / FABRIC_GRAPHQL_TIMEOUT.

    Raises:
        ValueError: If no endpoint is configured or the timeout is invalid.
    """
    endpoint = endpoint or os.environ.get("FABRIC_GRAPHQL_URL")
    if not endpoint:
        raise ValueError(
            "FABRIC_GRAPHQL_URL environment variable not set.\n"
            "Set it to your GraphQL endpoint or pass --endpoint."
        )

    if timeout is None:
        raw = os.environ.get("FABRIC_GRAPHQL_TIMEOUT")
        if raw:
            try:
                timeout = float(raw)
            except ValueError:
                raise ValueError(f"FABRIC_GRAPHQL_TIMEOUT must be a number, got '{raw}'")
        else:
            timeout = DEFAULT_TIMEOUT_SECONDS

    if not math.isfinite(timeout) or timeout <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout}")

    return GraphQLClient(endpoint, timeout=timeout)
