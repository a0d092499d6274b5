"""Client for the REST record store (appointments, prescriptions, reviews).

Every call is an independent request/response that may fail. Transport and
HTTP failures are translated into the StoreError family so callers deal
with three outcomes only: unreachable, not found, or a bad response.
"""
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import requests
from pydantic import ValidationError

from medbook import config
from medbook.circuit_breaker import CircuitBreaker, CircuitBreakerOpen
from medbook.http_client import create_http_session
from medbook.logging_config import REQUEST_ID_HEADER, generate_request_id, get_logger
from medbook.models import (
    Appointment,
    AppointmentStatus,
    Prescription,
    PrescriptionDraft,
    Review,
)

logger = get_logger(__name__)


class StoreError(Exception):
    """Base class for record store failures."""
    pass


class StoreUnavailableError(StoreError):
    """Store unreachable: connection refused, timeout, or circuit open."""
    pass


class StoreResponseError(StoreError):
    """Store answered with an error status or an unreadable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RequestRejectedError(StoreResponseError):
    """Store rejected the request (4xx other than 404)."""
    pass


class RecordNotFoundError(StoreResponseError):
    """Requested record does not exist (404)."""
    pass


# Shared across stores pointing at the same server
store_circuit_breaker = CircuitBreaker(
    failure_threshold=config.BREAKER_FAILURE_THRESHOLD,
    timeout=config.BREAKER_TIMEOUT_SECONDS,
    ignored_exceptions=(RecordNotFoundError, RequestRejectedError),
)


class RecordStore:
    """
    Thin typed wrapper over the json-server style API.

    Endpoints:
        GET    /appointments?doctorId=|patientId=
        GET    /appointments/{id}
        PATCH  /appointments/{id}
        GET    /prescriptions?doctorId=|appointmentId=
        GET    /prescriptions/{id}
        POST   /prescriptions
        PATCH  /prescriptions/{id}
        DELETE /prescriptions/{id}
        GET    /reviews?doctorId=|patientId=
    """

    def __init__(
        self,
        base_url: str = config.API_BASE_URL,
        session: Optional[requests.Session] = None,
        breaker: Optional[CircuitBreaker] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or create_http_session()
        self.breaker = breaker or store_circuit_breaker
        self.clock = clock

    # ---- Appointments ----

    def list_appointments(self, owner_id: str, role: str) -> List[Appointment]:
        """List appointments for a doctor or patient (order not guaranteed)."""
        key = "doctorId" if role == "doctor" else "patientId"
        data = self._request("GET", "appointments", params={key: owner_id})
        return _parse_list(Appointment, data)

    def get_appointment(self, appointment_id: str) -> Appointment:
        data = self._request("GET", f"appointments/{appointment_id}")
        return _parse(Appointment, data)

    def update_status(self, appointment_id: str, status: str) -> Appointment:
        data = self._request(
            "PATCH", f"appointments/{appointment_id}", json={"status": status}
        )
        return _parse(Appointment, data)

    def update_schedule(self, appointment_id: str, date: str, time_: str) -> Appointment:
        """Move an appointment; status is forced to ``rescheduled`` in the same write."""
        data = self._request(
            "PATCH",
            f"appointments/{appointment_id}",
            json={
                "date": date,
                "time": time_,
                "status": AppointmentStatus.RESCHEDULED.value,
            },
        )
        return _parse(Appointment, data)

    # ---- Prescriptions ----

    def list_prescriptions_by_doctor(self, doctor_id: str) -> List[Prescription]:
        data = self._request("GET", "prescriptions", params={"doctorId": doctor_id})
        return _parse_list(Prescription, data)

    def list_prescriptions_by_appointment(self, appointment_id: str) -> List[Prescription]:
        data = self._request(
            "GET", "prescriptions", params={"appointmentId": appointment_id}
        )
        return _parse_list(Prescription, data)

    def get_prescription(self, prescription_id: str) -> Prescription:
        data = self._request("GET", f"prescriptions/{prescription_id}")
        return _parse(Prescription, data)

    def create_prescription(self, draft: PrescriptionDraft) -> Prescription:
        """
        Persist a new prescription.

        The store performs no uniqueness check; callers go through
        PrescriptionService, which enforces one prescription per appointment.
        Like the web client, the id is a millisecond timestamp and the date
        is today's local date.
        """
        now = self.clock()
        payload = draft.to_wire()
        payload["id"] = str(int(now.timestamp() * 1000))
        payload["date"] = now.date().isoformat()
        data = self._request("POST", "prescriptions", json=payload)
        return _parse(Prescription, data)

    def update_prescription(self, prescription_id: str, changes: Dict[str, Any]) -> Prescription:
        data = self._request("PATCH", f"prescriptions/{prescription_id}", json=changes)
        return _parse(Prescription, data)

    def delete_prescription(self, prescription_id: str) -> bool:
        self._request("DELETE", f"prescriptions/{prescription_id}", expect_body=False)
        return True

    # ---- Reviews ----

    def list_reviews_by_doctor(self, doctor_id: str) -> List[Review]:
        data = self._request("GET", "reviews", params={"doctorId": doctor_id})
        return _parse_list(Review, data)

    def list_reviews_by_patient(self, patient_id: str) -> List[Review]:
        data = self._request("GET", "reviews", params={"patientId": patient_id})
        return _parse_list(Review, data)

    # ---- Transport ----

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        expect_body: bool = True,
    ) -> Any:
        url = f"{self.base_url}/{path}"
        request_id = generate_request_id()
        log = logger.bind(method=method, path=path, request_id=request_id)
        headers = {REQUEST_ID_HEADER: request_id}

        def send():
            sender = {
                "GET": self.session.get,
                "POST": self.session.post,
                "PATCH": self.session.patch,
                "DELETE": self.session.delete,
            }.get(method)
            if sender is None:
                raise ValueError(f"Unsupported HTTP method: {method}")

            try:
                return sender(url, params=params, json=json, headers=headers)
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                raise StoreUnavailableError(config.SERVER_ERROR_MESSAGE) from e
            except requests.exceptions.HTTPError as e:
                raise _translate_http_error(e, path) from e
            except requests.exceptions.RequestException as e:
                raise StoreUnavailableError(f"Request to {path} failed: {e}") from e

        started = time.monotonic()
        try:
            response = self.breaker.call(send)
        except CircuitBreakerOpen as e:
            log.warning("store_circuit_open")
            raise StoreUnavailableError(config.SERVER_ERROR_MESSAGE) from e
        except StoreError as e:
            log.warning("store_request_failed", error=str(e), error_type=type(e).__name__)
            raise

        log.debug(
            "store_request_ok",
            status=response.status_code,
            elapsed_ms=round((time.monotonic() - started) * 1000, 1),
        )

        if not expect_body:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise StoreResponseError(
                f"Invalid JSON from {path}", status_code=response.status_code
            ) from e


def _translate_http_error(error: requests.exceptions.HTTPError, path: str) -> StoreError:
    status = error.response.status_code if error.response is not None else None
    if status == 404:
        return RecordNotFoundError(f"Record not found: {path}", status_code=status)
    if status is not None and 400 <= status < 500:
        return RequestRejectedError(f"Store rejected request to {path} ({status})", status_code=status)
    return StoreResponseError(f"Store error on {path} ({status})", status_code=status)


def _parse(model, data):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise StoreResponseError(f"Malformed {model.__name__} record: {e.error_count()} error(s)") from e


def _parse_list(model, data) -> list:
    if not isinstance(data, list):
        raise StoreResponseError(f"Expected a list of {model.__name__} records")
    return [_parse(model, item) for item in data]
