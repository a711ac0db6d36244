"""
Error taxonomy for commission settlement and payment reconciliation.

Every error raised by the services derives from SettlementError, which
carries the HTTP status the API layer answers with. Gateway failures are
split into transport problems (retryable), server errors (retryable) and
rejections (final, raised on the first attempt).
"""
from typing import Any, Dict, List, Optional


class SettlementError(Exception):
    """Base exception for settlement errors."""
    http_status = 500

    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class PolicyNotFound(SettlementError):
    """No active commission policy for the barber/service pair."""
    http_status = 404

    def __init__(self, barber_id: str, service_id: Optional[str] = None):
        self.barber_id = barber_id
        self.service_id = service_id
        scope = f"service {service_id}" if service_id else "general scope"
        super().__init__(
            f"No active commission policy for barber {barber_id} ({scope})",
            {"barber_id": barber_id, "service_id": service_id},
        )


class ValidationError(SettlementError):
    """Input failed validation. Carries one message per failed rule."""
    http_status = 400

    def __init__(self, errors: List[str], message: str = "Validation failed"):
        self.errors = list(errors)
        super().__init__(f"{message}: {'; '.join(self.errors)}", {"errors": self.errors})


class RecordNotFound(SettlementError):
    """No commission record for the billable event."""
    http_status = 404

    def __init__(self, billable_event_id: str):
        self.billable_event_id = billable_event_id
        super().__init__(
            f"No commission record for billable event {billable_event_id}",
            {"billable_event_id": billable_event_id},
        )


class BillableEventNotFound(SettlementError):
    """Referenced billable event (or the booking behind it) does not exist."""
    http_status = 404

    def __init__(self, billable_event_id: str):
        self.billable_event_id = billable_event_id
        super().__init__(
            f"Billable event {billable_event_id} not found",
            {"billable_event_id": billable_event_id},
        )


class CommissionCancelledError(SettlementError):
    """Operation not allowed on a cancelled commission record."""
    http_status = 409

    def __init__(self, billable_event_id: str):
        self.billable_event_id = billable_event_id
        super().__init__(
            f"Commission for billable event {billable_event_id} is cancelled",
            {"billable_event_id": billable_event_id},
        )


class DuplicateEvent(SettlementError):
    """Webhook event already processed. Handled as a no-op success."""
    http_status = 200

    def __init__(self, gateway_event_id: str):
        self.gateway_event_id = gateway_event_id
        super().__init__(
            f"Event {gateway_event_id} already processed",
            {"gateway_event_id": gateway_event_id},
        )


class WebhookEventNotFound(SettlementError):
    """No logged webhook event with this id."""
    http_status = 404

    def __init__(self, gateway_event_id: str):
        self.gateway_event_id = gateway_event_id
        super().__init__(
            f"Webhook event {gateway_event_id} not found",
            {"gateway_event_id": gateway_event_id},
        )


class InvalidWebhookSignature(SettlementError):
    """Webhook access token did not match the configured token."""
    http_status = 401

    def __init__(self):
        super().__init__("Invalid webhook signature")


class GatewayError(SettlementError):
    """Payment gateway API error."""
    http_status = 502

    def __init__(
        self,
        status_code: int,
        message: str,
        error_data: Optional[Dict[str, Any]] = None,
    ):
        self.status_code = status_code
        self.error_data = error_data or {}
        super().__init__(
            f"Gateway API Error ({status_code}): {message}",
            {"status_code": status_code, "errors": self.messages()},
        )

    @property
    def retryable(self) -> bool:
        return False

    def is_validation_error(self) -> bool:
        return self.status_code == 400

    def is_authentication_error(self) -> bool:
        return self.status_code == 401

    def is_rate_limit_error(self) -> bool:
        return self.status_code == 429

    def messages(self) -> List[str]:
        """Human-readable messages from the gateway error body."""
        errors = self.error_data.get("errors") or []
        return [e.get("description", "") for e in errors if isinstance(e, dict)]


class GatewayTransportError(GatewayError):
    """Connection-level failure: DNS, refused connection, reset."""

    def __init__(self, message: str):
        super().__init__(0, message)

    @property
    def retryable(self) -> bool:
        return True


class GatewayTimeoutError(GatewayTransportError):
    """Per-attempt timeout elapsed."""
    http_status = 504

    def __init__(self, message: str = "Request timeout"):
        GatewayError.__init__(self, 408, message)


class GatewayServerError(GatewayError):
    """Gateway answered with 5xx."""

    @property
    def retryable(self) -> bool:
        return True


class GatewayRejection(GatewayError):
    """Gateway answered with 4xx. Only 429 is worth retrying."""

    @property
    def http_status(self) -> int:
        return self.status_code

    @property
    def retryable(self) -> bool:
        return self.is_rate_limit_error()
