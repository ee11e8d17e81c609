class FulfillmentError(Exception):
    """Base class for payment fulfillment errors."""


class DuplicateEvent(FulfillmentError):
    """The order was already claimed; nothing left to do."""

    def __init__(self, order_id):
        super().__init__(f"Order {order_id} already fulfilled")
        self.order_id = order_id


class UnroutableEvent(FulfillmentError):
    """The event carries no feature, or one no handler owns."""

    def __init__(self, feature):
        super().__init__(f"No handler for feature {feature!r}")
        self.feature = feature


class LicenseServiceError(FulfillmentError):
    """The external license service failed or rejected the request."""


class MissingLicenseFields(LicenseServiceError):
    def __init__(self, missing):
        super().__init__(
            "Missing required user fields for license: " + ", ".join(missing)
        )
        self.missing = list(missing)


class NotificationError(FulfillmentError):
    pass


class DomainViolation(FulfillmentError):
    """Rejected before an order exists (bad cart, promo, own product...)."""

    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
