"""
Order Builder exceptions.

Only programming and addressing errors are raised. Validation failures are
returned as result objects and persistence failures are logged and absorbed
at the I/O boundary.
"""


class OrderBuilderError(Exception):
    """Base class for order builder errors."""


class UnknownFlowError(OrderBuilderError, KeyError):
    """Raised when a flow type has no registered default state."""

    def __init__(self, flow_type: str):
        self.flow_type = flow_type
        super().__init__(f"Unknown flow type: {flow_type}")

    def __str__(self) -> str:
        return self.args[0]


class UnknownProductError(OrderBuilderError, KeyError):
    """Raised when a product id has no customization config."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Unknown product: {product_id}")

    def __str__(self) -> str:
        return self.args[0]


class NoActiveSessionError(OrderBuilderError):
    """Raised when a configurator mutation arrives with no open session."""


class DraftNotFoundError(OrderBuilderError):
    """Raised when a draft operation needs a draft that was never created."""

    def __init__(self, flow_type: str):
        self.flow_type = flow_type
        super().__init__(f"No draft exists for {flow_type}. Call create_draft() first.")
