"""Errors raised by the assignment registry."""


class NotFoundError(LookupError):
    """No rule assignment exists for the requested rule id."""

    def __init__(self, rule_id: str) -> None:
        super().__init__(f"Rule assignment not found for rule: {rule_id}")
        self.rule_id = rule_id


class ValidationError(ValueError):
    """An assignment spec carries an unknown enum value or malformed field."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message
