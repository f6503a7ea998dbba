class WorkflowError(Exception):
    code = "workflow_error"
    status = 400

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class AuthorizationError(WorkflowError):
    """The actor's scope does not cover the row or the action.

    Args:
        action: What was attempted, e.g. "approve inventory request".
        resource_id: The target row. Included in logs and the response.
    """

    code = "forbidden"
    status = 403

    def __init__(self, action: str, resource_id: int | None = None, reason: str | None = None) -> None:
        self.action = action
        self.resource_id = resource_id
        msg = f"not permitted to {action}"
        if resource_id is not None:
            msg += f" (id={resource_id})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ValidationError(WorkflowError):
    """Input was well-formed but broke a business rule.

    ``input`` keeps what the caller submitted so a form can be re-rendered
    with the prior values.
    """

    code = "validation_error"
    status = 422

    def __init__(self, message: str, input: dict | None = None, details: dict | None = None) -> None:
        self.input = input or {}
        super().__init__(message, details)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["input"] = self.input
        return body


class NotFoundError(ValidationError):
    code = "not_found"
    status = 404

    def __init__(self, resource: str, resource_id: int | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = resource
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class AlreadyProcessedError(WorkflowError):
    """The row is no longer in the state the transition requires.

    This is the expected loser of a race between two actors, so callers treat
    it as a no-op and send the user back to ``redirect``.
    """

    code = "already_processed"
    status = 409

    def __init__(self, resource: str, resource_id: int, state: str | None = None, redirect: str = "/approvals") -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.state = state
        self.redirect = redirect
        msg = f"{resource} id={resource_id} already processed"
        if state:
            msg += f" (now {state})"
        super().__init__(msg)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["redirect"] = self.redirect
        return body


class StoreError(WorkflowError):
    """The store failed mid-transaction. Nothing was applied.

    ``retryable`` is set for pool exhaustion, timeouts and dropped
    connections.
    """

    code = "store_error"

    def __init__(self, message: str, retryable: bool = False) -> None:
        self.retryable = retryable
        super().__init__(message)

    @property
    def status(self) -> int:
        return 503 if self.retryable else 500

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["retryable"] = self.retryable
        return body
