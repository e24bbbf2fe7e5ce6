"""Failure taxonomy for the records-search flow.

Every browser or transport exception is converted into one of these kinds at
the FlowController boundary. ``status`` is the HTTP-equivalent code surfaced
to callers.
"""

from __future__ import annotations


class FlowError(Exception):
    code = "FLOW_ERROR"
    status = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    @property
    def kind(self) -> str:
        return type(self).__name__


class InvalidCriteria(FlowError):
    code = "INVALID_CRITERIA"
    status = 400


class SelectionFailure(FlowError):
    code = "SELECTION_FAILURE"

    def __init__(self, intent: str, value: str) -> None:
        super().__init__(f"Could not select {value!r} for {intent!r}")
        self.intent = intent
        self.value = value


class NavigationTimeout(FlowError):
    code = "NAVIGATION_TIMEOUT"


class CaptchaUnresolved(FlowError):
    code = "CAPTCHA_UNRESOLVED"


class SessionUnavailable(FlowError):
    code = "SESSION_UNAVAILABLE"
    status = 404

    def __init__(self, session_id: str, detail: str = "") -> None:
        message = f"Session {session_id!r} is unknown or expired"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.session_id = session_id


class SolverTimeout(FlowError):
    code = "SOLVER_TIMEOUT"


class SolverError(FlowError):
    code = "SOLVER_ERROR"

    def __init__(self, error_code: str, detail: str = "") -> None:
        super().__init__(f"{error_code}: {detail}" if detail else error_code)
        self.error_code = error_code
