"""
errors.py
Typed exceptions for the dues engine. Every class carries a machine-readable
`code` so the UI can branch on type and show the message as-is.

    DuesError
    +-- NotFoundError            not_found
    +-- InvalidCodeError         invalid_code
    +-- PayLinkDisabledError     pay_link_disabled
    +-- ValidationError          validation_error
    |   +-- SubmissionLockedError  submission_locked
    +-- UploadError              upload_error
    +-- PermissionDeniedError    permission_denied
    +-- InvalidStatusError       invalid_status
"""

from __future__ import annotations


class DuesError(Exception):
    code: str = "dues_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(DuesError):
    code = "not_found"

    def __init__(self, kind: str, ref_id: str):
        self.kind = kind
        self.ref_id = ref_id
        super().__init__(f"{kind} not found: {ref_id}")


class InvalidCodeError(DuesError):
    code = "invalid_code"

    def __init__(self, membership_id: str):
        self.membership_id = membership_id
        super().__init__("Invalid payment code.")


class PayLinkDisabledError(DuesError):
    code = "pay_link_disabled"

    def __init__(self, membership_id: str, reason: str | None):
        self.membership_id = membership_id
        self.reason = reason
        super().__init__(reason or "This payment link is disabled.")


class ValidationError(DuesError):
    code = "validation_error"

    def __init__(self, errors: list[str] | str):
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class SubmissionLockedError(ValidationError):
    code = "submission_locked"

    def __init__(self, submission_id: str, status: str):
        self.submission_id = submission_id
        self.status = status
        super().__init__(f"Submission {submission_id} is already {status}.")


class UploadError(DuesError):
    code = "upload_error"

    def __init__(self, message: str, storage_code: str = "unknown"):
        self.storage_code = storage_code
        super().__init__(message)


class PermissionDeniedError(DuesError):
    code = "permission_denied"


class InvalidStatusError(DuesError):
    code = "invalid_status"

    def __init__(self, kind: str, value):
        self.kind = kind
        self.value = value
        super().__init__(f"Unrecognized {kind} status: {value!r}")
