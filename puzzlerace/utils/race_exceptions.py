"""
Custom exceptions for the puzzle race system with user-friendly error messages.
"""

class RaceException(Exception):
    """Base exception for recoverable puzzle race errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class DataUnavailable(RaceException):
    """Raised when an upstream fetch fails or times out."""
    def __init__(self, resource: str, room_id: str, details: str = None):
        self.resource = resource
        self.room_id = room_id
        super().__init__(
            f"Could not load {resource} for room '{room_id}': {details}",
            "⚠️ Could not refresh data. Showing the last known standings."
        )

class MalformedEvent(RaceException):
    """Raised when a single completion record cannot be parsed."""
    def __init__(self, member_id: int, raw, reason: str):
        self.member_id = member_id
        self.raw = raw
        super().__init__(
            f"Malformed completion event for member {member_id}: {raw!r} ({reason})",
            "⚠️ Some completion data could not be read and was skipped."
        )

class PermissionDenied(RaceException):
    """Raised when a roster mutation is attempted without admin privilege."""
    def __init__(self, room_id: str, action: str):
        self.room_id = room_id
        self.action = action
        super().__init__(
            f"Permission denied for '{action}' in room '{room_id}'",
            "❌ Only room admins can change the roster!"
        )

class MutationConflict(RaceException):
    """Raised when the server rejects an enroll/unenroll mutation."""
    def __init__(self, room_id: str, member_id: int, reason: str):
        self.room_id = room_id
        self.member_id = member_id
        self.reason = reason
        super().__init__(
            f"Roster change for member {member_id} in room '{room_id}' rejected: {reason}",
            f"❌ {reason}"
        )

class InvariantViolation(RuntimeError):
    """Raised when computed standings break a structural guarantee.

    Signals a programming error, never a data problem; not part of the
    RaceException hierarchy.
    """
