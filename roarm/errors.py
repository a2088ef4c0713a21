"""
Exception hierarchy for the RoArm control layer.

Every expected failure (bad parameters, wrong controller state, transport
problems, unreadable device responses) is raised as a subclass of RoarmError
so callers can catch the whole family or a single case.
"""


class RoarmError(Exception):
    """Base class for all RoArm errors."""


# ============================================================================
# Validation
# ============================================================================

class ValidationError(RoarmError):
    """A command failed schema validation. Nothing was sent."""


class MissingParameter(ValidationError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Parameter {name} is required")


class InvalidType(ValidationError):
    def __init__(self, name: str, expected: str, got):
        self.name = name
        self.expected = expected
        self.got = got
        super().__init__(f"Invalid type for {name}: expected {expected}, got {got!r}")


class UnknownCommand(ValidationError):
    def __init__(self, type_id):
        self.type_id = type_id
        super().__init__(f"Unknown command type: {type_id!r}")


class UnresolvableSymbol(ValidationError):
    """A symbolic value was given for a parameter without both bounds."""

    def __init__(self, name: str, symbol):
        self.name = name
        self.symbol = symbol
        super().__init__(f"Cannot resolve {symbol} for {name}: parameter has no min/max range")


# ============================================================================
# Controller state
# ============================================================================

class ControllerError(RoarmError):
    """The controller is not in a state that allows the operation."""


class NotConnected(ControllerError):
    def __init__(self, message: str = "Robot not connected. Call connect() first."):
        super().__init__(message)


class NoPortSpecified(ControllerError):
    def __init__(self, message: str = "No serial port configured for this robot"):
        super().__init__(message)


class AlreadyTeaching(ControllerError):
    def __init__(self, message: str = "Drag teach already active, stop it first"):
        super().__init__(message)


class NotTeaching(ControllerError):
    def __init__(self, message: str = "Drag teach is not active"):
        super().__init__(message)


class UnknownRobot(ControllerError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No robot registered under name {name!r}")


class ControllerStopped(ControllerError):
    def __init__(self, message: str = "Robot controller has been stopped"):
        super().__init__(message)


# ============================================================================
# Communication
# ============================================================================

class CommunicationError(RoarmError):
    """The transport failed to deliver a command or its response."""


class CommunicationTimeout(CommunicationError):
    def __init__(self, timeout_ms, command: str = ""):
        self.timeout_ms = timeout_ms
        self.command = command
        super().__init__(f"No response within {timeout_ms}ms for command {command[:50]!r}")


class TransportFailure(CommunicationError):
    """Serial port could not be opened, written or read."""


# ============================================================================
# Data formats
# ============================================================================

class ResponseFormatError(RoarmError):
    """A device response could not be decoded into the expected shape."""

    def __init__(self, message: str, response: str = ""):
        self.response = response
        super().__init__(message)


class RecordingError(RoarmError):
    """A teaching recording could not be read or written."""
