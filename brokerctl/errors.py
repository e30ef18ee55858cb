"""
Mosquitto Manager - Error Types
=================================
Exceptions raised by the broker control core.

Propagation policy:
    - StoreError / DocumentValidationError: document load/save problems.
      Always reach the caller; the document on disk is left untouched.
    - ControlError / NotRunningError: the broker cannot be signalled.
      Never retried silently.
    - ToolError: an external tool (mosquitto_passwd, openssl) failed.
      Per-user credential failures are caught and logged by the pipeline;
      certificate failures reach the caller.

Log lines that match no known shape are not errors at all.
"""


class BrokerCtlError(RuntimeError):
    """Base class for every error raised by brokerctl."""


class StoreError(BrokerCtlError):
    """The configuration document could not be read or written."""


class DocumentValidationError(StoreError, ValueError):
    """An incoming document failed structural checks and was rejected."""


class ArtifactError(BrokerCtlError):
    """Generated artifacts could not be written to the staging area."""


class ControlError(BrokerCtlError):
    """A control signal could not be delivered to the broker."""


class NotRunningError(ControlError):
    """The broker process is absent (no pid file) or no longer alive."""


class ToolError(BrokerCtlError):
    """An external command-line tool exited unsuccessfully."""

    def __init__(self, message: str, returncode: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class CertificateError(ToolError):
    """Certificate bundle generation failed."""
