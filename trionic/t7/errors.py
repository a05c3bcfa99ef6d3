"""KWP2000 negative response codes used by Trionic 7."""

from __future__ import annotations

from enum import IntEnum


class ResponseCode(IntEnum):
    GENERAL_REJECT = 0x10
    SERVICE_NOT_SUPPORTED = 0x11
    SUBFUNCTION_NOT_SUPPORTED_OR_INVALID_FORMAT = 0x12
    BUSY_REPEAT_REQUEST = 0x21
    CONDITIONS_NOT_CORRECT_OR_REQUEST_SEQUENCE_ERROR = 0x22
    ROUTINE_NOT_COMPLETE_OR_SERVICE_IN_PROGRESS = 0x23
    REQUEST_OUT_OF_RANGE = 0x31
    SECURITY_ACCESS_DENIED_OR_REQUESTED = 0x33
    INVALID_KEY = 0x35
    EXCEED_NUMBER_OF_ATTEMPTS = 0x36
    REQUIRED_TIME_DELAY_NOT_EXPIRED = 0x37
    DOWNLOAD_NOT_ACCEPTED = 0x40
    IMPROPER_DOWNLOAD_TYPE = 0x41
    CANNOT_DOWNLOAD_TO_SPECIFIED_ADDRESS = 0x42
    CANNOT_DOWNLOAD_NUMBER_OF_BYTES_REQUESTED = 0x43
    UPLOAD_NOT_ACCEPTED = 0x50
    IMPROPER_UPLOAD_TYPE = 0x51
    CANNOT_UPLOAD_FROM_SPECIFIED_ADDRESS = 0x52
    CANNOT_UPLOAD_NUMBER_OF_BYTES_REQUESTED = 0x53
    TRANSFER_SUSPENDED = 0x71
    TRANSFER_ABORTED = 0x72
    ILLEGAL_ADDRESS_IN_BLOCK_TRANSFER = 0x74
    ILLEGAL_BYTE_COUNT_IN_BLOCK_TRANSFER = 0x75
    ILLEGAL_BLOCK_TRANSFER_TYPE = 0x76
    BLOCK_TRANSFER_DATA_CHECKSUM_ERROR = 0x77
    REQUEST_CORRECTLY_RECEIVED_RESPONSE_PENDING = 0x78
    INCORRECT_BYTE_COUNT_DURING_BLOCK_TRANSFER = 0x79
    SERVICE_NOT_SUPPORTED_IN_ACTIVE_DIAGNOSTIC_SESSION = 0x80


_MESSAGES = {
    ResponseCode.GENERAL_REJECT: "general reject",
    ResponseCode.SERVICE_NOT_SUPPORTED: "mode not supported",
    ResponseCode.SUBFUNCTION_NOT_SUPPORTED_OR_INVALID_FORMAT: "sub-function not supported - invalid format",
    ResponseCode.BUSY_REPEAT_REQUEST: "busy, repeat request",
    ResponseCode.CONDITIONS_NOT_CORRECT_OR_REQUEST_SEQUENCE_ERROR: "conditions not correct or request sequence error",
    ResponseCode.ROUTINE_NOT_COMPLETE_OR_SERVICE_IN_PROGRESS: "routine not completed or service in progress",
    ResponseCode.REQUEST_OUT_OF_RANGE: "request out of range or session dropped",
    ResponseCode.SECURITY_ACCESS_DENIED_OR_REQUESTED: "security access denied",
    0x34: "security access allowed",
    ResponseCode.INVALID_KEY: "invalid key supplied",
    ResponseCode.EXCEED_NUMBER_OF_ATTEMPTS: "exceeded number of attempts to get security access",
    ResponseCode.REQUIRED_TIME_DELAY_NOT_EXPIRED: "required time delay not expired, you cannot gain security access at this moment",
    ResponseCode.DOWNLOAD_NOT_ACCEPTED: "download (PC -> ECU) not accepted",
    ResponseCode.IMPROPER_DOWNLOAD_TYPE: "improper download (PC -> ECU) type",
    ResponseCode.CANNOT_DOWNLOAD_TO_SPECIFIED_ADDRESS: "unable to download (PC -> ECU) to specified address",
    ResponseCode.CANNOT_DOWNLOAD_NUMBER_OF_BYTES_REQUESTED: "unable to download (PC -> ECU) number of bytes requested",
    0x44: "ready for download",
    ResponseCode.UPLOAD_NOT_ACCEPTED: "upload (ECU -> PC) not accepted",
    ResponseCode.IMPROPER_UPLOAD_TYPE: "improper upload (ECU -> PC) type",
    ResponseCode.CANNOT_UPLOAD_FROM_SPECIFIED_ADDRESS: "unable to upload (ECU -> PC) for specified address",
    ResponseCode.CANNOT_UPLOAD_NUMBER_OF_BYTES_REQUESTED: "unable to upload (ECU -> PC) number of bytes requested",
    0x54: "ready for upload",
    0x61: "normal exit with results available",
    0x62: "normal exit without results available",
    0x63: "abnormal exit with results",
    0x64: "abnormal exit without results",
    ResponseCode.TRANSFER_SUSPENDED: "transfer suspended",
    ResponseCode.TRANSFER_ABORTED: "transfer aborted",
    ResponseCode.ILLEGAL_ADDRESS_IN_BLOCK_TRANSFER: "illegal address in block transfer",
    ResponseCode.ILLEGAL_BYTE_COUNT_IN_BLOCK_TRANSFER: "illegal byte count in block transfer",
    ResponseCode.ILLEGAL_BLOCK_TRANSFER_TYPE: "illegal block transfer type",
    ResponseCode.BLOCK_TRANSFER_DATA_CHECKSUM_ERROR: "block transfer data checksum error",
    ResponseCode.REQUEST_CORRECTLY_RECEIVED_RESPONSE_PENDING: "response pending",
    ResponseCode.INCORRECT_BYTE_COUNT_DURING_BLOCK_TRANSFER: "incorrect byte count during block transfer",
    ResponseCode.SERVICE_NOT_SUPPORTED_IN_ACTIVE_DIAGNOSTIC_SESSION: "service not supported in current diagnostics session",
}


class KWPError(Exception):
    """A negative response from the ECU, carrying its response code."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def translate_error_code(code: int) -> KWPError | None:
    """Return the error a response code stands for, or None for an affirmative response."""
    if code == 0x00:
        return None
    message = _MESSAGES.get(code, f"unknown error {code:X}")
    return KWPError(code, message)