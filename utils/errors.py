"""
Error taxonomy for the MACI processing engine.

Decryption failures and rejected commands are protocol-level outcomes
(votes that do not count) and are absorbed by the poll; every other error
stops processing and must be handled by the coordinator.
"""


class MACIError(Exception):
    """Base exception for the processing engine"""
    pass


class InputValidationError(MACIError):
    """Raised when an input is out of the field, malformed or of the wrong type"""
    pass


class DecryptionError(MACIError):
    """Raised when a ciphertext fails to decrypt or authenticate"""
    pass


class CommandRejected(MACIError):
    """A decrypted command failed a protocol check and becomes a no-op"""
    pass


class ProtocolViolation(MACIError):
    """Raised on out-of-sequence calls"""
    pass


class ProofPreconditionError(MACIError):
    """Raised when a root or path is read before it has been computed"""
    pass
