from __future__ import annotations


class BridgeError(RuntimeError):
    error_code = "invalid_request"


class MalformedInputError(BridgeError):
    pass


class VerificationError(BridgeError):
    pass


class StateMismatchError(VerificationError):
    pass


class KeyNotFoundError(VerificationError):
    def __init__(self, key_id: str, source: str = "public keys") -> None:
        super().__init__(f"Key {key_id} not found in {source}.")
        self.key_id = key_id


class UpstreamError(BridgeError):
    error_code = "invalid_token"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ReauthorizationRequired(BridgeError):
    pass


class CredentialNotFoundError(ReauthorizationRequired):
    pass


class ExpiredCredentialError(ReauthorizationRequired):
    pass
