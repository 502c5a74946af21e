"""id_token_verifier ライブラリの例外型定義"""

from __future__ import annotations


class IdTokenVerifierError(Exception):
    """id_token_verifier ライブラリのエラー基底クラス。"""

    def __init__(
        self,
        code: str,
        message: str,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class ErrorCodes:
    """IdTokenVerifierError のエラーコード定数。"""

    FETCH_NETWORK_ERROR: str = "FETCH_NETWORK_ERROR"
    FETCH_HTTP_STATUS: str = "FETCH_HTTP_STATUS"
    FETCH_MALFORMED_JSON: str = "FETCH_MALFORMED_JSON"
    FETCH_INVALID_JWKS: str = "FETCH_INVALID_JWKS"
    DISCOVERY_INVALID_DOCUMENT: str = "DISCOVERY_INVALID_DOCUMENT"
    REFRESH_FAILED: str = "REFRESH_FAILED"
    MALFORMED_TOKEN: str = "MALFORMED_TOKEN"
    MISSING_KEY_ID: str = "MISSING_KEY_ID"
    KEY_NOT_FOUND: str = "KEY_NOT_FOUND"
    INVALID_SIGNATURE: str = "INVALID_SIGNATURE"
    CLAIMS_VALIDATION_FAILED: str = "CLAIMS_VALIDATION_FAILED"
    CLAIMS_DESERIALIZATION_FAILED: str = "CLAIMS_DESERIALIZATION_FAILED"
    KEY_FETCH_FAILED: str = "KEY_FETCH_FAILED"
    KEY_FETCH_TIMEOUT: str = "KEY_FETCH_TIMEOUT"
    READ_FILE: str = "READ_FILE_ERROR"
    PARSE_YAML: str = "PARSE_YAML_ERROR"
    VALIDATION: str = "VALIDATION_ERROR"


class FetchError(IdTokenVerifierError):
    """JWKS / ディスカバリー文書の単一取得の失敗。

    retryable が True の場合のみリトライポリシーによって再試行される。
    """

    def __init__(
        self,
        code: str,
        message: str,
        *,
        retryable: bool,
        url: str | None = None,
        status: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(code, message, cause)
        self.retryable = retryable
        self.url = url
        self.status = status


class DiscoveryError(FetchError):
    """OIDC ディスカバリー文書の取得または解釈の失敗。"""


class RefreshError(IdTokenVerifierError):
    """リトライ上限到達、またはリトライ不能なエラーによるキーセット更新の失敗。"""

    def __init__(self, attempts: int, last_error: BaseException | None = None) -> None:
        msg = f"Key set refresh failed after {attempts} attempt(s)"
        if last_error is not None:
            msg += f": {last_error}"
        super().__init__(ErrorCodes.REFRESH_FAILED, msg, last_error)
        self.attempts = attempts
        self.last_error = last_error


class VerificationError(IdTokenVerifierError):
    """verify() が返すエラーの基底クラス。"""


class MalformedTokenError(VerificationError):
    """トークンの compact 形式 (header.payload.signature) が不正。"""

    def __init__(self, message: str = "Malformed token", cause: BaseException | None = None) -> None:
        super().__init__(ErrorCodes.MALFORMED_TOKEN, message, cause)


class MissingKeyIdError(VerificationError):
    """トークンヘッダーに kid がない。"""

    def __init__(self, message: str = "Token header is missing the key id (kid)") -> None:
        super().__init__(ErrorCodes.MISSING_KEY_ID, message)


class KeyNotFoundError(VerificationError):
    """更新後のキーセットにも kid が存在しない。"""

    def __init__(self, kid: str) -> None:
        super().__init__(ErrorCodes.KEY_NOT_FOUND, f"Signing key not found: {kid}")
        self.kid = kid


class InvalidSignatureError(VerificationError):
    """署名不一致、またはキーセットが宣言するアルゴリズムとの不一致。"""

    def __init__(self, message: str = "Invalid token signature", cause: BaseException | None = None) -> None:
        super().__init__(ErrorCodes.INVALID_SIGNATURE, message, cause)


class ClaimsValidationError(VerificationError):
    """標準クレーム (iss / aud / exp / nbf / iat) の検証失敗。"""

    def __init__(self, claim: str, message: str | None = None) -> None:
        super().__init__(
            ErrorCodes.CLAIMS_VALIDATION_FAILED,
            message or f"Claim validation failed: {claim}",
        )
        self.claim = claim


class ClaimsDeserializationError(VerificationError):
    """ペイロードが呼び出し側の型に変換できない。"""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(ErrorCodes.CLAIMS_DESERIALIZATION_FAILED, message, cause)


class KeyFetchFailedError(VerificationError):
    """署名鍵を取得できなかった。

    code は更新失敗なら KEY_FETCH_FAILED、待機タイムアウトなら KEY_FETCH_TIMEOUT。
    """

    def __init__(
        self,
        message: str,
        *,
        timed_out: bool = False,
        cause: BaseException | None = None,
    ) -> None:
        code = ErrorCodes.KEY_FETCH_TIMEOUT if timed_out else ErrorCodes.KEY_FETCH_FAILED
        super().__init__(code, message, cause)
        self.timed_out = timed_out


class ConfigError(IdTokenVerifierError):
    """設定ファイル・環境変数の読み込みエラー。"""
