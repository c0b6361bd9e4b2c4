from __future__ import annotations


class AssetError(Exception):
    """
    Base error for the asset store and payload codec.

    `message` is safe to show to the person holding the scanner or filling
    in the form.
    """
    message = "操作失败"

    def __init__(self, message: str | None = None, detail: str = "") -> None:
        self.message = message or self.message
        self.detail = detail
        super().__init__(f"{self.message}: {detail}" if detail else self.message)


class AssetValidationError(AssetError):
    message = "资产字段无效"

    def __init__(self, errors: list[str], message: str | None = None) -> None:
        self.errors = errors
        super().__init__(message, "; ".join(errors))


class AssetNumberConflict(AssetError):
    message = "资产编号已存在"


# ---------- payload decoding ----------
class DecodeError(AssetError):
    message = "二维码解析失败"


class MalformedPayload(DecodeError):
    message = "二维码内容损坏"


class SchemaMismatch(DecodeError):
    message = "不是资产二维码"


class UnsupportedVersion(DecodeError):
    message = "二维码版本不兼容"


class InvalidDate(DecodeError):
    message = "日期字段无效"


# ---------- storage ----------
class PersistenceError(AssetError):
    message = "保存失败，请重试"
