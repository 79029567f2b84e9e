"""curl_cffi transport built on the low-level curl easy handle."""

from __future__ import annotations

from typing import Any

from .base import (
    BaseTransport,
    ERROR_OK,
    Transfer,
    TransportHandle,
    TransportOption,
    UploadFile,
    form_fields,
    is_multipart,
)

# Try to import curl_cffi
try:
    from curl_cffi import Curl, CurlError, CurlInfo, CurlOpt

    CURL_AVAILABLE = True
except ImportError:
    CURL_AVAILABLE = False
    Curl = None
    CurlError = None
    CurlInfo = None
    CurlOpt = None

if CURL_AVAILABLE:
    # Options passed to curl as they are, after value conversion.
    _CURL_OPTIONS = {
        TransportOption.URL: CurlOpt.URL,
        TransportOption.HTTPGET: CurlOpt.HTTPGET,
        TransportOption.POST: CurlOpt.POST,
        TransportOption.NOBODY: CurlOpt.NOBODY,
        TransportOption.CUSTOMREQUEST: CurlOpt.CUSTOMREQUEST,
        TransportOption.COOKIE: CurlOpt.COOKIE,
        TransportOption.USERPWD: CurlOpt.USERPWD,
        TransportOption.USERAGENT: CurlOpt.USERAGENT,
        TransportOption.REFERER: CurlOpt.REFERER,
        TransportOption.PROXY: CurlOpt.PROXY,
        TransportOption.FOLLOWLOCATION: CurlOpt.FOLLOWLOCATION,
        TransportOption.AUTOREFERER: CurlOpt.AUTOREFERER,
        TransportOption.MAXREDIRS: CurlOpt.MAXREDIRS,
        TransportOption.SSL_VERIFYPEER: CurlOpt.SSL_VERIFYPEER,
        TransportOption.SSL_VERIFYHOST: CurlOpt.SSL_VERIFYHOST,
        TransportOption.CAINFO: CurlOpt.CAINFO,
        TransportOption.TCP_NODELAY: CurlOpt.TCP_NODELAY,
    }

    _CURL_INFO = {
        "http_code": CurlInfo.RESPONSE_CODE,
        "effective_url": CurlInfo.EFFECTIVE_URL,
        "content_type": CurlInfo.CONTENT_TYPE,
        "redirect_count": CurlInfo.REDIRECT_COUNT,
        "total_time": CurlInfo.TOTAL_TIME,
        "namelookup_time": CurlInfo.NAMELOOKUP_TIME,
        "connect_time": CurlInfo.CONNECT_TIME,
        "starttransfer_time": CurlInfo.STARTTRANSFER_TIME,
        "redirect_time": CurlInfo.REDIRECT_TIME,
        "size_download": CurlInfo.SIZE_DOWNLOAD_T,
        "size_upload": CurlInfo.SIZE_UPLOAD_T,
        "primary_ip": CurlInfo.PRIMARY_IP,
    }
else:
    _CURL_OPTIONS = {}
    _CURL_INFO = {}

# Handled by BaseTransport._run() and the Transfer, never given to curl.
_TRANSFER_OPTIONS = (
    TransportOption.WRITEDATA,
    TransportOption.HEADERFUNCTION,
    TransportOption.PROGRESSFUNCTION,
    TransportOption.READDATA,
    TransportOption.POSTFIELDS,
)


class CurlTransport(BaseTransport):
    """Transport using curl_cffi easy handles.

    Each handle owns one curl_cffi.Curl that is reset, not recreated,
    between requests. Raw CurlOpt keys are accepted alongside
    TransportOption keys and passed to curl unchanged.
    """

    name = "curl_cffi"

    def __init__(self):
        if not CURL_AVAILABLE:
            raise ImportError(
                "curl_cffi is required for CurlTransport. "
                "Install with: pip install curl_cffi"
            )

    def _create_native(self) -> Any:
        return Curl()

    def _reset_native(self, native: Any) -> None:
        native.reset()

    def _close_native(self, native: Any) -> None:
        native.close()

    def _perform(self, handle: TransportHandle, transfer: Transfer) -> None:
        curl = handle.native
        mime = None
        try:
            for option, value in handle.options.items():
                if value is None or option in _TRANSFER_OPTIONS:
                    continue
                self._setopt(curl, option, value)

            body = transfer.body
            if body is not None:
                if is_multipart(body):
                    mime = self._build_mime(curl, body)
                else:
                    data = body.encode() if isinstance(body, str) else bytes(body)
                    curl.setopt(CurlOpt.POSTFIELDS, data)
                    curl.setopt(CurlOpt.POSTFIELDSIZE, len(data))

            curl.setopt(CurlOpt.HEADERFUNCTION, transfer.on_header)
            curl.setopt(CurlOpt.WRITEFUNCTION, transfer.on_body)

            try:
                curl.perform()
            except CurlError as e:
                handle.errno = int(getattr(e, "code", 0) or 0)
                handle.error = str(e)
            else:
                handle.errno = ERROR_OK

            handle.info = self._collect_info(curl)
        finally:
            if mime is not None:
                mime.close()

    def _setopt(self, curl: Any, option: Any, value: Any) -> None:
        if option == TransportOption.TIMEOUT:
            curl.setopt(CurlOpt.TIMEOUT_MS, int(value * 1000))
        elif option == TransportOption.HTTPHEADER:
            curl.setopt(CurlOpt.HTTPHEADER, [line.encode() for line in value])
        elif option in _CURL_OPTIONS:
            if isinstance(value, bool):
                value = int(value)
            curl.setopt(_CURL_OPTIONS[option], value)
        elif isinstance(option, TransportOption):
            raise ValueError(f"Unsupported transport option: {option}")
        else:
            curl.setopt(option, value)

    def _build_mime(self, curl: Any, body: Any) -> Any:
        from curl_cffi import CurlMime

        mime = CurlMime(curl)
        for name, value in form_fields(body):
            if isinstance(value, UploadFile):
                mime.addpart(
                    name=name,
                    content_type=value.mime_type,
                    filename=value.name,
                    local_path=value.path,
                )
            else:
                mime.addpart(name=name, data=str(value).encode())
        mime.attach()
        return mime

    def _collect_info(self, curl: Any) -> dict[str, Any]:
        info: dict[str, Any] = {}
        for field, curl_info in _CURL_INFO.items():
            value = curl.getinfo(curl_info)
            if isinstance(value, bytes):
                value = value.decode("utf-8", errors="replace")
            info[field] = value
        return info
