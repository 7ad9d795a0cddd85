"""Crowdin implementation of the translation provider, using the Crowdin API v2."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from tms_sync.exceptions import ProviderError
from tms_sync.provider.base import ApprovalInfo, FileMeta, SourceString
from tms_sync.provider.envelope import flatten_envelope

if TYPE_CHECKING:
    from tms_sync.config import Settings

logger = logging.getLogger(__name__)

PAGE_SIZE = 500
TRANSPORT_ERROR_CODE = -1
KEEP_TRANSLATIONS_AND_APPROVALS = "keep_translations_and_approvals"


def _flatten_response(body: Any) -> Any:
    """Strip the top-level envelope (and its pagination sibling) then flatten."""
    if isinstance(body, dict) and "data" in body:
        return flatten_envelope(body["data"])
    return flatten_envelope(body)


def _error_from_body(status_code: int, body: Any, raw: str) -> ProviderError:
    """Build a ProviderError from a Crowdin error body, falling back to the raw text."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and "message" in error:
            try:
                code = int(error.get("code", status_code))
            except (TypeError, ValueError):
                code = status_code
            return ProviderError(code, str(error["message"]))
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            messages: list[str] = []
            for entry in flatten_envelope(errors):
                if not isinstance(entry, dict):
                    continue
                inner = entry.get("error", entry)
                key = inner.get("key", "") if isinstance(inner, dict) else ""
                for item in inner.get("errors", []) if isinstance(inner, dict) else []:
                    if isinstance(item, dict):
                        messages.append(f"{key}: {item.get('message', '')}".strip(": "))
            if messages:
                return ProviderError(status_code, "; ".join(messages))
    return ProviderError(status_code, raw)


def _expect_object(data: Any, what: str, *required: str) -> dict[str, Any]:
    """Return ``data`` if it is a mapping holding ``required`` keys, else raise."""
    if not isinstance(data, dict) or any(key not in data for key in required):
        raise ProviderError(TRANSPORT_ERROR_CODE, f"Malformed {what} response")
    return data


def _file_meta(item: dict[str, Any]) -> FileMeta:
    directory_id = item.get("directoryId")
    return FileMeta(
        id=str(item["id"]),
        name=str(item.get("name", "")),
        directory_id=str(directory_id) if directory_id is not None else None,
        updated_at=item.get("updatedAt"),
    )


def _approval_info(item: dict[str, Any], file_id: str | None = None) -> ApprovalInfo:
    return ApprovalInfo(
        language_id=str(item.get("languageId", "")),
        approval_progress=int(item.get("approvalProgress", 0)),
        translation_progress=int(item.get("translationProgress", 0)),
        file_id=file_id,
    )


class CrowdinClient:
    """Thin async transport to one Crowdin project.

    Responses are flattened before they are returned, and every failure
    surfaces as a ``ProviderError``. The file listing is cached until
    ``clear_cache()`` is called or a file is created, updated or deleted.
    """

    def __init__(
        self,
        api_token: str,
        project_id: str,
        base_url: str = "https://api.crowdin.com/api/v2",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.project_id = project_id
        self._auth_headers = {
            "Authorization": f"Bearer {api_token}",
            "Accept": "application/json",
        }
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._files_cache: list[FileMeta] | None = None

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> CrowdinClient:
        return cls(
            api_token=settings.crowdin_api_token,
            project_id=settings.crowdin_project_id,
            base_url=settings.crowdin_base_url,
            timeout=settings.crowdin_timeout_seconds,
            transport=transport,
        )

    @property
    def project_url(self) -> str:
        return f"{self.base_url}/projects/{self.project_id}"

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http.aclose()

    async def __aenter__(self) -> CrowdinClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    def clear_cache(self) -> None:
        self._files_cache = None

    # -- transport -----------------------------------------------------------

    async def _send(
        self,
        method: str,
        url: str,
        *,
        authenticated: bool = True,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        request_headers = dict(self._auth_headers) if authenticated else {}
        if headers:
            request_headers.update(headers)
        try:
            return await self._http.request(
                method,
                url,
                params=params,
                json=json_body,
                content=content,
                headers=request_headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("Crowdin %s %s failed: %s", method, url, exc)
            raise ProviderError(TRANSPORT_ERROR_CODE, f"HTTP error: {exc}") from exc

    @staticmethod
    def _parse(resp: httpx.Response) -> Any:
        """Decode a response body, raising ProviderError on any non-success status."""
        if resp.status_code == 204 or not resp.content:
            if resp.is_success:
                return None
            raise ProviderError(resp.status_code, resp.reason_phrase)
        try:
            body = resp.json()
        except ValueError:
            if resp.is_success:
                raise ProviderError(
                    TRANSPORT_ERROR_CODE, f"Malformed response body: {resp.text[:200]}"
                ) from None
            raise ProviderError(resp.status_code, resp.text) from None
        if not resp.is_success:
            raise _error_from_body(resp.status_code, body, resp.text)
        return body

    async def _api(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self._send(method, f"{self.project_url}{path}", **kwargs)
        return _flatten_response(self._parse(resp))

    async def _paginate(self, path: str, params: dict[str, Any] | None = None) -> list[Any]:
        items: list[Any] = []
        offset = 0
        while True:
            query = {**(params or {}), "limit": PAGE_SIZE, "offset": offset}
            page = await self._api("GET", path, params=query)
            if not isinstance(page, list):
                raise ProviderError(TRANSPORT_ERROR_CODE, f"Expected a list from {path}")
            items.extend(page)
            if len(page) < PAGE_SIZE:
                return items
            offset += PAGE_SIZE

    async def _follow(self, url: str) -> dict[str, Any]:
        """Download JSON content from a pre-signed URL returned by a build/download call."""
        resp = await self._send("GET", url, authenticated=False)
        if not resp.is_success:
            raise ProviderError(resp.status_code, resp.text)
        try:
            body = resp.json()
        except ValueError:
            raise ProviderError(
                TRANSPORT_ERROR_CODE, f"Malformed JSON content at {url}"
            ) from None
        if not isinstance(body, dict):
            raise ProviderError(TRANSPORT_ERROR_CODE, f"Expected a JSON object at {url}")
        return body

    async def _store(self, name: str, content: str) -> int:
        """Upload raw content to storage and return the storage id."""
        resp = await self._send(
            "POST",
            f"{self.base_url}/storages",
            content=content.encode("utf-8"),
            headers={"Crowdin-API-FileName": name, "Content-Type": "application/json"},
        )
        data = _flatten_response(self._parse(resp))
        if not isinstance(data, dict) or "id" not in data:
            raise ProviderError(TRANSPORT_ERROR_CODE, "No storage id returned")
        return int(data["id"])

    # -- files ---------------------------------------------------------------

    async def list_files(self) -> list[FileMeta]:
        if self._files_cache is None:
            raw = await self._paginate("/files")
            self._files_cache = [_file_meta(_expect_object(item, "file", "id")) for item in raw]
        return list(self._files_cache)

    async def find_file_by_base_name(self, base_name: str) -> str | None:
        for meta in await self.list_files():
            if meta.name.rsplit(".", 1)[0] == base_name:
                return meta.id
        return None

    async def file_approval_status(
        self, file_id: str, locale: str | None = None
    ) -> ApprovalInfo | list[ApprovalInfo] | None:
        raw = await self._paginate(f"/files/{file_id}/languages/progress")
        statuses = [_approval_info(_expect_object(item, "file progress"), file_id) for item in raw]
        if locale is None:
            return statuses
        return next((s for s in statuses if s.language_id == locale), None)

    async def language_status(self, locale: str) -> list[ApprovalInfo]:
        """Approval of every file in ``locale``, from one paginated listing."""
        statuses: list[ApprovalInfo] = []
        for item in await self._paginate(f"/languages/{locale}/progress"):
            item = _expect_object(item, "language progress")
            if item.get("fileId") is None:
                continue
            statuses.append(_approval_info({**item, "languageId": locale}, str(item["fileId"])))
        return statuses

    async def export_translated_content(self, file_id: str, locale: str) -> dict[str, Any]:
        build = await self._api(
            "POST",
            f"/translations/builds/files/{file_id}",
            json_body={"targetLanguageId": locale},
        )
        url = build.get("url") if isinstance(build, dict) else None
        if not url:
            raise ProviderError(TRANSPORT_ERROR_CODE, "No URL given to follow to export file")
        return await self._follow(url)

    async def download_source_content(self, file_id: str) -> dict[str, Any]:
        download = await self._api("GET", f"/files/{file_id}/download")
        url = download.get("url") if isinstance(download, dict) else None
        if not url:
            raise ProviderError(TRANSPORT_ERROR_CODE, "No URL given to follow to download file")
        return await self._follow(url)

    async def create_file(
        self, name: str, content: str, directory_id: str | None = None
    ) -> FileMeta:
        storage_id = await self._store(name, content)
        body: dict[str, Any] = {"storageId": storage_id, "name": name}
        if directory_id is not None:
            body["directoryId"] = int(directory_id)
        data = await self._api("POST", "/files", json_body=body)
        self.clear_cache()
        logger.info("Created Crowdin file %s", name)
        return _file_meta(_expect_object(data, "file", "id"))

    async def update_file(self, file_id: str, content: str) -> FileMeta:
        storage_id = await self._store(f"{file_id}.json", content)
        data = await self._api(
            "PUT",
            f"/files/{file_id}",
            json_body={"storageId": storage_id, "updateOption": KEEP_TRANSLATIONS_AND_APPROVALS},
        )
        self.clear_cache()
        logger.info("Updated Crowdin file %s", file_id)
        return _file_meta(_expect_object(data, "file", "id"))

    async def delete_file(self, file_id: str) -> None:
        await self._api("DELETE", f"/files/{file_id}")
        self.clear_cache()
        logger.info("Deleted Crowdin file %s", file_id)

    # -- directories ---------------------------------------------------------

    async def find_directory_by_name(
        self, name: str, parent_id: str | None = None
    ) -> str | None:
        params: dict[str, Any] = {"filter": name}
        if parent_id is not None:
            params["directoryId"] = int(parent_id)
        for item in await self._paginate("/directories", params):
            item = _expect_object(item, "directory", "id")
            item_parent = item.get("directoryId")
            same_parent = (
                item_parent is None if parent_id is None else str(item_parent) == str(parent_id)
            )
            if item.get("name") == name and same_parent:
                return str(item["id"])
        return None

    async def create_directory(self, name: str, parent_id: str | None = None) -> str:
        body: dict[str, Any] = {"name": name}
        if parent_id is not None:
            body["directoryId"] = int(parent_id)
        data = _expect_object(
            await self._api("POST", "/directories", json_body=body), "directory", "id"
        )
        logger.info("Created Crowdin directory %s", name)
        return str(data["id"])

    # -- strings -------------------------------------------------------------

    async def source_string(self, source_string_id: str) -> SourceString:
        data = _expect_object(await self._api("GET", f"/strings/{source_string_id}"), "string")
        text = data.get("text", "")
        if isinstance(text, dict):
            # Plural strings carry one text per plural form
            text = json.dumps(text)
        return SourceString(
            id=str(data.get("id", source_string_id)),
            text=str(text),
            context=str(data.get("context") or ""),
        )

    async def translation_text(self, translation_id: str) -> str:
        data = _expect_object(
            await self._api("GET", f"/translations/{translation_id}"), "translation"
        )
        return str(data.get("text", ""))
