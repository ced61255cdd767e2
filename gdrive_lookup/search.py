"""
search.py - Entity lookup against Google Drive.

For each entity the orchestrator runs a full-text Drive query, then
decorates every returned file (icon, URL type, thumbnail, optional eager
content) in a bounded thread pool. One file failing never fails the
entity. Eagerly fetched content is highlighted afterwards, in the
provider's file order, so match ids form one increasing sequence.

Without OAuth, Drive is accessed with a token minted from a service-account
key on every lookup. Under OAuth mode a missing/expired session, or a 401
from Drive, turns the whole call into a single "authentication required"
result carrying a fresh authorization link.
"""

from __future__ import annotations

import base64
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable

from .app_settings import LookupOptions, validate_options
from .auth_flow import AuthFlowController, AuthRequestContext
from .constants import (
    DEFAULT_FILE_ICON,
    MAX_CONCURRENT_FILE_REQUESTS,
    MIME_TYPE_ICONS,
    PENDING_CONTENT,
    SUMMARY_TAG_LIMIT,
    THUMBNAIL_DATA_URI_PREFIX,
)
from .drive_client import DriveClient, StorageProvider, build_scope, full_text_query
from .errors import ErrorRecord, ProviderError, SearchError, ValidationError
from .highlight import fetch_and_highlight, fetch_file_text, normalize_search_term, process_file
from .service_account import ServiceAccountTokens

log = logging.getLogger(__name__)

ProviderFactory = Callable[[str], StorageProvider]

AUTH_REQUIRED_SUMMARY = "Authentication Required"


@dataclass(frozen=True)
class UserContext:
    user_id: str
    username: str = ""


def entity_value(entity: Any) -> str:
    if isinstance(entity, dict):
        return str(entity.get("value") or "")
    return str(entity or "")


def type_for_url(mime_type: str) -> str:
    if mime_type == "application/vnd.google-apps.presentation":
        return "presentation"
    if mime_type == "application/vnd.google-apps.spreadsheet":
        return "spreadsheets"
    return "document"


def summary_tags(files: list[dict[str, Any]], limit: int = SUMMARY_TAG_LIMIT) -> list[str]:
    tags = [str(f.get("name") or "") for f in files[:limit]]
    if len(tags) != len(files):
        tags.append(f"+{len(files) - len(tags)} more files")
    return tags


def content_fetcher(
    provider_source: Callable[[], StorageProvider | None],
    search_term: str,
    search_id: str,
):
    """Bind a search to the (file, start) -> (file, total) shape.

    A provider is opened per fetch so later fetches pick up refreshed
    credentials. None from *provider_source* means the user must sign in
    again.
    """

    def _fetch(file: dict[str, Any], starting_match_count: int) -> tuple[dict[str, Any], int]:
        provider = provider_source()
        if provider is None:
            raise ProviderError("Authentication required", status_code=401)
        return fetch_and_highlight(provider, file, search_term, search_id, starting_match_count)

    return _fetch


class SearchOrchestrator:
    def __init__(
        self,
        auth: AuthFlowController,
        provider_factory: ProviderFactory = DriveClient,
        *,
        max_workers: int = MAX_CONCURRENT_FILE_REQUESTS,
        service_tokens: ServiceAccountTokens | None = None,
    ):
        self.auth = auth
        self.provider_factory = provider_factory
        self.service_tokens = service_tokens or ServiceAccountTokens()
        self.max_workers = max(1, int(max_workers))

    # -- auth ------------------------------------------------------------

    def _auth_context(self, options: LookupOptions, user: UserContext) -> AuthRequestContext:
        return AuthRequestContext(
            user_id=user.user_id,
            username=user.username,
            oauth_client_id=options.oauth_client_id,
            oauth_client_secret=options.oauth_client_secret,
            oauth_redirect_host=options.oauth_redirect_host,
        )

    def auth_required_result(self, entities: list[Any], options: LookupOptions, user: UserContext) -> dict[str, Any]:
        request = self.auth.create_auth_request(self._auth_context(options, user))
        entity = entities[0] if entities else {"value": "", "type": "custom"}
        return {
            "entity": entity,
            "isVolatile": True,
            "data": {
                "summary": [AUTH_REQUIRED_SUMMARY],
                "details": {
                    "authRequired": True,
                    "authUrl": request["authUrl"],
                    "stateToken": request["stateToken"],
                    "userId": user.user_id,
                },
            },
        }

    def open_provider(self, options: LookupOptions, user: UserContext) -> StorageProvider | None:
        """Provider bound to the right access token, or None if OAuth is needed.

        Without OAuth a service-account token is minted (or refreshed) here,
        so each call gets one that is currently valid. Raises ProviderError
        if Google refuses the service account.
        """
        if options.oauth_enabled:
            if not self.auth.is_session_valid(user.user_id):
                return None
            token = self.auth.get_session(user.user_id).access_token or ""
        elif options.service_account_key:
            token = self.service_tokens.access_token(options.service_account_key)
        else:
            token = options.service_access_token
        return self.provider_factory(token)

    # -- lookup ----------------------------------------------------------

    def search(self, entities: list[Any], options: LookupOptions, user: UserContext) -> list[dict[str, Any]]:
        errors = validate_options(options)
        if errors:
            raise ValidationError(errors)

        try:
            provider = self.open_provider(options, user)
        except ProviderError as exc:
            record = ErrorRecord.from_exception("provider_auth", exc, message="Failed to authorize Google Drive access")
            raise SearchError(record, detail="Could not authorize the service account") from exc
        if provider is None:
            log.info("No valid OAuth session for user %s; requesting authorization", user.user_id)
            return [self.auth_required_result(entities, options, user)]

        scope = build_scope(options.search_scope, options.drive_id)
        results: list[dict[str, Any]] = []
        for entity in entities:
            value = entity_value(entity)
            try:
                files = provider.list_files(full_text_query(value), scope)
            except ProviderError as exc:
                if exc.is_auth_error and options.oauth_enabled:
                    log.info("Drive rejected the session for user %s; re-authorization required", user.user_id)
                    self.auth.delete_session(user.user_id)
                    return [self.auth_required_result(entities, options, user)]
                log.error("Failed to list files for %r: %s", value, exc)
                record = ErrorRecord.from_exception("provider_query", exc, message="Failed to list files")
                raise SearchError(record, detail=f"Failed to search Google Drive for '{value}'") from exc

            if not files:
                log.debug("No files found for %r", value)
                results.append({"entity": entity, "data": None})
                continue
            results.append(
                {
                    "entity": entity,
                    "data": {
                        "summary": summary_tags(files),
                        "details": self._build_details(provider, value, files, options),
                    },
                }
            )
        return results

    def _build_details(
        self,
        provider: StorageProvider,
        value: str,
        files: list[dict[str, Any]],
        options: LookupOptions,
    ) -> dict[str, Any]:
        search_id = str(uuid.uuid4())
        search_term = normalize_search_term(value)
        workers = min(self.max_workers, len(files))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="gdrive-file") as pool:
            prepared = list(
                pool.map(
                    lambda pair: self._prepare_file(provider, pair[1], pair[0], options),
                    enumerate(files),
                )
            )

        total = 0
        out: list[dict[str, Any]] = []
        for index, (record, eager, text) in enumerate(prepared):
            if eager:
                record, total = process_file(record, text, search_term, search_id, total + 1)
            else:
                record["_content"] = PENDING_CONTENT
            record["index"] = index
            out.append(record)

        return {
            "files": out,
            "searchId": search_id,
            "searchTerm": search_term,
            "totalMatchCount": total,
        }

    def _prepare_file(
        self,
        provider: StorageProvider,
        file: dict[str, Any],
        index: int,
        options: LookupOptions,
    ) -> tuple[dict[str, Any], bool, str | None]:
        mime = str(file.get("mimeType") or "")
        record = dict(file)
        record["_icon"] = MIME_TYPE_ICONS.get(mime, DEFAULT_FILE_ICON)
        record["_typeForUrl"] = type_for_url(mime)

        link = file.get("thumbnailLink")
        if options.show_thumbnails and file.get("hasThumbnail") and link:
            try:
                data = provider.download_thumbnail(str(link))
                record["_thumbnailBase64"] = THUMBNAIL_DATA_URI_PREFIX + base64.b64encode(data).decode("ascii")
            except Exception as exc:
                log.warning("Error getting thumbnail for file %s: %s", file.get("id"), exc)
                record["_thumbnailError"] = ErrorRecord.from_exception(
                    "thumbnail", exc, message="Failed to download thumbnail"
                ).to_dict()

        eager = index < options.eager_content_files
        text = None
        if eager:
            try:
                text = fetch_file_text(provider, file)
            except Exception as exc:
                log.warning("Error getting content for file %s: %s", file.get("id"), exc)
                record["_contentError"] = ErrorRecord.from_exception(
                    "file_content", exc, message="Failed to get File Content"
                ).to_dict()
        return record, eager, text
