"""
constants.py - Application-wide constants and configuration values.

Centralizes Drive endpoints, MIME tables, auth timings and concurrency
limits so the lookup pipeline and the HTTP surfaces agree on them.
"""

# Application metadata
APP_TITLE = "Google Drive Lookup"
APP_DESCRIPTION = "Google Drive Integration for Entity Searching"

# Google Drive v3 API endpoints
DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
DRIVE_FILES_ENDPOINT = f"{DRIVE_API_BASE}/files"
DRIVE_REQUEST_TIMEOUT = 20
DRIVE_THUMBNAIL_TIMEOUT = 15

# Fields requested for every listed file
DRIVE_FILE_FIELDS = (
    "files(mimeType),files(id),files(name),files(hasThumbnail),"
    "files(thumbnailLink),files(lastModifyingUser(displayName)),"
    "files(lastModifyingUser(photoLink)),files(iconLink)"
)

# Google OAuth2 endpoints
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
OAUTH_TOKEN_TIMEOUT = 20
DRIVE_AUTH_SCOPE = "https://www.googleapis.com/auth/drive.readonly"
OAUTH_REDIRECT_PATH = "/_int/google-drive/auth"

# State tokens (seconds)
STATE_TOKEN_EXPIRATION = 120
EXPIRED_STATE_TOKEN_RETENTION = 3600
STATE_TOKEN_CHECK_PERIOD = STATE_TOKEN_EXPIRATION / 4
STATE_TOKEN_BYTES = 64

# Search scopes
SEARCH_SCOPE_DEFAULT = "default"
SEARCH_SCOPE_DRIVE = "drive"
SEARCH_SCOPE_ALL_DRIVES = "allDrives"
SEARCH_SCOPES = (SEARCH_SCOPE_DEFAULT, SEARCH_SCOPE_DRIVE, SEARCH_SCOPE_ALL_DRIVES)

# Bounded fan-out for per-file thumbnail/content requests
MAX_CONCURRENT_FILE_REQUESTS = 10

# Summary tags shown next to the entity
SUMMARY_TAG_LIMIT = 5

# Content sentinels
PENDING_CONTENT = "useOnMessageFileContentLookup"
NO_CONTENT = "No Content Found"

# Highlight markup
HIGHLIGHT_CLASS = "highlight"

# Transient per-file error messages clear after this many seconds
FILE_ERROR_CLEAR_DELAY = 5.0

# Thumbnail data URI prefix
THUMBNAIL_DATA_URI_PREFIX = "data:image/png;charset=utf-8;base64,"

# Drive MIME type -> display icon
MIME_TYPE_ICONS = {
    "application/vnd.google-apps.audio": "file-audio",
    "application/vnd.google-apps.document": "file-alt",
    "application/vnd.google-apps.drawing": "drawing",
    "application/vnd.google-apps.file": "file",
    "application/vnd.google-apps.folder": "folder",
    "application/vnd.google-apps.form": "form",
    "application/vnd.google-apps.fusiontable": "table",
    "application/vnd.google-apps.map": "map",
    "application/vnd.google-apps.photo": "image",
    "application/vnd.google-apps.presentation": "presentation",
    "application/vnd.google-apps.script": "scroll",
    "application/vnd.google-apps.site": "globe",
    "application/vnd.google-apps.spreadsheet": "file-spreadsheet",
    "application/vnd.google-apps.unknown": "file",
    "application/vnd.google-apps.video": "file-video",
    "application/vnd.google-apps.drive-sdk": "sdk",
    "application/pdf": "file-pdf",
    "text/plain": "file",
}
DEFAULT_FILE_ICON = "file"

# Native Google document types -> exportable MIME type
MIME_EXPORT_TYPES = {
    "application/vnd.google-apps.presentation": "application/vnd.oasis.opendocument.presentation",
    "application/vnd.google-apps.spreadsheet": "text/csv",
    "application/vnd.google-apps.document": "application/vnd.oasis.opendocument.text",
    "application/vnd.google-apps.script": "application/vnd.google-apps.script+json",
}

# Substrings marking MIME types that never carry extractable text
NON_TEXT_MIME_MARKERS = ("image", "jam")

# Page templates for the auth callback server
AUTH_SUCCESS_PAGE = """<!doctype html>
<html><head><title>Google Drive - Authenticated</title></head>
<body><h2>Authentication successful</h2>
<p>You can close this window and return to your search.</p></body></html>
"""

AUTH_EXPIRED_PAGE = """<!doctype html>
<html><head><title>Google Drive - Link Expired</title></head>
<body><h2>Authentication link expired</h2>
<p>This sign-in link is no longer valid. Run your search again to get a new link.</p></body></html>
"""

AUTH_FAILURE_PAGE = """<!doctype html>
<html><head><title>Google Drive - Authentication Failed</title></head>
<body><h2>Authentication failed</h2>
<p>The sign-in request could not be verified. Run your search again to get a new link.</p></body></html>
"""

NOT_FOUND_TEXT = "404 - Not Found"
