"""Centralized constants for Bootstrap Agent."""

# Download
MAX_REDIRECTS = 5
DOWNLOAD_CHUNK_SIZE = 64 * 1024
HASH_CHUNK_SIZE = 64 * 1024
UNKNOWN_TOTAL_PROGRESS_STEP = 1024 * 1024
PARTIAL_SUFFIX = ".part"

# Platform tool timeouts (seconds)
ROUTE_PROBE_TIMEOUT = 5
PM_QUERY_TIMEOUT = 20
PM_INSTALL_TIMEOUT = 300
AM_START_TIMEOUT = 20

# Android install plumbing
APK_MIME_TYPE = "application/vnd.android.package-archive"
VIEW_ACTION = "android.intent.action.VIEW"
# FLAG_ACTIVITY_NEW_TASK | FLAG_ACTIVITY_CLEAR_TOP
VIEW_INTENT_FLAGS = 0x10000000 | 0x04000000
PRIVILEGED_UIDS = frozenset({0, 1000, 2000})
