"""Drive settings: tree limits, trash retention, upload staging."""

from server.settings.components import config

# Deepest allowed folder depth (root folders are at depth 0)
DRIVE_MAX_FOLDER_DEPTH = config('DRIVE_MAX_FOLDER_DEPTH', cast=int, default=20)

# Days a trashed file stays restorable
DRIVE_TRASH_RETENTION_DAYS = config(
    'DRIVE_TRASH_RETENTION_DAYS',
    cast=int,
    default=30,
)

# Upload sessions (sizes in bytes, durations in seconds)
DRIVE_UPLOAD_SESSION_TTL = config(
    'DRIVE_UPLOAD_SESSION_TTL',
    cast=int,
    default=24 * 60 * 60,
)
DRIVE_MULTIPART_THRESHOLD = config(
    'DRIVE_MULTIPART_THRESHOLD',
    cast=int,
    default=5 * 1024 * 1024,
)
DRIVE_MULTIPART_PART_SIZE = config(
    'DRIVE_MULTIPART_PART_SIZE',
    cast=int,
    default=5 * 1024 * 1024,
)
DRIVE_MULTIPART_MAX_PARTS = config(
    'DRIVE_MULTIPART_MAX_PARTS',
    cast=int,
    default=10000,
)
DRIVE_MAX_UPLOAD_SIZE = config(
    'DRIVE_MAX_UPLOAD_SIZE',
    cast=int,
    default=5 * 1024 ** 4,
)

# Download locator lifetime
DRIVE_DOWNLOAD_URL_TTL = config('DRIVE_DOWNLOAD_URL_TTL', cast=int, default=3600)

# Background sweep
DRIVE_SWEEP_INTERVAL = config('DRIVE_SWEEP_INTERVAL', cast=int, default=3600)
DRIVE_PURGE_BATCH_SIZE = config('DRIVE_PURGE_BATCH_SIZE', cast=int, default=100)
