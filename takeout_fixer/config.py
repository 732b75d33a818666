"""
Configuration constants for the takeout fixer.
"""
import re
from datetime import date, timedelta

# --- File Type Definitions ---
IMAGE_EXTS = {'.jpg', '.jpeg', '.jpe', '.png', '.gif', '.bmp', '.tif', '.tiff',
              '.webp', '.heic', '.heif', '.dng', '.cr2', '.nef', '.arw'}
VIDEO_EXTS = {'.mp4', '.mov', '.m4v', '.avi', '.wmv', '.flv', '.webm', '.mkv',
              '.3gp', '.mts', '.m2ts', '.mpg', '.mpeg'}
SIDECAR_EXT = '.json'

# Extension to Kind Mapping
# Anything not listed here is still a media candidate, but of kind 'other'
EXT_TO_KIND = {}
for ext in IMAGE_EXTS: EXT_TO_KIND[ext] = 'image'
for ext in VIDEO_EXTS: EXT_TO_KIND[ext] = 'video'

# OS junk that never takes part in matching or copying
IGNORED_FILENAMES = {'desktop.ini', 'thumbs.db', '.ds_store', '.picasa.ini'}

# Takeout JSON files that describe albums or the export itself, not a media file
IGNORED_SIDECAR_NAMES = {
    'metadata.json',
    'shared_album_comments.json',
    'print-subscriptions.json',
    'user-generated-memory-titles.json',
}

# --- Sidecar Naming ---
SIDECAR_MARKER = 'supplemental-metadata'

# "<base>(N).json" -> base, N
DUPLICATE_SIDECAR_RE = re.compile(r'^(?P<base>.*)\((?P<counter>\d+)\)\.json$', re.IGNORECASE)

# Takeout caps sidecar names at 51 characters; 46 of them precede ".json"
MAX_SIDECAR_STEM_LENGTH = 46

# Localized suffixes Takeout appends to edited copies
EDITED_MARKERS = ('-edited', '-bearbeitet', '-modifié', '-modifie', '-editado', '-modificato', '-bewerkt')

# --- Metadata Parsing ---
DATE_TAGS = [
    'EXIF DateTimeOriginal',
    'EXIF DateTimeDigitized',
    'Image DateTime',
]

# Priority: Original -> Encoded -> Tagged
MEDIAINFO_DATE_FIELDS = [
    'recorded_date',
    'encoded_date',
    'tagged_date',
]

MEDIAINFO_LOCATION_FIELDS = [
    'xyz',
    'com_apple_quicktime_location_iso6709',
]

EXIFTOOL_DATE_FIELDS = ['DateTimeOriginal', 'CreateDate', 'CreationDate', 'MediaCreateDate']

# Camera/container defaults that mean "no date was ever set"
PLACEHOLDER_DATES = {
    date(1904, 1, 1),
    date(1970, 1, 1),
    date(1980, 1, 1),
    date(2000, 1, 1),
}
MIN_VALID_YEAR = 1990

# --- Reconciliation ---
# A sidecar this recent on a file with no embedded date looks like an in-flight upload
RECENT_UPLOAD_WINDOW = timedelta(hours=24)

# Only consulted when the keep-close timestamp policy is selected
KEEP_EXISTING_TOLERANCE = timedelta(hours=2)

# --- ExifTool ---
EXIFTOOL_BINARY = 'exiftool'
EXIFTOOL_BASE_ARGS = ['-overwrite_original', '-P', '-q']
EXIFTOOL_DATE_FORMAT = '%Y:%m:%d %H:%M:%S'
EXIFTOOL_TIMEOUT = 300  # seconds, per invocation

IMAGE_DATE_TAGS = ['DateTimeOriginal', 'CreateDate', 'ModifyDate']
VIDEO_DATE_TAGS = ['CreateDate', 'ModifyDate', 'TrackCreateDate', 'TrackModifyDate',
                   'MediaCreateDate', 'MediaModifyDate']

# --- Performance ---
DEFAULT_BATCH_SIZE = 100

# --- Output ---
DEFAULT_DEST_DIRNAME = 'dst'
LOG_FILENAME = 'takeout-fixer.log'
