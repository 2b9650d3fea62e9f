import re
from datetime import datetime, timezone

# Files that never count toward "real" churn
EXCLUDED_EXTENSIONS = [
    ".lock",
    ".min.js",
    ".min.css",
    ".map",
    ".designer.vb",
    ".designer.cs",
    ".resx",
    ".g.cs",
    ".g.vb",
]

EXCLUDED_FILENAMES = [
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "composer.lock",
    "gemfile.lock",
    "packages.lock.json",
    "poetry.lock",
]

EXCLUDED_DIRECTORIES = [
    "bin/",
    "obj/",
    "packages/",
    "node_modules/",
    ".vs/",
    ".vscode/",
    ".idea/",
    "TestResults/",
    "Debug/",
    "Release/",
]

EXCLUDED_PATTERNS = [re.compile(r"Migrations/.*\.(cs|vb)$", re.IGNORECASE)]

CONFIG_EXTENSIONS = [
    ".json",
    ".xml",
    ".config",
    ".yml",
    ".yaml",
    ".env",
    ".ini",
    ".toml",
]

BINARY_EXTENSIONS = [
    ".png", ".jpg", ".jpeg", ".gif", ".ico", ".bmp", ".webp",
    ".zip", ".tar", ".gz", ".rar", ".7z",
    ".exe", ".dll", ".so", ".dylib",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx",
    ".ttf", ".otf", ".woff", ".woff2", ".eot",
    ".mp3", ".mp4", ".avi", ".mov", ".wav",
    ".psd", ".ai", ".sketch",
]

TEST_FILE_PATTERN = re.compile(r"test|spec", re.IGNORECASE)


def _normalize_path(file_path: str) -> str:
    return file_path.replace("\\", "/")


def get_file_extension(file_path: str) -> str:
    filename = _normalize_path(file_path).split("/")[-1].lower()
    return filename[filename.rfind("."):] if "." in filename else ""


def is_file_excluded(file_path: str) -> bool:
    """True for build artifacts, lockfiles and generated code"""
    normalized = _normalize_path(file_path)
    filename = normalized.split("/")[-1].lower()

    if filename in EXCLUDED_FILENAMES:
        return True

    if any(filename.endswith(ext) for ext in EXCLUDED_EXTENSIONS):
        return True

    for directory in EXCLUDED_DIRECTORIES:
        if normalized.startswith(directory) or f"/{directory}" in normalized:
            return True

    return any(pattern.search(normalized) for pattern in EXCLUDED_PATTERNS)


def is_config_file(file_path: str) -> bool:
    lower_path = file_path.lower()
    return any(lower_path.endswith(ext) for ext in CONFIG_EXTENSIONS)


def is_binary_file(file_path: str) -> bool:
    return get_file_extension(file_path) in BINARY_EXTENSIONS


def is_test_file(file_path: str) -> bool:
    return bool(TEST_FILE_PATTERN.search(file_path))


def parse_timestamp(value) -> datetime | None:
    """Parse a provider ISO-8601 timestamp into a naive UTC datetime"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        # Azure DevOps can report 7 fractional digits
        text = re.sub(r"(\.\d{6})\d+", r"\1", text)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def format_timestamp(value: datetime) -> str:
    """Format a datetime as the UTC ISO-8601 'Z' form the provider APIs accept"""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")
