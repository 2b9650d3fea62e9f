from .diff import parse_diff, is_comment_only_change, extract_code_chunks, detect_copy_paste, added_lines
from .utils import (
    is_file_excluded,
    is_config_file,
    is_binary_file,
    is_test_file,
    parse_timestamp,
    format_timestamp,
)

__all__ = [
    "parse_diff",
    "is_comment_only_change",
    "extract_code_chunks",
    "detect_copy_paste",
    "added_lines",
    "is_file_excluded",
    "is_config_file",
    "is_binary_file",
    "is_test_file",
    "parse_timestamp",
    "format_timestamp",
]
