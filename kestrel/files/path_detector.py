# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Detection of file paths mentioned in free-form user input.

Matching is ASCII-only: a path made of non-ASCII characters is not found,
and a path directly followed by non-ASCII text ("src/main.rsを読んで") is cut
at the first non-ASCII character.
"""

import re
from typing import Iterable, List, Optional

from kestrel.config.settings import DEFAULT_DETECT_EXTENSIONS

FILE_PATH_PATTERN = re.compile(
    r"(?:~/|/|\./)?[A-Za-z0-9_\-.]+(?:/[A-Za-z0-9_\-.]+)*\.[A-Za-z0-9]+"
)

_ASCII_LETTER = re.compile(r"[A-Za-z]")


def detect_file_paths(text: str, extensions: Optional[Iterable[str]] = None) -> List[str]:
    """Return path-like tokens in first-seen order, without duplicates.

    Args:
        text: User input
        extensions: Allowed extensions (case-insensitive). None means the
            default list; an empty list disables detection.
    """
    allowed_list = list(DEFAULT_DETECT_EXTENSIONS if extensions is None else extensions)
    if not allowed_list:
        return []
    allowed = {ext.lower() for ext in allowed_list}

    paths: List[str] = []
    seen = set()
    for match in FILE_PATH_PATTERN.finditer(text):
        path = match.group(0)
        # Rejects bare numbers such as "3.5"
        if not _ASCII_LETTER.search(path):
            continue
        ext = path.rsplit(".", 1)[-1]
        # Rejects version-like tokens such as "image1.5"
        if not _ASCII_LETTER.search(ext) or ext.lower() not in allowed:
            continue
        if path not in seen:
            seen.add(path)
            paths.append(path)
    return paths
