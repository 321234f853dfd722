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

"""Keyword heuristics for "the user wants files written".

Reading or summarizing a file is not a file operation; creating, writing,
saving or generating one is.
"""

from typing import Callable, FrozenSet, List, Sequence, Tuple

STRONG_KEYWORDS: FrozenSet[str] = frozenset(
    {
        # Japanese
        "作成",
        "作って",
        "作る",
        "つくって",
        "つくる",
        "書き込",
        "書いて",
        "書く",
        "かいて",
        "保存",
        "ほぞん",
        "生成",
        "せいせい",
        "出力し",
        "出力ファイル",
        # English
        "create",
        "write",
        "save",
        "generate",
        "make a file",
        "make file",
    }
)

FILE_OPERATION_PHRASES: FrozenSet[str] = frozenset(
    {
        "ファイルに",
        "ファイルを作",
        "ファイルを書",
        "ファイルを生成",
        "ファイルを出力",
        "file to",
        "file and",
        "to file",
        "in file",
        "into file",
        "create file",
        "write file",
        "save file",
        "output file",
        "generate file",
    }
)


def has_file_operation_intent(text: str) -> bool:
    """True if the input asks for a file to be created or written."""
    lowered = text.lower()
    return any(kw in lowered for kw in STRONG_KEYWORDS) or any(
        phrase in lowered for phrase in FILE_OPERATION_PHRASES
    )


def split_io_paths(
    paths: Sequence[str],
    file_intent: bool,
    exists: Callable[[str], bool],
) -> Tuple[List[str], List[str]]:
    """Split mentioned paths into (files to read, output targets).

    Without write intent every path is an input. With intent and two or more
    paths, the first is the input and the rest are output targets. With intent
    and a single path, it is an output target, and also read as input when it
    already exists.
    """
    if not file_intent:
        return list(paths), []
    if len(paths) >= 2:
        return [paths[0]], list(paths[1:])
    return [p for p in paths if exists(p)], list(paths)
