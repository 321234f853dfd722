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

"""Byte-stream decoding for streamed inference output.

The engine hands us raw bytes in arbitrary slices, so a multi-byte UTF-8
character can be split across two callbacks. StreamDecoder holds the
incomplete tail (at most 3 bytes) until the next slice arrives.

ThinkingFilter runs on the decoded text and separates <think>...</think>
sections from the visible answer.
"""

import codecs
import logging
from typing import List

logger = logging.getLogger(__name__)

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


class StreamDecoder:
    """Incremental UTF-8 decoder with carry-over of incomplete sequences.

    Invalid bytes are replaced with U+FFFD and decoding continues; the stream
    is never aborted. Use one decoder per model invocation.
    """

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="strict")
        self._anomalies = 0

    @property
    def pending_bytes(self) -> int:
        """Length of the carry-over buffer (0-3 for UTF-8)."""
        buffered, _ = self._decoder.getstate()
        return len(buffered)

    @property
    def anomalies(self) -> int:
        """Number of undecodable byte sequences replaced so far.

        A U+FFFD the model itself produced is text, not an anomaly.
        """
        return self._anomalies

    def feed(self, raw: bytes) -> str:
        """Decode the next raw slice, returning only confirmed-valid text."""
        parts: List[str] = []
        data = raw
        replaced = 0
        while data:
            try:
                parts.append(self._decoder.decode(data, final=False))
                break
            except UnicodeDecodeError as e:
                # e.object holds the carry plus this slice; the carry was not consumed
                parts.append(e.object[: e.start].decode(self.encoding))
                parts.append("\ufffd")
                replaced += 1
                self._decoder.reset()
                data = e.object[e.end :]

        if replaced:
            self._anomalies += replaced
            logger.debug(f"Replaced {replaced} undecodable byte sequence(s) in stream")
        return "".join(parts)

    def finish(self) -> str:
        """End the stream. A leftover partial sequence is dropped, not surfaced."""
        pending = self.pending_bytes
        if pending:
            logger.debug(f"Discarding {pending} trailing byte(s) of an incomplete sequence")
        self._decoder.reset()
        return ""


class ThinkingFilter:
    """Split streamed text into visible output and <think> sections.

    A tag may be split across chunks; a tail that could be the start of a tag
    is held back until the next chunk decides it.
    """

    def __init__(self) -> None:
        self.sections: List[str] = []
        self._current: List[str] = []
        self._in_thinking = False
        self._partial = ""

    @property
    def in_thinking(self) -> bool:
        return self._in_thinking

    def feed(self, text: str) -> str:
        """Consume decoded text and return the visible part."""
        remaining = self._partial + text
        self._partial = ""
        visible: List[str] = []

        while remaining:
            if self._in_thinking:
                end = remaining.find(THINK_CLOSE)
                if end == -1:
                    held = _partial_tag_suffix(remaining, THINK_CLOSE)
                    self._current.append(remaining[: len(remaining) - len(held)])
                    self._partial = held
                    break
                self._current.append(remaining[:end])
                self._close_section()
                remaining = remaining[end + len(THINK_CLOSE) :]
            else:
                start = remaining.find(THINK_OPEN)
                if start == -1:
                    held = _partial_tag_suffix(remaining, THINK_OPEN)
                    visible.append(remaining[: len(remaining) - len(held)])
                    self._partial = held
                    break
                visible.append(remaining[:start])
                self._in_thinking = True
                remaining = remaining[start + len(THINK_OPEN) :]

        return "".join(visible)

    def flush(self) -> str:
        """Release anything held back at end of stream."""
        held, self._partial = self._partial, ""
        if self._in_thinking:
            self._current.append(held)
            self._close_section()
            self._in_thinking = False
            return ""
        return held

    def _close_section(self) -> None:
        section = "".join(self._current)
        self._current = []
        self._in_thinking = False
        if section.strip():
            self.sections.append(section)


def _partial_tag_suffix(text: str, tag: str) -> str:
    """Longest suffix of text that is a proper prefix of tag."""
    for size in range(min(len(tag) - 1, len(text)), 0, -1):
        if tag.startswith(text[-size:]):
            return text[-size:]
    return ""
