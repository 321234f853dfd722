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

"""Tests for streamed UTF-8 decoding and <think> filtering."""

from hypothesis import given, settings, strategies as st

from kestrel.agent.stream_decoder import StreamDecoder, ThinkingFilter


def decode_chunks(chunks):
    decoder = StreamDecoder()
    return "".join(decoder.feed(chunk) for chunk in chunks) + decoder.finish()


@st.composite
def chunked_text(draw):
    """A text and its UTF-8 encoding cut at arbitrary byte offsets."""
    text = draw(st.text(max_size=200))
    data = text.encode("utf-8")
    cuts = sorted(draw(st.lists(st.integers(min_value=0, max_value=len(data)), max_size=20)))
    bounds = [0, *cuts, len(data)]
    chunks = [data[start:end] for start, end in zip(bounds, bounds[1:])]
    return text, chunks


class TestStreamDecoder:
    """Tests for StreamDecoder."""

    def test_ascii_passthrough(self):
        decoder = StreamDecoder()
        assert decoder.feed(b"hello") == "hello"
        assert decoder.pending_bytes == 0

    def test_multibyte_split_is_carried(self):
        """A character split across slices is emitted once it is complete."""
        decoder = StreamDecoder()
        data = "日".encode("utf-8")

        assert decoder.feed(data[:2]) == ""
        assert decoder.pending_bytes == 2
        assert decoder.feed(data[2:]) == "日"
        assert decoder.pending_bytes == 0

    def test_four_byte_character_split_three_ways(self):
        decoder = StreamDecoder()
        data = "😀".encode("utf-8")

        out = decoder.feed(data[:1]) + decoder.feed(data[1:3]) + decoder.feed(data[3:])
        assert out == "😀"

    def test_invalid_bytes_are_replaced_and_counted(self):
        decoder = StreamDecoder()
        assert decoder.feed(b"abc\xffdef") == "abc\ufffddef"
        assert decoder.anomalies == 1

    def test_emitted_replacement_character_is_not_an_anomaly(self):
        decoder = StreamDecoder()
        assert decoder.feed("a\ufffdb".encode("utf-8")) == "a\ufffdb"
        assert decoder.anomalies == 0

    def test_invalid_sequence_spanning_slices(self):
        """A carried lead byte followed by a non-continuation byte is one anomaly."""
        decoder = StreamDecoder()
        assert decoder.feed(b"ok\xe6\x97") == "ok"
        assert decoder.feed(b"x\xff\xfey") == "\ufffdx\ufffd\ufffdy"
        assert decoder.anomalies == 3
        assert decoder.pending_bytes == 0

    def test_empty_slice_is_noop(self):
        decoder = StreamDecoder()
        assert decoder.feed(b"") == ""
        assert decoder.anomalies == 0

    def test_finish_drops_incomplete_tail(self):
        """A truncated final sequence is discarded, not surfaced as U+FFFD."""
        assert decode_chunks([b"ok", "日".encode("utf-8")[:2]]) == "ok"

    def test_finish_resets_decoder(self):
        decoder = StreamDecoder()
        decoder.feed(b"\xe6\x97")
        assert decoder.finish() == ""
        assert decoder.pending_bytes == 0
        assert decoder.feed(b"x") == "x"

    @given(chunked_text())
    @settings(max_examples=200)
    def test_rechunking_never_changes_text(self, case):
        """Any split of valid UTF-8 decodes to the original text."""
        text, chunks = case
        assert decode_chunks(chunks) == text


class TestThinkingFilter:
    """Tests for ThinkingFilter."""

    def test_no_tags(self):
        f = ThinkingFilter()
        assert f.feed("plain answer") == "plain answer"
        assert f.flush() == ""
        assert f.sections == []

    def test_section_removed_from_visible_text(self):
        f = ThinkingFilter()
        assert f.feed("a<think>reasoning</think>b") == "ab"
        assert f.sections == ["reasoning"]
        assert not f.in_thinking

    def test_tags_split_across_chunks(self):
        f = ThinkingFilter()
        visible = f.feed("hello <th")
        visible += f.feed("ink>secret</th")
        assert f.in_thinking
        visible += f.feed("ink>world")
        visible += f.flush()

        assert visible == "hello world"
        assert f.sections == ["secret"]

    def test_unterminated_section_is_closed_on_flush(self):
        f = ThinkingFilter()
        assert f.feed("<think>still thinking") == ""
        assert f.flush() == ""
        assert f.sections == ["still thinking"]

    def test_held_tag_prefix_is_released_on_flush(self):
        f = ThinkingFilter()
        assert f.feed("a <") == "a "
        assert f.flush() == "<"

    def test_blank_sections_are_not_recorded(self):
        f = ThinkingFilter()
        assert f.feed("<think>  </think>answer") == "answer"
        assert f.sections == []

    @given(st.text(alphabet="ab<>/think", max_size=60), st.integers(min_value=1, max_value=7))
    @settings(max_examples=200)
    def test_chunk_size_does_not_change_result(self, text, size):
        whole = ThinkingFilter()
        expected = whole.feed(text) + whole.flush()

        split = ThinkingFilter()
        got = "".join(split.feed(text[i : i + size]) for i in range(0, len(text), size))
        got += split.flush()

        assert got == expected
        assert split.sections == whole.sections
