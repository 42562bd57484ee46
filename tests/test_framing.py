"""Tests for UTF-8 stream decoding and line framing."""

from __future__ import annotations

import itertools

from localchat.llm.framing import LineFramer, Utf8StreamDecoder

_TEXT = (
    '{"message":{"content":"Hel"},"done":false}\n'
    "\n"
    '{"message":{"content":"lo"},"done":false}\n'
    '   \n'
    '{"done":true}\n'
)


def _frame(fragments: list[str]) -> list[str]:
    framer = LineFramer()
    records: list[str] = []
    for fragment in fragments:
        records.extend(framer.feed(fragment))
    tail = framer.flush()
    if tail is not None:
        records.append(tail)
    return records


class TestLineFramer:
    def test_complete_lines(self):
        records = _frame([_TEXT])
        assert records == [
            '{"message":{"content":"Hel"},"done":false}',
            '{"message":{"content":"lo"},"done":false}',
            '{"done":true}',
        ]

    def test_blank_records_dropped(self):
        framer = LineFramer()
        assert framer.feed("\n  \n\t\n") == []
        assert framer.flush() is None

    def test_partial_record_is_held_back(self):
        framer = LineFramer()
        assert framer.feed('{"a": ') == []
        assert framer.pending == '{"a": '
        assert framer.feed("1}\n") == ['{"a": 1}']
        assert framer.pending == ""

    def test_record_spanning_many_fragments(self):
        framer = LineFramer()
        for piece in ['{"mes', 'sage":', '{"cont', 'ent":"x"}', "}"]:
            assert framer.feed(piece) == []
        assert framer.feed("\n") == ['{"message":{"content":"x"}}']

    def test_flush_returns_unterminated_tail(self):
        framer = LineFramer()
        assert framer.feed('{"a":1}\n{"b":2}') == ['{"a":1}']
        assert framer.flush() == '{"b":2}'
        assert framer.flush() is None

    def test_empty_fragment(self):
        assert LineFramer().feed("") == []

    def test_any_two_way_split_matches_unsplit(self):
        expected = _frame([_TEXT])
        for i in range(len(_TEXT) + 1):
            assert _frame([_TEXT[:i], _TEXT[i:]]) == expected

    def test_any_three_way_split_matches_unsplit(self):
        expected = _frame([_TEXT])
        step = 3
        for i, j in itertools.combinations(range(0, len(_TEXT) + 1, step), 2):
            assert _frame([_TEXT[:i], _TEXT[i:j], _TEXT[j:]]) == expected

    def test_single_character_fragments(self):
        assert _frame(list(_TEXT)) == _frame([_TEXT])


class TestUtf8StreamDecoder:
    def test_split_two_byte_character(self):
        data = "wörld".encode()
        decoder = Utf8StreamDecoder()
        idx = data.index("ö".encode()) + 1  # inside the 2-byte sequence
        first = decoder.decode(data[:idx])
        second = decoder.decode(data[idx:])
        assert "�" not in first + second
        assert first + second == "wörld"

    def test_split_four_byte_character_byte_by_byte(self):
        data = "hi 🌍!".encode()
        decoder = Utf8StreamDecoder()
        out = "".join(decoder.decode(data[i:i + 1]) for i in range(len(data)))
        assert out + decoder.flush() == "hi 🌍!"

    def test_incomplete_sequence_is_buffered(self):
        decoder = Utf8StreamDecoder()
        euro = "€".encode()
        assert decoder.decode(euro[:2]) == ""
        assert decoder.decode(euro[2:]) == "€"

    def test_flush_of_truncated_tail(self):
        decoder = Utf8StreamDecoder()
        decoder.decode("€".encode()[:2])
        assert decoder.flush() == "�"

    def test_flush_when_clean(self):
        decoder = Utf8StreamDecoder()
        assert decoder.decode(b"abc") == "abc"
        assert decoder.flush() == ""
