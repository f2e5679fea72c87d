"""Unit tests for the prepl (EDN) and nREPL (bencode) codecs."""

import pytest

from telegram_repl_bot.repl import bencode
from telegram_repl_bot.repl.codec import BencodeCodec, EdnCodec, get_codec
from telegram_repl_bot.repl.edn import cleanse, loads
from telegram_repl_bot.repl.errors import DecodeError
from telegram_repl_bot.repl.models import ReplRequest
from telegram_repl_bot.repl.normalize import render

OUT_LINE = b'{:tag :out :val "hello\\n"}\n'
RET_LINE = b'{:tag :ret :val "42" :ns "user" :ms 1 :form "(+ 40 2)"}\n'


class TestEdnHelpers:
    """Tests for EDN cleansing and parsing."""

    def test_cleanse_strips_reader_tags(self):
        assert cleanse("#:clojure.error{:phase :execution}") == "{:phase :execution}"
        assert cleanse("#object[Foo]") == "[Foo]"

    def test_cleanse_requotes_hex(self):
        assert cleanse("[Foo 0x1b6d3586]") == '[Foo \\"0x1b6d3586\\"]'

    def test_cleanse_leaves_plain_text(self):
        assert cleanse('{:tag :ret :val "3"}') == '{:tag :ret :val "3"}'

    def test_loads_plain_values(self):
        """Keywords become names, collections become dicts and lists."""
        assert loads('{:tag :ret :val "3" :data [1 #{:a} (x)]}') == {
            "tag": "ret",
            "val": "3",
            "data": [1, ["a"], ["x"]],
        }

    def test_loads_invalid(self):
        with pytest.raises(DecodeError):
            loads('{:tag :ret :val "oops"')

    @pytest.mark.parametrize("text", ['#error {:cause "inner"}', "#user.R{:a 1}"])
    def test_loads_unknown_tag(self, text):
        with pytest.raises(DecodeError):
            loads(text)


class TestEdnCodec:
    """Tests for the newline-delimited EDN codec."""

    def test_encode_appends_newline(self):
        assert EdnCodec().encode(ReplRequest(code="(+ 1 2)")) == b"(+ 1 2)\n"

    def test_decode_records_in_order(self):
        records = EdnCodec().decode(OUT_LINE + RET_LINE)
        assert [r.tag for r in records] == ["out", "ret"]
        assert records[0].out == "hello\n"
        assert records[1].namespace == "user"
        assert records[1].value == "42"
        assert records[1].ms == 1
        assert records[1].form == "(+ 40 2)"
        assert render(records) == "hello\nuser=> 42"

    def test_malformed_line_is_skipped(self):
        """One bad line does not lose the others, and order is kept."""
        bad = b'{:tag :ret :val "oops"\n'
        records = EdnCodec().decode(OUT_LINE + bad + RET_LINE)
        assert [r.tag for r in records] == ["out", "ret"]

    def test_blank_lines_are_skipped(self):
        records = EdnCodec().decode(b"\n\n" + RET_LINE + b"\n")
        assert len(records) == 1

    def test_tagged_literal_line_is_skipped(self):
        tagged = b'{:tag :ret :val #user.R{:a 1} :ns "user"}\n'
        records = EdnCodec().decode(OUT_LINE + tagged + RET_LINE)
        assert [r.tag for r in records] == ["out", "ret"]
        assert records[1].value == "42"

    def test_line_with_wrong_field_type_is_skipped(self):
        """A line that parses but does not fit a record is skipped like a bad one."""
        odd = b'{:tag :ret :val "1" :ns "user" :ms 1.5 :form "1"}\n'
        records = EdnCodec().decode(odd + RET_LINE)
        assert [r.value for r in records] == ["42"]

    def test_only_line_with_wrong_field_type(self):
        with pytest.raises(DecodeError):
            EdnCodec().decode(b'{:tag :ret :val "1" :exception {:a 1}}\n')

    def test_has_no_session(self):
        codec = EdnCodec()
        assert codec.session_request() is None
        assert codec.init_commands

    def test_all_lines_malformed(self):
        with pytest.raises(DecodeError):
            EdnCodec().decode(b"{:tag\n{:val\n")

    def test_exception_value_with_object_and_hex(self):
        """Printed exceptions holding #object and hex literals still render."""
        line = (
            b'{:tag :ret :val "{:cause \\"boom\\" :data #object[Foo 0x12ab \\"x\\"]}" '
            b':ns "user" :exception true}\n'
        )
        records = EdnCodec().decode(line)
        assert records[0].exception is True
        assert render(records) == "boom"

    def test_round_trip(self):
        """An encoded request and a synthetic reply keep namespace and value."""
        codec = EdnCodec()
        request = ReplRequest(code="(+ 40 2)")
        assert codec.encode(request).decode().strip() == request.code
        [record] = codec.decode(RET_LINE)
        assert (record.namespace, record.value) == ("user", "42")

    def test_launch_args(self):
        args = EdnCodec().launch_args("clojure", "localhost", 5555)
        assert args == [
            "clojure",
            '-J-Dclojure.server.jvm={:address "localhost" :port 5555 '
            ":accept clojure.core.server/io-prepl}",
        ]


class TestBencodeCodec:
    """Tests for the nREPL codec."""

    def test_encode(self):
        payload = BencodeCodec().encode(ReplRequest(code="(+ 1 2)"))
        assert bencode.decode_one(payload)[0] == {"op": "eval", "code": "(+ 1 2)"}

    def test_encode_without_session(self):
        payload = BencodeCodec().encode(ReplRequest(code="(+ 1 2)"))
        assert "session" not in bencode.decode_one(payload)[0]

    def test_clone_and_bind_session(self):
        """Once bound, every request carries the cloned session id."""
        codec = BencodeCodec()
        clone = bencode.decode_one(codec.encode(codec.session_request()))[0]
        assert clone == {"op": "clone"}

        reply = bencode.encode({"new-session": "s-1", "session": "s-0", "status": ["done"]})
        assert codec.bind_session(codec.decode(reply)) == "s-1"

        payload = codec.encode(ReplRequest(code="(in-ns 'scratch)"))
        assert bencode.decode_one(payload)[0] == {
            "op": "eval",
            "code": "(in-ns 'scratch)",
            "session": "s-1",
        }

    def test_bind_session_without_new_session(self):
        codec = BencodeCodec()
        with pytest.raises(DecodeError):
            codec.bind_session(codec.decode(bencode.encode({"status": ["done"]})))
        assert codec.session is None

    def test_deeply_nested_message(self):
        with pytest.raises(DecodeError):
            BencodeCodec().decode(b"l" * 5000 + b"e" * 5000)

    def test_decode_message_sequence(self):
        buffer = (
            bencode.encode({"out": "hi\n", "session": "s1"})
            + bencode.encode({"ns": "user", "value": "3", "session": "s1"})
            + bencode.encode({"status": ["done"], "session": "s1"})
        )
        records = BencodeCodec().decode(buffer)
        assert [r.tag for r in records] == ["out", "ret", "status"]
        assert records[1].session == "s1"
        assert render(records) == "hi\nuser=> 3"

    def test_eval_error(self):
        buffer = bencode.encode(
            {
                "ex": "class java.lang.ArithmeticException",
                "root-ex": "class java.lang.ArithmeticException",
                "status": ["eval-error"],
            }
        ) + bencode.encode({"status": ["done"]})
        records = BencodeCodec().decode(buffer)
        assert records[0].has_error
        assert render(records) == "eval-error: class java.lang.ArithmeticException"

    def test_truncated_tail_is_dropped(self):
        buffer = bencode.encode({"ns": "user", "value": "3"}) + b"d6:status"
        records = BencodeCodec().decode(buffer)
        assert len(records) == 1

    def test_truncated_only_message(self):
        with pytest.raises(DecodeError):
            BencodeCodec().decode(b"d5:value")

    def test_strings_are_not_cleansed(self):
        """Bencode is length-framed, so printed values pass through untouched."""
        buffer = bencode.encode({"ns": "user", "value": "#object[Foo 0x12ab]"})
        [record] = BencodeCodec().decode(buffer)
        assert record.value == "#object[Foo 0x12ab]"

    def test_launch_args(self):
        assert BencodeCodec().launch_args("lein", "0.0.0.0", 7888) == [
            "lein", "repl", ":headless", ":host", "0.0.0.0", ":port", "7888",
        ]


class TestGetCodec:
    """Tests for codec lookup."""

    def test_known(self):
        assert isinstance(get_codec("prepl"), EdnCodec)
        assert isinstance(get_codec("nrepl"), BencodeCodec)

    def test_unknown(self):
        with pytest.raises(ValueError, match="socket"):
            get_codec("socket")
