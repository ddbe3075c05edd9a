from relaychat.codec import decode_line, encode_line, strip_eol


def test_encode_line_appends_newline() -> None:
    assert encode_line("MESSAGE alice: hi") == b"MESSAGE alice: hi\n"


def test_decode_line_strips_lf_and_crlf() -> None:
    assert decode_line(b"alice\n") == "alice"
    assert decode_line(b"alice\r\n") == "alice"
    assert decode_line(b"alice") == "alice"


def test_decode_line_keeps_inner_whitespace() -> None:
    assert decode_line(b"  bob>> hi there \n") == "  bob>> hi there "


def test_decode_line_replaces_invalid_utf8() -> None:
    assert decode_line(b"caf\xff\n") == "caf�"


def test_decode_line_utf8() -> None:
    assert decode_line("héllo ✓\n".encode("utf-8")) == "héllo ✓"


def test_strip_eol_only_removes_one_line_ending() -> None:
    assert strip_eol("a\n\n") == "a\n"
