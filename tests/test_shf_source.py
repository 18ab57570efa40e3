from pipelines.config import DEFAULT_ENCODINGS
from pipelines.sources.shf import decode_csv_bytes, parse_shf_csv


def test_parse_skips_header_and_converts_decimal_comma(shf_csv_text):
    rows = parse_shf_csv(shf_csv_text)

    assert len(rows) == 9
    first = rows[1]
    assert first.sequence == 2
    assert first.category == "Nacional"
    assert first.quarter == 2
    assert first.year == 2020
    assert first.index_text == "150.25"


def test_short_lines_are_dropped_without_error():
    text = "header\n1;Nacional;;;2\n2;Nacional;;;2;2020;101,5\n"

    rows = parse_shf_csv(text)

    assert [row.sequence for row in rows] == [2]


def test_blank_and_crlf_lines_are_tolerated():
    text = "header\r\n\r\n1;Estatal;Jalisco;;1;2021;120,00\r\n   \r\n"

    rows = parse_shf_csv(text)

    assert len(rows) == 1
    assert rows[0].state == "Jalisco"
    assert rows[0].index_text == "120.00"


def test_unparseable_numbers_default_to_zero():
    rows = parse_shf_csv("header\nabc;Nacional;;;Q1;2020x;99\n")

    assert rows[0].sequence == 0
    assert rows[0].quarter == 0
    assert rows[0].year == 2020


def test_text_fields_are_normalized():
    rows = parse_shf_csv("header\n1;Municipal;Nuevo Len;Garca;1;2020;100\n")

    assert rows[0].state == "Nuevo León"
    assert rows[0].municipality == "García"


def test_decode_prefers_cp1252_when_clean():
    data = "Consecutivo;Global\n1;Querétaro\n".encode("cp1252")

    text, encoding = decode_csv_bytes(data, DEFAULT_ENCODINGS)

    assert encoding == "cp1252"
    assert "Querétaro" in text


def test_decode_falls_through_to_latin1_on_undefined_cp1252_bytes():
    data = b"abc\x81def"

    text, encoding = decode_csv_bytes(data, DEFAULT_ENCODINGS)

    assert encoding == "latin-1"
    assert text == "abc\x81def"


def test_decode_picks_candidate_with_fewest_replacements():
    data = b"\x81\x81 \xff"

    _, encoding = decode_csv_bytes(data, ("cp1252", "utf-8"))

    assert encoding == "cp1252"


def test_decode_falls_back_to_utf8_when_no_candidate_exists():
    text, encoding = decode_csv_bytes("Año".encode("utf-8"), ("no-such-codec",))

    assert encoding == "utf-8"
    assert text == "Año"
