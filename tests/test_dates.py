"""Tests for localized date parsing."""

from datetime import datetime, timezone

import pytest

from aidwatch.crawler.parsers.dates import format_spanish_date, parse_localized_date


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestParseLocalizedDate:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("15 de enero, 2024", utc(2024, 1, 15)),
            ("15 de enero de 2024", utc(2024, 1, 15)),
            ("3 de Setiembre del 2023", utc(2023, 9, 3)),
            ("20 de marzo, 2024 10:30", utc(2024, 3, 20, 10, 30)),
            ("1 de abr. 2022", utc(2022, 4, 1)),
            ("March 20, 2024", utc(2024, 3, 20)),
            ("20 March 2024", utc(2024, 3, 20)),
            ("20/03/2024", utc(2024, 3, 20)),
            ("2024-03-20", utc(2024, 3, 20)),
            ("2024-03-20T12:00:00Z", utc(2024, 3, 20, 12)),
        ],
    )
    def test_supported_formats(self, text, expected):
        assert parse_localized_date(text) == expected

    def test_iso_offset_is_converted_to_utc(self):
        assert parse_localized_date("2024-03-20T12:00:00+02:00") == utc(2024, 3, 20, 10)

    def test_rfc2822(self):
        assert parse_localized_date("Wed, 20 Mar 2024 10:00:00 GMT") == utc(2024, 3, 20, 10)

    @pytest.mark.parametrize("text", [None, "", "   ", "sin fecha", "31 de febrero, 2024", "45/13/2024"])
    def test_unparseable_returns_none(self, text):
        assert parse_localized_date(text) is None


def test_format_spanish_date():
    assert format_spanish_date(utc(2024, 1, 15, 23, 0)) == "15 de enero, 2024"
