"""Tests for report CSV parsing, partitioning and merging."""
import pytest

import dwd_csv

REPORT = (
    "surface observations;height of ceiling;horizontal visibility\r\n"
    "Parameterbeschreibung;m;km\r\n"
    "Datum;Uhrzeit;Wert\r\n"
    "31.12.19;23:00;5\r\n"
    "01.01.20;00:00;6\r\n"
    "01.01.20;01:00;7\r\n"
)


class TestParseSerialize:
    def test_parse_splits_lines_then_fields(self):
        table = dwd_csv.parse("a;b\r\nc;d;e\nf")

        assert table == [["a", "b"], ["c", "d", "e"], ["f"]]

    def test_serialize_round_trips_normalised_text(self):
        text = "H1;H2\nH3;x\nH4;y\n01.01.20;5\n02.01.20;6"

        assert dwd_csv.serialize(dwd_csv.parse(text)) == text

    def test_round_trip_with_crlf_normalises_line_endings(self):
        assert dwd_csv.serialize(dwd_csv.parse(REPORT)) == REPORT.replace("\r\n", "\n")

    def test_custom_delimiter(self):
        table = dwd_csv.parse("a,b\n1,2", ",")

        assert dwd_csv.serialize(table, ",") == "a,b\n1,2"


class TestPartitionDates:
    def test_distinct_dates_in_order(self):
        table = dwd_csv.parse(REPORT)

        assert dwd_csv.partition_dates(table) == ["20191231", "20200101"]

    def test_skips_header_blank_and_invalid_rows(self):
        table = dwd_csv.parse("01.01.20;h\n02.01.20;h\n03.01.20;h\nnot a date;1\n\n05.01.2020;2\n")

        assert dwd_csv.partition_dates(table) == ["20200105"]

    def test_partition_token_formats_two_digit_year(self):
        assert dwd_csv.partition_token("20200101") == "01.01.20"

    def test_four_digit_year_below_1000_keeps_eight_digit_key(self):
        table = dwd_csv.parse("h\nh\nh\n01.01.0020;1\n")

        assert dwd_csv.partition_dates(table) == ["00200101"]
        assert dwd_csv.partition_token("00200101") == "01.01.20"

    @pytest.mark.parametrize("date_string", ["200101", "2020-01-01", ""])
    def test_partition_token_rejects_malformed_key(self, date_string):
        with pytest.raises(ValueError):
            dwd_csv.partition_token(date_string)


class TestPartitionTable:
    def test_keeps_header_and_matching_rows(self):
        table = dwd_csv.parse(REPORT)

        result = dwd_csv.partition_table(table, "01.01.20")

        assert result[:3] == table[:3]
        assert result[3:] == [["01.01.20", "00:00", "6"], ["01.01.20", "01:00", "7"]]


class TestMerge:
    def test_accumulates_without_deduplication(self):
        """Incoming matching rows come first, then the existing rows, duplicates kept."""
        existing = "H1\nH2\nH3\n01.01.20,5"
        incoming = "H1\nH2\nH3\n01.01.20,5\n01.01.20,6"

        merged = dwd_csv.parse(dwd_csv.merge(existing, incoming, "01.01.20", ","), ",")

        assert merged[:3] == [["H1"], ["H2"], ["H3"]]
        assert merged[3:] == [["01.01.20", "5"], ["01.01.20", "6"], ["01.01.20", "5"]]

    def test_header_always_taken_from_existing(self):
        existing = "old1;a\nold2;b\nold3;c\n01.01.20;1"
        incoming = "new1\nnew2\nnew3\n01.01.20;2"

        merged = dwd_csv.parse(dwd_csv.merge(existing, incoming, "01.01.20"))

        assert merged[:3] == [["old1", "a"], ["old2", "b"], ["old3", "c"]]

    def test_ignores_rows_of_other_dates(self):
        existing = "H1\nH2\nH3\n01.01.20;1"
        incoming = REPORT

        merged = dwd_csv.parse(dwd_csv.merge(existing, incoming, "31.12.19"))

        assert merged[3:] == [["31.12.19", "23:00", "5"], ["01.01.20", "1"]]

    def test_deduplicate_drops_rows_already_stored(self):
        existing = "H1\nH2\nH3\n01.01.20,5"
        incoming = "H1\nH2\nH3\n01.01.20,5\n01.01.20,6\n01.01.20,6"

        merged = dwd_csv.parse(dwd_csv.merge(existing, incoming, "01.01.20", ",", deduplicate=True), ",")

        assert merged[3:] == [["01.01.20", "6"], ["01.01.20", "5"]]

    @pytest.mark.parametrize("incoming", ["", "x\ny\nz", REPORT])
    def test_header_rows_equal_existing_for_any_incoming(self, incoming):
        existing = "A;1\nB;2\nC;3"

        merged = dwd_csv.parse(dwd_csv.merge(existing, incoming, "01.01.20"))

        assert merged[:3] == [["A", "1"], ["B", "2"], ["C", "3"]]
