import os

import pytest

from k8ssummary.cliutil import (
    default_report_name_from_archive,
    normalize_galera_since,
    pull_known_flags,
    truncate_text,
)


def test_pull_known_flags_moves_flags_before_archive():
    argv = ["dump.tar.gz", "-out", "report.html"]
    assert pull_known_flags(argv) == ["-out", "report.html", "dump.tar.gz"]


def test_pull_known_flags_keeps_order_of_flags():
    argv = ["-galera-since", "x", "a.tgz", "-dump", "d", "-nodes", "n"]
    assert pull_known_flags(argv) == ["-galera-since", "x", "-dump", "d", "-nodes", "n", "a.tgz"]


def test_pull_known_flags_trailing_flag_without_value_stays():
    argv = ["a.tgz", "-out"]
    assert pull_known_flags(argv) == ["a.tgz", "-out"]


def test_pull_known_flags_unknown_flags_untouched():
    argv = ["-certified-images=false", "a.tgz"]
    assert pull_known_flags(argv) == argv


def test_normalize_empty_is_empty():
    assert normalize_galera_since("   ") == ""


def test_normalize_drops_zero_fraction():
    assert normalize_galera_since("2023-01-05T03:24:26.000000Z") == "2023-01-05T03:24:26Z"


def test_normalize_converts_offset_to_utc():
    assert normalize_galera_since("2023-01-05T05:24:26+02:00") == normalize_galera_since(
        "2023-01-05T03:24:26Z"
    )


def test_normalize_keeps_nanoseconds():
    result = normalize_galera_since("2023-01-05T03:24:26.123456789Z")
    assert result.endswith(".123456789Z")


@pytest.mark.parametrize(
    "value",
    ["2023-01-05T03:24:26Z", "2023-01-05T03:24:26.5-07:30", "2020-02-29T23:59:59.000100Z"],
)
def test_normalize_is_idempotent(value):
    once = normalize_galera_since(value)
    assert normalize_galera_since(once) == once
    assert once.endswith("Z")


@pytest.mark.parametrize("value", ["yesterday", "2023-01-05", "2023-13-05T03:24:26Z"])
def test_normalize_rejects_invalid(value):
    with pytest.raises(ValueError, match="galera-since"):
        normalize_galera_since(value)


def test_default_report_name_tar_gz():
    name = default_report_name_from_archive(os.path.join("some", "dump.tar.gz"))
    assert name == os.path.join("reports", "dump-summary.html")


def test_default_report_name_tgz_case_insensitive():
    assert default_report_name_from_archive("DUMP.TGZ") == os.path.join("reports", "DUMP-summary.html")


def test_default_report_name_empty_stem():
    assert default_report_name_from_archive(".tar.gz") == os.path.join(
        "reports", "cluster-dump-summary.html"
    )


def test_truncate_short_text_unchanged():
    assert truncate_text(b"hello", 10) == "hello"


def test_truncate_non_positive_limit_keeps_all():
    assert truncate_text(b"hello", 0) == "hello"


def test_truncate_long_text():
    result = truncate_text(b"abcdefghij", 4)
    assert result.startswith("abcd")
    assert result.endswith("… (truncated)\n")
    assert "e" not in result.split("\n")[0]