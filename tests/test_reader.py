import pytest

from evm_warehouse.errors import SourceReadError
from evm_warehouse.sources import ABSENT, NULL, FieldState, JsonlSource
from evm_warehouse.sources.jsonl import lookup


def test_reads_files_in_name_order(tmp_path, write_ndjson):
    write_ndjson(tmp_path, "b.jsonl", [{"n": 3}])
    write_ndjson(tmp_path, "a.json", [{"n": 1}, {"n": 2}])
    write_ndjson(tmp_path, "c.ndjson", [{"n": 4}])
    write_ndjson(tmp_path, "ignored.csv", [{"n": 5}])

    source = JsonlSource(tmp_path, "blocks")

    assert [r.fields["n"] for r in source] == [1, 2, 3, 4]


def test_restartable(tmp_path, write_ndjson):
    write_ndjson(tmp_path, "a.json", [{"n": 1}, {"n": 2}])
    source = JsonlSource(tmp_path, "blocks")

    first = [r.fields for r in source]
    second = [r.fields for r in source]

    assert first == second == [{"n": 1}, {"n": 2}]


def test_skips_blank_lines_and_tracks_location(tmp_path):
    path = tmp_path / "a.json"
    path.write_text('{"n": 1}\n\n   \n{"n": 2}\n')

    records = list(JsonlSource(tmp_path, "blocks"))

    assert [r.line_number for r in records] == [1, 4]
    assert records[1].location == f"{path}:4"


def test_missing_directory(tmp_path):
    with pytest.raises(SourceReadError, match="does not exist"):
        list(JsonlSource(tmp_path / "missing", "blocks"))


def test_malformed_line(tmp_path, write_ndjson):
    write_ndjson(tmp_path, "a.json", [{"n": 1}], raw_lines=["{not json"])

    with pytest.raises(SourceReadError, match="invalid JSON"):
        list(JsonlSource(tmp_path, "blocks"))


def test_non_object_line(tmp_path, write_ndjson):
    write_ndjson(tmp_path, "a.json", [[1, 2]])

    with pytest.raises(SourceReadError, match="expected a JSON object"):
        list(JsonlSource(tmp_path, "blocks"))


def test_big_integers_parsed_exactly(tmp_path, write_ndjson):
    line = '{"value": %d}' % (2**256 - 1)
    write_ndjson(tmp_path, "a.json", [], raw_lines=[line])

    (record,) = list(JsonlSource(tmp_path, "transactions"))

    assert record.fields["value"] == 2**256 - 1


def test_absent_null_present(tmp_path, write_ndjson):
    write_ndjson(tmp_path, "a.json", [{"to": None, "value": 0}])
    (record,) = list(JsonlSource(tmp_path, "transactions"))

    assert record.lookup(("from",)) is ABSENT
    assert record.lookup(("to",)) is NULL

    present = record.lookup(("value",))
    assert present.state == FieldState.PRESENT
    assert present.value == 0
    assert not present.is_missing


def test_lookup_prefers_first_key():
    assert lookup({"type": 2, "tx_type": 1}, ("type", "tx_type")).value == 2
    assert lookup({"tx_type": 1}, ("type", "tx_type")).value == 1
    assert lookup({"type": None, "tx_type": 1}, ("type", "tx_type")) is NULL
