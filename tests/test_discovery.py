"""
Schema discovery tests: table listing, alias detection and column mapping.
"""

import pytest

from conftest import checkinout_table, make_sdf
from sdfconvert.discovery import COLUMN_VARIANTS, SchemaDiscovery, quote_source_ident
from sdfconvert.models import DiscoveryErrorType, ResolvedSchema, SchemaDiscoveryError


def _discovery(engine, path):
    return SchemaDiscovery(engine.connect(str(path)))


def test_requires_connection():
    with pytest.raises(ValueError):
        SchemaDiscovery(None)


def test_list_tables_sorted_with_counts(tmp_path, engine):
    path = make_sdf(tmp_path / "db.sdf", [
        ("CREATE TABLE zeta (id int)", "INSERT INTO zeta VALUES (?)", [(1,), (2,)]),
        ("CREATE TABLE Alpha (id int)", None, []),
        ("CREATE TABLE beta (id int)", "INSERT INTO beta VALUES (?)", [(1,)]),
    ])

    tables = _discovery(engine, path).list_tables()

    assert [(t.table_name, t.row_count) for t in tables] == [("Alpha", 0), ("beta", 1), ("zeta", 2)]


@pytest.mark.parametrize("table_name", ["CHECKINOUT", "checkinout", "Att_Log", "ATTENDANCE", "t_log"])
def test_alias_detection_is_case_insensitive(tmp_path, engine, table_name):
    path = make_sdf(tmp_path / "db.sdf", [
        ("CREATE TABLE USERINFO (USERID int, NAME nvarchar(40))", None, []),
        (f"CREATE TABLE {table_name} (UserID int, CheckTime datetime)",
         f"INSERT INTO {table_name} VALUES (?, ?)", [(1, "2024-01-01 00:00:00")]),
    ])

    result = _discovery(engine, path).auto_detect()

    assert isinstance(result, ResolvedSchema)
    assert result.table_name == table_name
    assert result.row_count == 1


def test_checkinout_mapping(checkinout_sdf, engine):
    result = _discovery(engine, checkinout_sdf).auto_detect()

    assert isinstance(result, ResolvedSchema)
    mapped = {m.target_column: m.source_column for m in result.mappings}
    assert mapped == {"device_uid": "USERID", "timestamp": "CHECKTIME", "verify_type": "VERIFYCODE"}
    assert result.find_mapping("TIMESTAMP").source_type == "datetime"
    assert result.unmapped_columns == ("CHECKTYPE", "SENSORID")
    assert result.row_count == 3


def test_first_matching_column_wins(tmp_path, engine):
    path = make_sdf(tmp_path / "db.sdf", [
        ("CREATE TABLE T_LOG (emp_id int, user_id int, log_time datetime)", None, []),
    ])

    result = _discovery(engine, path).auto_detect()

    assert result.find_mapping("device_uid").source_column == "emp_id"
    assert "user_id" in result.unmapped_columns
    assert result.find_mapping("verify_type") is None


def test_no_tables(tmp_path, engine):
    path = make_sdf(tmp_path / "empty.sdf", [])

    result = _discovery(engine, path).auto_detect()

    assert isinstance(result, SchemaDiscoveryError)
    assert result.error_type == DiscoveryErrorType.NO_TABLES_FOUND


def test_no_attendance_table_lists_available(tmp_path, engine):
    path = make_sdf(tmp_path / "db.sdf", [
        ("CREATE TABLE USERINFO (USERID int)", "INSERT INTO USERINFO VALUES (?)", [(1,)]),
        ("CREATE TABLE DEPARTMENTS (DEPTID int)", None, []),
    ])

    result = _discovery(engine, path).auto_detect()

    assert result.error_type == DiscoveryErrorType.NO_ATTENDANCE_TABLE_DETECTED
    assert "--table" in result.message
    assert [t.table_name for t in result.available_tables] == ["DEPARTMENTS", "USERINFO"]


def test_required_columns_missing(tmp_path, engine):
    path = make_sdf(tmp_path / "db.sdf", [("CREATE TABLE punches (A int, B int)", None, [])])

    result = _discovery(engine, path).map_columns("punches")

    assert isinstance(result, SchemaDiscoveryError)
    assert result.error_type == DiscoveryErrorType.REQUIRED_COLUMNS_MISSING
    assert result.missing_columns == ("device_uid", "timestamp")
    assert result.actual_columns == ("A", "B")
    assert result.searched_variants["device_uid"] == COLUMN_VARIANTS["device_uid"]
    assert "Available columns: A, B" in result.message


def test_only_timestamp_missing(tmp_path, engine):
    path = make_sdf(tmp_path / "db.sdf", [("CREATE TABLE att_log (USERID int, VERIFYCODE int)", None, [])])

    result = _discovery(engine, path).auto_detect()

    assert result.missing_columns == ("timestamp",)


def test_unknown_table(checkinout_sdf, engine):
    result = _discovery(engine, checkinout_sdf).map_columns("NOPE")

    assert result.error_type == DiscoveryErrorType.TABLE_NOT_FOUND
    assert [t.table_name for t in result.available_tables] == ["CHECKINOUT"]


def test_blank_table_name_rejected(checkinout_sdf, engine):
    with pytest.raises(ValueError):
        _discovery(engine, checkinout_sdf).map_columns("  ")


def test_table_schema_includes_primary_key(tmp_path, engine):
    path = make_sdf(tmp_path / "db.sdf", [
        ("CREATE TABLE USERINFO (USERID int NOT NULL PRIMARY KEY, NAME nvarchar(40), PHOTO image)",
         "INSERT INTO USERINFO VALUES (?, ?, ?)", [(1, "Ann", None)]),
    ])
    discovery = _discovery(engine, path)

    schema = discovery.get_table_schema("USERINFO")

    assert schema.column_names == ["USERID", "NAME", "PHOTO"]
    assert schema.primary_key == ("USERID",)
    assert schema.row_count == 1
    assert schema.columns[0].is_nullable is False
    assert schema.columns[1].data_type == "nvarchar"
    assert schema.columns[1].character_maximum_length == 40
    assert [c.ordinal_position for c in schema.columns] == [1, 2, 3]


def test_find_table_case_insensitive(checkinout_sdf, engine):
    found = _discovery(engine, checkinout_sdf).find_table("checkInOut")
    assert found.table_name == "CHECKINOUT"


def test_quote_source_ident_escapes_brackets():
    assert quote_source_ident("odd]name") == "[odd]]name]"
