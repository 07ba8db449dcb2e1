from __future__ import annotations

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from db_testsets.testset import CallableTestSet, SqlScriptTestSet, split_sql_script


def _scalar(engine: Engine, sql: str):
    with engine.connect() as conn:
        return conn.exec_driver_sql(sql).scalar()


def test_split_on_go_line() -> None:
    parts = split_sql_script("INSERT INTO t VALUES (1)\nGO\nINSERT INTO t VALUES (2)\n")

    assert [p.strip() for p in parts] == ["INSERT INTO t VALUES (1)", "INSERT INTO t VALUES (2)"]


def test_split_without_go_is_single_part() -> None:
    assert split_sql_script("SELECT 1;\nSELECT 2;\n") == ["SELECT 1;\nSELECT 2;\n"]


@pytest.mark.parametrize("separator", ["GO", "Go", "go", "gO"])
def test_split_is_case_insensitive(separator: str) -> None:
    script = f"INSERT INTO t VALUES (1)\r\n{separator}\r\nINSERT INTO t VALUES (2)\r\n"

    parts = split_sql_script(script)

    assert [p.strip() for p in parts] == ["INSERT INTO t VALUES (1)", "INSERT INTO t VALUES (2)"]


def test_split_drops_blank_batches() -> None:
    script = "GO\n\nSELECT 1\nGO\n   \nGO\nGO\nSELECT 2\nGO"

    assert [p.strip() for p in split_sql_script(script)] == ["SELECT 1", "SELECT 2"]


def test_split_ignores_go_inside_words() -> None:
    script = "SELECT 'GOOD' AS category FROM cargo\nGO\nSELECT 2"

    parts = split_sql_script(script)

    assert len(parts) == 2
    assert parts[0] == "SELECT 'GOOD' AS category FROM cargo"


def test_parts_are_numbered_per_script() -> None:
    test_set = SqlScriptTestSet()
    test_set.add_sql_script("a.sql", "SELECT 1\nGO\nSELECT 2")
    test_set.add_sql_script("b.sql", "SELECT 3")

    labels = [part.label() for part in test_set.parts]

    assert labels == ["a.sql#1", "a.sql#2", "b.sql#1"]
    assert test_set.script_names == ["a.sql", "b.sql"]


def test_empty_script_adds_no_parts() -> None:
    test_set = SqlScriptTestSet()
    test_set.add_sql_script("empty.sql", "  \n GO \n")

    assert test_set.parts == ()


def test_apply_executes_parts_in_order(engine: Engine) -> None:
    test_set = SqlScriptTestSet()
    test_set.add_sql_script("1.sql", "DELETE FROM product\nGO\nINSERT INTO product (id, name, price) VALUES (1, 'a', 0)")
    test_set.add_sql_script("2.sql", "UPDATE product SET name = 'b' WHERE id = 1")

    with engine.begin() as conn:
        test_set.apply(conn)

    assert _scalar(engine, "SELECT name FROM product WHERE id = 1") == "b"


def test_apply_stops_at_failing_part_and_reraises(engine: Engine) -> None:
    test_set = SqlScriptTestSet()
    test_set.add_sql_script(
        "dup.sql",
        "INSERT INTO product (id, name, price) VALUES (1, 'a', 0)\n"
        "GO\n"
        "INSERT INTO product (id, name, price) VALUES (2, 'a', 0)\n"
        "GO\n"
        "INSERT INTO product (id, name, price) VALUES (3, 'c', 0)\n",
    )

    with engine.connect() as conn:
        with pytest.raises(IntegrityError):
            test_set.apply(conn)
        assert conn.exec_driver_sql("SELECT COUNT(*) FROM product WHERE id = 3").scalar() == 0


def test_callable_test_set_runs_function(engine: Engine) -> None:
    calls = []
    test_set = CallableTestSet(calls.append)

    with engine.connect() as conn:
        test_set.apply(conn)

    assert len(calls) == 1
