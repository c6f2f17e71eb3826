"""
Unit tests for session namespacing
"""

import re
import unittest
from unittest.mock import patch
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlplayground.errors import NamespaceSanitizationError
from sqlplayground.namespacer import (
    SessionNamespace,
    SessionNamespacer,
    build_session_id,
    namespace_statement,
    sanitize_session_id,
)


class TestSanitizeSessionId(unittest.TestCase):

    def test_plain_identifier_unchanged(self):
        self.assertEqual(sanitize_session_id("alice_1"), "alice_1")

    def test_strips_illegal_characters(self):
        self.assertEqual(sanitize_session_id("alice@example.com_12"), "aliceexamplecom_12")
        self.assertEqual(sanitize_session_id("bob-1; DROP TABLE x"), "bob1DROPTABLEx")

    def test_truncates_to_max_length(self):
        token = sanitize_session_id("a" * 50)
        self.assertEqual(token, "a" * 20)
        self.assertEqual(sanitize_session_id("abcdefgh", max_length=4), "abcd")

    def test_leading_digit_gets_letter_prefix(self):
        self.assertEqual(sanitize_session_id("42_1700000000000"), "s42_1700000000000")

    def test_tokens_match_identifier_pattern(self):
        pattern = re.compile(r"^[A-Za-z0-9_]{1,20}$")
        for raw in ["alice_1", "user-123_1700000000000", "ÄÖÜ_x", "9", "a b c", "x" * 40, "__init__"]:
            with self.subTest(raw=raw):
                self.assertRegex(sanitize_session_id(raw), pattern)

    def test_unusable_identifiers_rejected(self):
        for raw in ["", "!!!", "___", "@#$%", None]:
            with self.subTest(raw=raw):
                with self.assertRaises(NamespaceSanitizationError):
                    sanitize_session_id(raw)

    def test_sanitization_error_is_a_value_error(self):
        with self.assertRaises(ValueError):
            sanitize_session_id("---")

    @patch('sqlplayground.namespacer.time.time')
    def test_build_session_id(self, mock_time):
        mock_time.return_value = 1700000000.5
        self.assertEqual(build_session_id("alice"), "alice_1700000000500")
        self.assertEqual(build_session_id(None), "anonymous_1700000000500")


class TestSessionNamespace(unittest.TestCase):

    def test_qualify_and_owns(self):
        namespace = SessionNamespace.from_session_id("alice_1")

        self.assertEqual(namespace.prefix, "alice_1_")
        self.assertEqual(namespace.qualify("employees"), "alice_1_employees")
        self.assertEqual(namespace.qualify("alice_1_employees"), "alice_1_employees")
        self.assertTrue(namespace.owns("ALICE_1_EMPLOYEES"))
        self.assertFalse(namespace.owns("employees"))


class TestCreateRewrites(unittest.TestCase):

    def test_create_table(self):
        self.assertEqual(
            namespace_statement("CREATE TABLE employees (id INT)", "alice_1"),
            "CREATE TABLE alice_1_employees (id INT)"
        )

    def test_two_sessions_do_not_collide(self):
        alice = namespace_statement("CREATE TABLE employees (id INT)", "alice_1")
        bob = namespace_statement("CREATE TABLE employees (id INT)", "bob_1")

        self.assertEqual(alice, "CREATE TABLE alice_1_employees (id INT)")
        self.assertEqual(bob, "CREATE TABLE bob_1_employees (id INT)")

    def test_create_or_replace_view_and_type(self):
        self.assertEqual(
            namespace_statement("CREATE OR REPLACE VIEW rich AS SELECT * FROM employees WHERE salary > 1", "s1"),
            "CREATE OR REPLACE VIEW s1_rich AS SELECT * FROM s1_employees WHERE salary > 1"
        )
        self.assertEqual(
            namespace_statement("CREATE OR REPLACE TYPE emp_t AS OBJECT (name VARCHAR2(20))", "s1"),
            "CREATE OR REPLACE TYPE s1_emp_t AS OBJECT (name VARCHAR2(20))"
        )

    def test_create_type_body(self):
        self.assertEqual(
            namespace_statement("CREATE OR REPLACE TYPE BODY emp_t AS\nEND;", "s1"),
            "CREATE OR REPLACE TYPE BODY s1_emp_t AS\nEND;"
        )

    def test_create_if_not_exists_and_temporary(self):
        self.assertEqual(
            namespace_statement("CREATE TABLE IF NOT EXISTS logs (msg TEXT)", "s1"),
            "CREATE TABLE IF NOT EXISTS s1_logs (msg TEXT)"
        )
        self.assertEqual(
            namespace_statement("CREATE GLOBAL TEMPORARY TABLE scratch (v INT)", "s1"),
            "CREATE GLOBAL TEMPORARY TABLE s1_scratch (v INT)"
        )

    def test_create_index_on_table(self):
        self.assertEqual(
            namespace_statement("CREATE UNIQUE INDEX emp_name_idx ON employees (name)", "s1"),
            "CREATE UNIQUE INDEX s1_emp_name_idx ON s1_employees (name)"
        )

    def test_nested_table_and_ref_types(self):
        self.assertEqual(
            namespace_statement("CREATE TYPE emp_list AS TABLE OF emp_t", "s1"),
            "CREATE TYPE s1_emp_list AS TABLE OF s1_emp_t"
        )
        self.assertEqual(
            namespace_statement("CREATE TABLE dept_tab (id NUMBER, mgr REF emp_t)", "s1"),
            "CREATE TABLE s1_dept_tab (id NUMBER, mgr REF s1_emp_t)"
        )

    def test_builtin_collection_types_untouched(self):
        self.assertEqual(
            namespace_statement("CREATE TYPE num_list AS TABLE OF NUMBER", "s1"),
            "CREATE TYPE s1_num_list AS TABLE OF NUMBER"
        )
        self.assertEqual(
            namespace_statement("CREATE TYPE date_list AS TABLE OF DATE", "s1"),
            "CREATE TYPE s1_date_list AS TABLE OF DATE"
        )

    def test_soft_keyword_table_names(self):
        for name in ("action", "temp", "record", "text", "date", "key", "type", "object",
                     "first", "last", "json", "uuid"):
            with self.subTest(name=name):
                self.assertEqual(
                    namespace_statement(f"CREATE TABLE {name} (id INT)", "alice_1"),
                    f"CREATE TABLE alice_1_{name} (id INT)"
                )

    def test_soft_keyword_table_references(self):
        self.assertEqual(
            namespace_statement("INSERT INTO temp VALUES (1)", "s1"),
            "INSERT INTO s1_temp VALUES (1)"
        )
        self.assertEqual(
            namespace_statement("SELECT * FROM action a JOIN key k ON a.id = k.id", "s1"),
            "SELECT * FROM s1_action a JOIN s1_key k ON a.id = k.id"
        )
        self.assertEqual(
            namespace_statement("UPDATE record SET v = 1", "s1"),
            "UPDATE s1_record SET v = 1"
        )
        self.assertEqual(namespace_statement("DROP TABLE text", "s1"), "DROP TABLE s1_text")


class TestReferenceRewrites(unittest.TestCase):

    def test_insert_into(self):
        self.assertEqual(
            namespace_statement("INSERT INTO employees VALUES (1, 'Ann')", "alice_1"),
            "INSERT INTO alice_1_employees VALUES (1, 'Ann')"
        )

    def test_insert_with_column_list(self):
        self.assertEqual(
            namespace_statement("INSERT INTO employees(id, name) VALUES (1, 'Ann')", "s1"),
            "INSERT INTO s1_employees(id, name) VALUES (1, 'Ann')"
        )

    def test_select_with_join(self):
        self.assertEqual(
            namespace_statement(
                "SELECT e.name, d.name FROM employees e JOIN departments d ON e.dept = d.id", "s1"
            ),
            "SELECT e.name, d.name FROM s1_employees e JOIN s1_departments d ON e.dept = d.id"
        )

    def test_comma_separated_from_list(self):
        self.assertEqual(
            namespace_statement("SELECT * FROM employees e, departments d WHERE e.dept = d.id", "s1"),
            "SELECT * FROM s1_employees e, s1_departments d WHERE e.dept = d.id"
        )

    def test_update_delete_and_references(self):
        self.assertEqual(
            namespace_statement("UPDATE employees SET salary = 1 WHERE id = 2", "s1"),
            "UPDATE s1_employees SET salary = 1 WHERE id = 2"
        )
        self.assertEqual(
            namespace_statement("DELETE FROM employees WHERE id = 2", "s1"),
            "DELETE FROM s1_employees WHERE id = 2"
        )
        self.assertEqual(
            namespace_statement("CREATE TABLE emp (id INT, dept_id INT REFERENCES dept(id))", "s1"),
            "CREATE TABLE s1_emp (id INT, dept_id INT REFERENCES s1_dept(id))"
        )

    def test_drop_alter_truncate(self):
        self.assertEqual(namespace_statement("DROP TABLE employees", "s1"), "DROP TABLE s1_employees")
        self.assertEqual(
            namespace_statement("DROP TABLE IF EXISTS employees", "s1"),
            "DROP TABLE IF EXISTS s1_employees"
        )
        self.assertEqual(
            namespace_statement("ALTER TABLE employees ADD email VARCHAR(50)", "s1"),
            "ALTER TABLE s1_employees ADD email VARCHAR(50)"
        )
        self.assertEqual(namespace_statement("TRUNCATE TABLE employees", "s1"), "TRUNCATE TABLE s1_employees")

    def test_merge_using(self):
        self.assertEqual(
            namespace_statement(
                "MERGE INTO target t USING source s ON (t.id = s.id) "
                "WHEN MATCHED THEN UPDATE SET t.v = s.v", "s1"
            ),
            "MERGE INTO s1_target t USING s1_source s ON (t.id = s.id) "
            "WHEN MATCHED THEN UPDATE SET t.v = s.v"
        )

    def test_trigger_target_table(self):
        self.assertEqual(
            namespace_statement(
                "CREATE OR REPLACE TRIGGER emp_audit BEFORE INSERT OR UPDATE ON employees\n"
                "FOR EACH ROW\nBEGIN\n  INSERT INTO audit_log VALUES (SYSDATE);\nEND;", "s1"
            ),
            "CREATE OR REPLACE TRIGGER s1_emp_audit BEFORE INSERT OR UPDATE ON s1_employees\n"
            "FOR EACH ROW\nBEGIN\n  INSERT INTO s1_audit_log VALUES (SYSDATE);\nEND;"
        )


class TestRewriteExclusions(unittest.TestCase):

    def test_system_objects_are_never_namespaced(self):
        self.assertEqual(namespace_statement("SELECT SYSDATE FROM dual", "s1"), "SELECT SYSDATE FROM dual")
        self.assertEqual(
            namespace_statement("SELECT table_name FROM user_tables", "s1"),
            "SELECT table_name FROM user_tables"
        )
        self.assertEqual(
            namespace_statement("SELECT name FROM sqlite_master", "s1"),
            "SELECT name FROM sqlite_master"
        )

    def test_schema_qualified_names_untouched(self):
        self.assertEqual(
            namespace_statement("SELECT * FROM information_schema.tables", "s1"),
            "SELECT * FROM information_schema.tables"
        )
        self.assertEqual(namespace_statement("SELECT * FROM hr.employees", "s1"), "SELECT * FROM hr.employees")

    def test_string_literals_untouched(self):
        self.assertEqual(
            namespace_statement("INSERT INTO notes VALUES ('SELECT * FROM employees')", "s1"),
            "INSERT INTO s1_notes VALUES ('SELECT * FROM employees')"
        )

    def test_comments_untouched(self):
        self.assertEqual(
            namespace_statement("SELECT * FROM employees -- FROM secrets\n/* JOIN other */", "s1"),
            "SELECT * FROM s1_employees -- FROM secrets\n/* JOIN other */"
        )

    def test_quoted_identifiers_untouched(self):
        self.assertEqual(
            namespace_statement('SELECT * FROM "Employees"', "s1"),
            'SELECT * FROM "Employees"'
        )

    def test_substrings_of_other_words_untouched(self):
        self.assertEqual(
            namespace_statement("SELECT fromage, into_x FROM employees", "s1"),
            "SELECT fromage, into_x FROM s1_employees"
        )

    def test_from_inside_extract_and_trim(self):
        self.assertEqual(
            namespace_statement("SELECT EXTRACT(YEAR FROM hire_date) FROM employees", "s1"),
            "SELECT EXTRACT(YEAR FROM hire_date) FROM s1_employees"
        )
        self.assertEqual(
            namespace_statement("SELECT TRIM(LEADING '0' FROM code) FROM items", "s1"),
            "SELECT TRIM(LEADING '0' FROM code) FROM s1_items"
        )

    def test_select_into_variable(self):
        self.assertEqual(
            namespace_statement("BEGIN\n  SELECT COUNT(*) INTO v_count FROM employees;\nEND;", "s1"),
            "BEGIN\n  SELECT COUNT(*) INTO v_count FROM s1_employees;\nEND;"
        )

    def test_fetch_into_variable(self):
        self.assertEqual(
            namespace_statement("FETCH emp_cursor INTO v_name", "s1"),
            "FETCH emp_cursor INTO v_name"
        )

    def test_table_functions_untouched(self):
        self.assertEqual(
            namespace_statement("SELECT * FROM generate_series(1, 3)", "s1"),
            "SELECT * FROM generate_series(1, 3)"
        )

    def test_cte_names_untouched(self):
        self.assertEqual(
            namespace_statement(
                "WITH totals AS (SELECT dept, SUM(sal) s FROM employees GROUP BY dept) SELECT * FROM totals",
                "s1"
            ),
            "WITH totals AS (SELECT dept, SUM(sal) s FROM s1_employees GROUP BY dept) SELECT * FROM totals"
        )

    def test_distinct_from_and_duplicate_key_update(self):
        self.assertEqual(
            namespace_statement("SELECT * FROM a WHERE x IS DISTINCT FROM y", "s1"),
            "SELECT * FROM s1_a WHERE x IS DISTINCT FROM y"
        )
        self.assertEqual(
            namespace_statement("INSERT INTO t (id) VALUES (1) ON DUPLICATE KEY UPDATE id = 2", "s1"),
            "INSERT INTO s1_t (id) VALUES (1) ON DUPLICATE KEY UPDATE id = 2"
        )

    def test_foreign_key_and_column_update_actions(self):
        self.assertEqual(
            namespace_statement(
                "CREATE TABLE c (p INT REFERENCES p(id) ON UPDATE CASCADE ON DELETE NO ACTION, "
                "ts TIMESTAMP ON UPDATE CURRENT_TIMESTAMP)", "s1"
            ),
            "CREATE TABLE s1_c (p INT REFERENCES s1_p(id) ON UPDATE CASCADE ON DELETE NO ACTION, "
            "ts TIMESTAMP ON UPDATE CURRENT_TIMESTAMP)"
        )

    def test_select_for_update(self):
        self.assertEqual(
            namespace_statement("SELECT * FROM employees FOR UPDATE NOWAIT", "s1"),
            "SELECT * FROM s1_employees FOR UPDATE NOWAIT"
        )


class TestIdempotence(unittest.TestCase):

    STATEMENTS = [
        "CREATE TABLE employees (id INT)",
        "INSERT INTO employees VALUES (1, 'from dual')",
        "SELECT * FROM employees e JOIN departments d ON e.dept = d.id",
        "CREATE TYPE emp_list AS TABLE OF emp_t",
        "UPDATE employees SET x = 1",
        "SELECT EXTRACT(YEAR FROM d) FROM employees, departments",
    ]

    def test_rewriting_twice_does_not_double_prefix(self):
        for statement in self.STATEMENTS:
            with self.subTest(statement=statement):
                once = namespace_statement(statement, "alice_1")
                self.assertEqual(namespace_statement(once, "alice_1"), once)

    def test_prefix_match_is_case_insensitive(self):
        self.assertEqual(
            namespace_statement("SELECT * FROM ALICE_1_EMPLOYEES", "alice_1"),
            "SELECT * FROM ALICE_1_EMPLOYEES"
        )

    def test_raw_identifier_is_sanitized_before_use(self):
        self.assertEqual(
            namespace_statement("CREATE TABLE t (id INT)", "alice-1"),
            "CREATE TABLE alice1_t (id INT)"
        )
        with self.assertRaises(NamespaceSanitizationError):
            namespace_statement("CREATE TABLE t (id INT)", "$$$")

    def test_custom_system_objects(self):
        namespacer = SessionNamespacer(system_objects=["shared_lookup"])
        self.assertEqual(
            namespacer.rewrite("SELECT * FROM shared_lookup JOIN dual ON 1 = 1", "s1"),
            "SELECT * FROM shared_lookup JOIN s1_dual ON 1 = 1"
        )


if __name__ == '__main__':
    unittest.main()
