"""
Unit tests for the entity collection CRUD engine.

Tests cover:
- Initialization and metadata loading
- Key lookups, filtered reads and predicate reads
- Raw SQL screening
- Insert, update and delete statement generation
- Timestamp stamping and GUID key generation
- Error translation from the execution collaborator
"""

import logging
from datetime import datetime
from unittest.mock import MagicMock
from uuid import UUID

import pytest

from niorm.domain.dialect import POSTGRESQL, SQLSERVER
from niorm.domain.exceptions import (
    ConnectionError,
    MappingError,
    NiORMError,
    SchemaError,
    UnsafeSqlError,
    UnsupportedExpressionError,
    ValidationError,
)
from niorm.domain.expressions import NOW, EntityParameter
from niorm.infrastructure.repositories.entities import CollectionState, EntityCollection
from tests.helpers import (
    FIXED_NOW,
    Article,
    Event,
    Membership,
    Person,
    PersonView,
    RecordingExecutor,
    Session,
    Setting,
    Status,
    Token,
)

BOB = {"Id": 5, "Name": "Bob", "Age": 3}


class TestEntityCollectionInitialization:
    """Test EntityCollection initialization."""

    def test_ready_after_init(self, executor):
        people = EntityCollection(Person, executor)

        assert people.state is CollectionState.READY
        assert people.table_name == "People"
        assert people.entity_name == "Person"
        assert people.metadata.primary_key_names == ["Id"]

    def test_executor_required(self):
        with pytest.raises(ValidationError, match="Executor cannot be None"):
            EntityCollection(Person, None)

    def test_invalid_entity_type(self, executor):
        class NotAnEntity:
            pass

        with pytest.raises(SchemaError, match="should declare a table name"):
            EntityCollection(NotAnEntity, executor)

    def test_repr(self, executor):
        people = EntityCollection(Person, executor)

        assert repr(people) == "EntityCollection(Person, table=People, state=ready)"

    def test_dialect_defaults_to_sqlserver(self, executor):
        assert EntityCollection(Person, executor).dialect is SQLSERVER

    def test_dialect_follows_executor(self, executor):
        executor.dialect = POSTGRESQL

        people = EntityCollection(Person, executor)
        people.find(5)

        assert people.dialect is POSTGRESQL
        assert executor.last_sql == 'SELECT * FROM People WHERE "Id" = %(p1)s LIMIT 1'

    def test_dialect_conflicting_with_executor(self, executor):
        executor.dialect = POSTGRESQL

        with pytest.raises(ValidationError, match="does not match the executor's dialect"):
            EntityCollection(Person, executor, dialect=SQLSERVER)


class TestFind:
    """Test find."""

    def test_find_by_key(self):
        executor = RecordingExecutor(rows=[[BOB]])
        people = EntityCollection(Person, executor)

        person = people.find(5)

        assert person == Person(Id=5, Name="Bob", Age=3)
        assert executor.calls == [
            ("query", "SELECT TOP(1) * FROM People WHERE [Id] = @p1", {"p1": 5})
        ]

    def test_find_without_match(self, executor):
        assert EntityCollection(Person, executor).find(5) is None

    def test_find_coerces_key_to_field_type(self, executor):
        EntityCollection(Person, executor).find("5")

        assert executor.last_params == {"p1": 5}

    def test_find_rejects_unconvertible_key(self, executor):
        with pytest.raises(ValidationError, match="Invalid value for primary key Id"):
            EntityCollection(Person, executor).find("five")
        assert executor.calls == []

    def test_find_composite_key(self, executor):
        EntityCollection(Membership, executor).find(1, 2)

        assert executor.last_sql == (
            "SELECT TOP(1) * FROM Memberships WHERE [UserId] = @p1 AND [GroupId] = @p2"
        )
        assert executor.last_params == {"p1": 1, "p2": 2}

    def test_find_key_count_must_match(self, executor):
        with pytest.raises(ValidationError, match="must have exactly 2 primary key"):
            EntityCollection(Person, executor).find(1, 2)

        with pytest.raises(ValidationError, match="must have exactly 1 primary key"):
            EntityCollection(Membership, executor).find(1)

    def test_find_needs_one_or_two_keys(self, executor):
        people = EntityCollection(Person, executor)

        with pytest.raises(ValidationError, match="got 0"):
            people.find()
        with pytest.raises(ValidationError, match="got 3"):
            people.find(1, 2, 3)

    @pytest.mark.parametrize("key", [None, "", "   "])
    def test_find_rejects_missing_key(self, executor, key):
        with pytest.raises(ValidationError, match="Primary key value cannot be null or empty"):
            EntityCollection(Person, executor).find(key)

    def test_find_postgresql(self, executor):
        EntityCollection(Person, executor, dialect=POSTGRESQL).find(5)

        assert executor.last_sql == 'SELECT * FROM People WHERE "Id" = %(p1)s LIMIT 1'


class TestReads:
    """Test first_or_default, to_list and the filtered reads."""

    def test_first_or_default_without_filter(self):
        executor = RecordingExecutor(rows=[[BOB, {"Id": 6, "Name": "Ann", "Age": 4}]])

        person = EntityCollection(Person, executor).first_or_default()

        assert person.Name == "Bob"
        assert executor.calls == [("query", "SELECT TOP(1) * FROM People", {})]

    def test_first_or_default_with_raw_filter(self, executor):
        EntityCollection(Person, executor).first_or_default("[Age] = 3")

        assert executor.last_sql == "SELECT TOP(1) * FROM People WHERE [Age] = 3"

    def test_first_or_default_empty(self, executor):
        assert EntityCollection(Person, executor).first_or_default() is None

    def test_to_list(self):
        executor = RecordingExecutor(rows=[[BOB, {"Id": 6, "Name": "Ann", "Age": 4}]])

        people = EntityCollection(Person, executor).to_list()

        assert [p.Name for p in people] == ["Bob", "Ann"]
        assert executor.last_sql == "SELECT * FROM People"

    def test_list_with_raw_filter(self, executor):
        result = EntityCollection(Person, executor).list("[Age] = 3")

        assert result == []
        assert executor.last_sql == "SELECT * FROM People WHERE [Age] = 3"

    def test_where_field_value(self, executor):
        EntityCollection(Person, executor).where("Name", "Bob")

        assert executor.calls == [
            ("query", "SELECT * FROM People WHERE [Name] = @p1", {"p1": "Bob"})
        ]

    def test_where_enum_value_binds_underlying_value(self, executor):
        EntityCollection(Event, executor).where("State", Status.INACTIVE)

        assert executor.last_params == {"p1": 2}

    def test_where_multiple(self, executor):
        EntityCollection(Person, executor).where_multiple({"Name": "Bob", "Age": 3})

        assert executor.last_sql == "SELECT * FROM People WHERE [Name] = @p1 AND [Age] = @p2"
        assert executor.last_params == {"p1": "Bob", "p2": 3}

    def test_where_multiple_empty(self, executor):
        with pytest.raises(ValidationError, match="Conditions cannot be null or empty"):
            EntityCollection(Person, executor).where_multiple({})

    def test_where_multiple_unknown_field(self, executor):
        with pytest.raises(ValidationError, match="Unknown field 'Email' on Person"):
            EntityCollection(Person, executor).where_multiple({"Email": "x"})
        assert executor.calls == []

    def test_find_by_property(self, executor):
        EntityCollection(Person, executor).find_by_property("Age", 3)

        assert executor.last_sql == "SELECT * FROM People WHERE [Age] = @p1"

    def test_find_by_property_blank_name(self, executor):
        with pytest.raises(ValidationError, match="Property name cannot be null or empty"):
            EntityCollection(Person, executor).find_by_property(" ", 3)

    def test_first_or_default_multiple(self):
        executor = RecordingExecutor(rows=[[BOB]])

        person = EntityCollection(Person, executor).first_or_default_multiple({"Name": "Bob"})

        assert person.Id == 5
        assert executor.last_sql == "SELECT TOP(1) * FROM People WHERE [Name] = @p1"

    def test_mapping_failure_propagates(self):
        executor = RecordingExecutor(rows=[[{"Id": 5, "Name": "Bob", "Age": "old"}]])

        with pytest.raises(MappingError, match="'Age'"):
            EntityCollection(Person, executor).to_list()

    def test_null_column_does_not_abort_read(self):
        executor = RecordingExecutor(rows=[[{"Id": 1, "Name": None, "Age": 3}, BOB]])

        people = EntityCollection(Person, executor).to_list()

        assert [p.Name for p in people] == ["", "Bob"]
        assert people[0].Age == 3


class TestWherePredicate:
    """Test predicate reads."""

    def test_lambda_predicate_is_parameterized(self, executor):
        EntityCollection(Person, executor).where(lambda p: (p.Name == "Bob") & (p.Age == 3))

        assert executor.last_sql == "SELECT * FROM People WHERE ([Name] = @p1 AND [Age] = @p2)"
        assert executor.last_params == {"p1": "Bob", "p2": 3}

    def test_or_predicate(self, executor):
        EntityCollection(Person, executor).where(lambda p: (p.Name == "Bob") | (p.Name == "Ann"))

        assert executor.last_sql == "SELECT * FROM People WHERE ([Name] = @p1 OR [Name] = @p2)"

    def test_date_predicate(self, executor):
        EntityCollection(Event, executor).where(lambda e: e.CreatedAt.date() == NOW.date())

        assert executor.last_sql == (
            "SELECT * FROM Events WHERE CAST([CreatedAt] AS DATE) = CAST(GETDATE() AS DATE)"
        )
        assert executor.last_params == {}

    def test_null_predicate(self, executor):
        EntityCollection(Event, executor).where(lambda e: e.CreatedAt == None)  # noqa: E711

        assert executor.last_sql == "SELECT * FROM Events WHERE [CreatedAt] IS NULL"

    def test_prebuilt_node(self, executor):
        predicate = EntityParameter(Person).Age == 3

        EntityCollection(Person, executor).where(predicate)

        assert executor.last_sql == "SELECT * FROM People WHERE [Age] = @p1"

    def test_unsupported_predicate_sends_nothing(self, executor):
        with pytest.raises(UnsupportedExpressionError, match="Operation GreaterThan"):
            EntityCollection(Person, executor).where(lambda p: p.Age > 3)
        assert executor.calls == []

    def test_unknown_field_in_predicate(self, executor):
        with pytest.raises(ValidationError, match="Unknown field in predicate: Email"):
            EntityCollection(Person, executor).where(lambda p: p.Email == "x")

    def test_non_predicate_argument(self, executor):
        with pytest.raises(ValidationError, match="needs a predicate"):
            EntityCollection(Person, executor).where(42)

    def test_blank_field_name(self, executor):
        with pytest.raises(ValidationError, match="Property name cannot be null or empty"):
            EntityCollection(Person, executor).where("", "Bob")


class TestRawSql:
    """Test query, execute and raw WHERE fragments."""

    def test_query_passes_sql_and_params(self):
        executor = RecordingExecutor(rows=[[BOB]])

        result = EntityCollection(Person, executor).query(
            "SELECT * FROM People WHERE [Age] = @age", {"age": 3}
        )

        assert result == [Person(**BOB)]
        assert executor.calls == [
            ("query", "SELECT * FROM People WHERE [Age] = @age", {"age": 3})
        ]

    def test_query_refuses_high_risk(self, executor):
        with pytest.raises(UnsafeSqlError):
            EntityCollection(Person, executor).query("SELECT * FROM People; DROP TABLE People")
        assert executor.calls == []

    def test_raw_filter_refuses_high_risk(self, executor):
        with pytest.raises(UnsafeSqlError):
            EntityCollection(Person, executor).first_or_default("[Name] = '' OR 1=1")
        assert executor.calls == []

    @pytest.mark.parametrize("sql", ["", "   "])
    def test_blank_query(self, executor, sql):
        with pytest.raises(ValidationError, match="SQL query cannot be null or empty"):
            EntityCollection(Person, executor).query(sql)

    def test_blank_raw_filter(self, executor):
        with pytest.raises(ValidationError, match="WHERE clause cannot be null or empty"):
            EntityCollection(Person, executor).to_list(" ")

    def test_execute_returns_rows_affected(self):
        executor = RecordingExecutor(rowcount=4)

        affected = EntityCollection(Person, executor).execute(
            "UPDATE People SET [Age] = @age", {"age": 0}
        )

        assert affected == 4
        assert executor.calls == [("execute", "UPDATE People SET [Age] = @age", {"age": 0})]

    def test_execute_only_allows_its_own_verb(self, executor):
        with pytest.raises(UnsafeSqlError):
            EntityCollection(Person, executor).execute("UPDATE People SET [Age] = 0; DROP TABLE x")
        with pytest.raises(UnsafeSqlError):
            EntityCollection(Person, executor).execute(
                "DELETE FROM People WHERE [Id] IN (1); UPDATE People SET [Age] = 1"
            )
        assert executor.calls == []

    def test_execute_refuses_second_statement_with_same_verb(self, executor):
        """Test T-SQL statements separated by whitespace alone are caught."""
        with pytest.raises(UnsafeSqlError, match="Dangerous keyword detected: UPDATE"):
            EntityCollection(Person, executor).execute(
                "UPDATE People SET [Name] = N'x' UPDATE Users SET [Admin] = 1"
            )
        assert executor.calls == []

    def test_query_refuses_keyword_hidden_behind_bracket_in_literal(self, executor):
        with pytest.raises(UnsafeSqlError):
            EntityCollection(Person, executor).query(
                "SELECT * FROM People WHERE Name = '[' EXEC xp_cmdshell 'dir]'"
            )
        assert executor.calls == []

    def test_execute_blank(self, executor):
        with pytest.raises(ValidationError, match="SQL command cannot be null or empty"):
            EntityCollection(Person, executor).execute("")

    def test_guard_can_be_disabled(self, executor):
        people = EntityCollection(Person, executor, guard_raw_sql=False)

        people.query("SELECT * FROM People; DROP TABLE People")

        assert executor.last_sql == "SELECT * FROM People; DROP TABLE People"

    def test_raw_sql_logs_security_warning(self, executor, caplog):
        with caplog.at_level(logging.WARNING, logger="niorm"):
            EntityCollection(Person, executor).query("SELECT * FROM People")

        (record,) = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert record.getMessage() == "Using raw SQL in query for Person"
        assert record.operation == "query"
        assert record.sql == "SELECT * FROM People"


class TestAdd:
    """Test add and add_return."""

    def test_add_skips_auto_increment_key(self, executor):
        affected = EntityCollection(Person, executor).add(Person(Name="Bob", Age=3))

        assert affected == 1
        assert executor.calls == [
            (
                "execute",
                "INSERT INTO People ([Name], [Age]) VALUES (@p1, @p2)",
                {"p1": "Bob", "p2": 3},
            )
        ]

    def test_add_hostile_value_is_a_parameter(self, executor):
        EntityCollection(Person, executor).add(Person(Name="x'); DROP TABLE People; --"))

        assert "DROP" not in executor.last_sql
        assert executor.last_params["p1"] == "x'); DROP TABLE People; --"

    def test_add_stamps_timestamps(self, executor, clock):
        article = Article(Title="Hello")

        EntityCollection(Article, executor, clock=clock).add(article)

        assert article.CreatedDateTime == FIXED_NOW
        assert article.UpdatedDateTime == FIXED_NOW
        assert executor.last_sql == (
            "INSERT INTO Articles ([Title], [CreatedDateTime], [UpdatedDateTime]) "
            "VALUES (@p1, @p2, @p3)"
        )
        assert executor.last_params == {"p1": "Hello", "p2": FIXED_NOW, "p3": FIXED_NOW}

    def test_add_generates_uuid_key(self, executor):
        token = Token(Value="abc")

        EntityCollection(Token, executor).add(token)

        assert isinstance(token.TokenId, UUID)
        assert executor.last_sql == "INSERT INTO Tokens ([TokenId], [Value]) VALUES (@p1, @p2)"
        assert executor.last_params == {"p1": token.TokenId, "p2": "abc"}

    def test_add_generates_string_guid_for_text_key(self, executor):
        session = Session(UserName="bob")

        EntityCollection(Session, executor).add(session)

        assert isinstance(session.SessionId, str)
        assert str(UUID(session.SessionId)) == session.SessionId

    def test_add_natural_keys_are_inserted(self, executor):
        EntityCollection(Membership, executor).add(Membership(UserId=1, GroupId=2, Role="x"))

        assert executor.last_sql == (
            "INSERT INTO Memberships ([UserId], [GroupId], [Role]) VALUES (@p1, @p2, @p3)"
        )

    def test_add_view_is_refused(self, executor):
        with pytest.raises(ValidationError, match="cannot be added because it's a view"):
            EntityCollection(PersonView, executor).add(PersonView(Name="Bob"))
        assert executor.calls == []

    def test_add_none(self, executor):
        with pytest.raises(ValidationError, match="Entity cannot be None"):
            EntityCollection(Person, executor).add(None)

    def test_add_wrong_type(self, executor):
        with pytest.raises(ValidationError, match="Expected Person, got Article"):
            EntityCollection(Person, executor).add(Article())

    def test_add_return(self):
        executor = RecordingExecutor(rows=[[{"Id": 9, "Name": "Bob", "Age": 3}]])

        stored = EntityCollection(Person, executor).add_return(Person(Name="Bob", Age=3))

        assert stored == Person(Id=9, Name="Bob", Age=3)
        assert executor.calls == [
            (
                "query",
                "INSERT INTO People ([Name], [Age]) OUTPUT inserted.* VALUES (@p1, @p2)",
                {"p1": "Bob", "p2": 3},
            )
        ]

    def test_add_return_postgresql(self, executor):
        EntityCollection(Person, executor, dialect=POSTGRESQL).add_return(Person(Name="Bob"))

        assert executor.last_sql == (
            'INSERT INTO People ("Name", "Age") VALUES (%(p1)s, %(p2)s) RETURNING *'
        )

    def test_add_return_without_row(self, executor):
        assert EntityCollection(Person, executor).add_return(Person(Name="Bob")) is None


class TestEdit:
    """Test edit."""

    def test_edit_by_key(self, executor):
        affected = EntityCollection(Person, executor).edit(Person(Id=5, Name="Bob", Age=4))

        assert affected == 1
        assert executor.calls == [
            (
                "execute",
                "UPDATE People SET [Name] = @p1, [Age] = @p2 WHERE [Id] = @p3",
                {"p1": "Bob", "p2": 4, "p3": 5},
            )
        ]

    def test_edit_refreshes_update_timestamp(self, executor, clock):
        created = datetime(2020, 1, 1)
        article = Article(Id=3, Title="T", CreatedDateTime=created, UpdatedDateTime=created)

        EntityCollection(Article, executor, clock=clock).edit(article)

        assert article.CreatedDateTime == created
        assert article.UpdatedDateTime == FIXED_NOW
        assert executor.last_sql == (
            "UPDATE Articles SET [Title] = @p1, [CreatedDateTime] = @p2, "
            "[UpdatedDateTime] = @p3 WHERE [Id] = @p4"
        )
        assert executor.last_params == {"p1": "T", "p2": created, "p3": FIXED_NOW, "p4": 3}

    def test_edit_composite_natural_key(self, executor):
        EntityCollection(Membership, executor).edit(Membership(UserId=1, GroupId=2, Role="x"))

        assert executor.last_sql == (
            "UPDATE Memberships SET [UserId] = @p1, [GroupId] = @p2, [Role] = @p3 "
            "WHERE [UserId] = @p4 AND [GroupId] = @p5"
        )

    def test_edit_reports_zero_rows(self):
        executor = RecordingExecutor(rowcount=0)

        assert EntityCollection(Person, executor).edit(Person(Id=404)) == 0

    def test_edit_view_is_refused(self, executor):
        with pytest.raises(ValidationError, match="cannot be updated because it's a view"):
            EntityCollection(PersonView, executor).edit(PersonView(Id=1))

    def test_edit_without_primary_key(self, executor):
        with pytest.raises(ValidationError, match="at least one primary key to be updated"):
            EntityCollection(Setting, executor).edit(Setting(Name="a"))
        assert executor.calls == []


class TestRemove:
    """Test remove."""

    def test_remove_by_key(self, executor):
        affected = EntityCollection(Person, executor).remove(Person(Id=5))

        assert affected == 1
        assert executor.calls == [("execute", "DELETE FROM People WHERE [Id] = @p1", {"p1": 5})]

    def test_remove_composite_key(self, executor):
        EntityCollection(Membership, executor).remove(Membership(UserId=1, GroupId=2))

        assert executor.last_sql == (
            "DELETE FROM Memberships WHERE [UserId] = @p1 AND [GroupId] = @p2"
        )

    def test_remove_from_view_is_allowed(self, executor):
        EntityCollection(PersonView, executor).remove(PersonView(Id=1))

        assert executor.last_sql == "DELETE FROM PeopleView WHERE [Id] = @p1"

    def test_remove_none(self, executor):
        with pytest.raises(ValidationError, match="Entity cannot be None"):
            EntityCollection(Person, executor).remove(None)

    def test_remove_without_primary_key(self, executor):
        with pytest.raises(ValidationError, match="at least one primary key to be removed"):
            EntityCollection(Setting, executor).remove(Setting(Name="a"))


class TestExecutorErrors:
    """Test how failures of the execution collaborator surface."""

    def test_unexpected_error_is_wrapped(self):
        executor = MagicMock()
        executor.query.side_effect = RuntimeError("socket closed")

        with pytest.raises(NiORMError, match="Unexpected error during find for Person") as exc_info:
            EntityCollection(Person, executor).find(5)

        error = exc_info.value
        assert error.sql_query == "SELECT TOP(1) * FROM People WHERE [Id] = @p1"
        assert error.operation_type == "find"
        assert isinstance(error.cause, RuntimeError)
        assert error.__cause__ is error.cause

    def test_write_error_is_wrapped(self):
        executor = MagicMock()
        executor.execute.side_effect = RuntimeError("constraint violated")

        with pytest.raises(NiORMError) as exc_info:
            EntityCollection(Person, executor).add(Person(Name="Bob"))
        assert exc_info.value.operation_type == "add"

    def test_niorm_errors_propagate_unchanged(self):
        executor = MagicMock()
        failure = ConnectionError("database unreachable")
        executor.query.side_effect = failure

        with pytest.raises(ConnectionError) as exc_info:
            EntityCollection(Person, executor).to_list()
        assert exc_info.value is failure

    def test_debug_log_carries_statement(self, executor, caplog):
        with caplog.at_level(logging.DEBUG, logger="niorm"):
            EntityCollection(Person, executor).find(5)

        (record,) = [r for r in caplog.records if r.getMessage() == "Executing find for Person"]
        assert record.sql == "SELECT TOP(1) * FROM People WHERE [Id] = @p1"
        assert record.params == {"p1": 5}
        assert record.operation == "find"
