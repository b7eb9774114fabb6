"""
Tests for rule validation and RuleService.
"""
import pytest

from signal_sentinel.monitoring.errors import ErrorCode, NotFoundError, RuleValidationError
from signal_sentinel.monitoring.rules import (
    RuleCreate,
    RuleUpdate,
    parse_minutes,
    validate_rule_fields,
)
from signal_sentinel.storage.models import SignalState


def valid_create(**overrides):
    data = dict(
        merchant="acme",
        name="order confirmation",
        subject_pattern=r"^Your order #\d+",
        expected_interval_minutes=60,
        dead_after_minutes=120,
        tags=["orders"],
    )
    data.update(overrides)
    return RuleCreate(**data)


class TestValidateRuleFields:
    """Tests for validate_rule_fields."""

    def test_valid_rule_has_no_errors(self):
        assert validate_rule_fields("acme", "digest", "^Digest", 60, 90) == []

    def test_reports_every_missing_field(self):
        errors = validate_rule_fields("", " ", "", None, None)

        assert {e.field for e in errors} == {
            "merchant",
            "name",
            "subject_pattern",
            "expected_interval_minutes",
            "dead_after_minutes",
        }
        assert all(e.code == ErrorCode.REQUIRED for e in errors)

    def test_invalid_regex(self):
        errors = validate_rule_fields("acme", "digest", "([unclosed", 60, 120)

        assert len(errors) == 1
        assert errors[0].field == "subject_pattern"
        assert errors[0].code == ErrorCode.INVALID_REGEX

    @pytest.mark.parametrize("interval", [0, -5])
    def test_non_positive_interval(self, interval):
        errors = validate_rule_fields("acme", "digest", "x", interval, 120)

        assert [(e.field, e.code) for e in errors] == [
            ("expected_interval_minutes", ErrorCode.INVALID_VALUE)
        ]

    def test_dead_after_below_active_limit(self):
        """dead_after must be at least 1.5x the interval."""
        errors = validate_rule_fields("acme", "digest", "x", 60, 89)

        assert [(e.field, e.code) for e in errors] == [
            ("dead_after_minutes", ErrorCode.INVALID_THRESHOLD)
        ]

    def test_dead_after_exactly_at_limit_is_valid(self):
        assert validate_rule_fields("acme", "digest", "x", 60, 90) == []

    @pytest.mark.parametrize("interval", ["abc", "1.5", 1.5, True, [60]])
    def test_non_numeric_interval(self, interval):
        errors = validate_rule_fields("acme", "digest", "x", interval, 120)

        assert [(e.field, e.code) for e in errors] == [
            ("expected_interval_minutes", ErrorCode.INVALID_VALUE)
        ]

    def test_numeric_strings_are_checked_as_numbers(self):
        assert validate_rule_fields("acme", "digest", "x", "60", " 90 ") == []
        errors = validate_rule_fields("acme", "digest", "x", "60", "89")
        assert [e.code for e in errors] == [ErrorCode.INVALID_THRESHOLD]


class TestParseMinutes:
    @pytest.mark.parametrize(
        "value,expected",
        [(60, 60), (60.0, 60), ("60", 60), (" 45 ", 45), (None, None), ("", None)],
    )
    def test_accepts_whole_numbers(self, value, expected):
        assert parse_minutes(value) == expected

    @pytest.mark.parametrize("value", ["sixty", 2.5, False, {}])
    def test_rejects_other_input(self, value):
        with pytest.raises(ValueError):
            parse_minutes(value)


class TestRuleService:
    """Tests for RuleService CRUD."""

    @pytest.mark.asyncio
    async def test_create_starts_dead_and_never_seen(self, rule_service, store):
        rule = await rule_service.create(valid_create())

        assert rule.id in store.rules
        state = store.states[rule.id]
        assert state.state == SignalState.DEAD
        assert state.last_seen_at is None
        assert (state.count_1h, state.count_12h, state.count_24h) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_create_trims_names(self, rule_service):
        rule = await rule_service.create(valid_create(merchant="  acme ", name=" digest "))

        assert rule.merchant == "acme"
        assert rule.name == "digest"

    @pytest.mark.asyncio
    async def test_create_rejects_invalid_rule(self, rule_service, store):
        with pytest.raises(RuleValidationError) as exc_info:
            await rule_service.create(valid_create(dead_after_minutes=30))

        assert exc_info.value.fields == {"dead_after_minutes"}
        assert store.rules == {}

    @pytest.mark.asyncio
    async def test_create_reports_non_numeric_interval_as_field_error(self, rule_service, store):
        data = valid_create(expected_interval_minutes="sixty")

        with pytest.raises(RuleValidationError) as exc_info:
            await rule_service.create(data)

        assert [(e.field, e.code) for e in exc_info.value.errors] == [
            ("expected_interval_minutes", ErrorCode.INVALID_VALUE)
        ]
        assert store.rules == {}

    @pytest.mark.asyncio
    async def test_create_stores_numeric_strings_as_ints(self, rule_service):
        rule = await rule_service.create(
            valid_create(expected_interval_minutes="60", dead_after_minutes="120")
        )

        assert rule.expected_interval_minutes == 60
        assert rule.dead_after_minutes == 120

    @pytest.mark.asyncio
    async def test_update_validates_merged_rule(self, rule_service):
        """Raising only the interval must still respect the stored dead_after."""
        rule = await rule_service.create(valid_create())

        with pytest.raises(RuleValidationError) as exc_info:
            await rule_service.update(rule.id, RuleUpdate(expected_interval_minutes=100))

        assert exc_info.value.errors[0].code == ErrorCode.INVALID_THRESHOLD

    @pytest.mark.asyncio
    async def test_update_applies_partial_changes(self, rule_service):
        rule = await rule_service.create(valid_create())

        updated = await rule_service.update(
            rule.id, RuleUpdate(expected_interval_minutes=30, tags=["orders", "eu"])
        )

        assert updated.expected_interval_minutes == 30
        assert updated.dead_after_minutes == 120
        assert updated.tags == ["orders", "eu"]
        assert updated.name == rule.name
        assert updated.updated_at >= rule.updated_at

    @pytest.mark.asyncio
    async def test_update_reports_non_numeric_interval_as_field_error(self, rule_service):
        rule = await rule_service.create(valid_create())

        with pytest.raises(RuleValidationError) as exc_info:
            await rule_service.update(rule.id, RuleUpdate(dead_after_minutes="two hours"))

        assert exc_info.value.fields == {"dead_after_minutes"}
        assert exc_info.value.errors[0].code == ErrorCode.INVALID_VALUE
        assert (await rule_service.get(rule.id)).dead_after_minutes == 120

    @pytest.mark.asyncio
    async def test_update_stores_numeric_strings_as_ints(self, rule_service):
        rule = await rule_service.create(valid_create())

        updated = await rule_service.update(rule.id, RuleUpdate(expected_interval_minutes="30"))

        assert updated.expected_interval_minutes == 30

    @pytest.mark.asyncio
    async def test_update_missing_rule(self, rule_service):
        with pytest.raises(NotFoundError):
            await rule_service.update("missing", RuleUpdate(name="x"))

    @pytest.mark.asyncio
    async def test_set_enabled(self, rule_service):
        rule = await rule_service.create(valid_create())

        disabled = await rule_service.set_enabled(rule.id, False)

        assert disabled.enabled is False
        assert await rule_service.get_enabled() == []

    @pytest.mark.asyncio
    async def test_delete_cascades_state(self, rule_service, store):
        rule = await rule_service.create(valid_create())

        assert await rule_service.delete(rule.id) is True
        assert rule.id not in store.states
        assert await rule_service.get(rule.id) is None
        assert await rule_service.delete(rule.id) is False

    @pytest.mark.asyncio
    async def test_list_filters(self, rule_service):
        await rule_service.create(valid_create(merchant="acme", tags=["orders"]))
        await rule_service.create(valid_create(merchant="globex", tags=["billing"]))

        assert len(await rule_service.list()) == 2
        assert [r.merchant for r in await rule_service.list(merchant="globex")] == ["globex"]
        assert [r.merchant for r in await rule_service.list(tag="orders")] == ["acme"]
