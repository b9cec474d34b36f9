"""Tests for the achievement rule engine.

Covers:
  - Catalog loading: rule validation, strict vs. non-strict, wrapper/metadata keys
  - Field resolution through the closed resolver table
  - Operator semantics, including type mismatches
  - evaluate_unlocked / newly_unlocked
  - predict_progress: trackable subset, sorting, limit, bestRank arithmetic
"""
import logging

import pytest

from chatxp.core.errors import ConfigError
from chatxp.models.gamification import AchievementRule, FieldRef, Namespace, Operator
from chatxp.services.rules import (
    COMPARATORS,
    FIELD_RESOLVERS,
    FieldKind,
    evaluate,
    evaluate_unlocked,
    load_catalog,
    newly_unlocked,
    parse_rule,
    predict_progress,
    resolve_field,
)
from tests.conftest import RAW_CATALOG, make_catalog, make_record


def rule(field: str, operator: str, value) -> AchievementRule:
    return parse_rule({"field": field, "operator": operator, "value": value})


# =============================================================================
# CATALOG LOADING
# =============================================================================

class TestParseRule:
    """Tests for rule validation at load time."""

    def test_valid_rule(self):
        parsed = rule("userData.totalMessages", ">=", 250)
        assert parsed.field == FieldRef(Namespace.USER_DATA, "totalMessages")
        assert parsed.operator is Operator.GTE
        assert parsed.value == 250

    @pytest.mark.parametrize("raw", [
        None,
        "userData.xp >= 10",
        {"operator": ">=", "value": 1},
        {"field": "totalMessages", "operator": ">=", "value": 1},
        {"field": "user.totalMessages", "operator": ">=", "value": 1},
        {"field": "stats.noSuchCounter", "operator": ">=", "value": 1},
        {"field": "userData.username", "operator": "==", "value": "bob"},
        {"field": "userData.xp", "operator": "=>", "value": 1},
        {"field": "userData.xp", "operator": ">=", "value": "ten"},
        {"field": "userData.xp", "operator": ">=", "value": True},
        {"field": "userData.xp", "operator": ">=", "value": [1]},
        {"field": "userData.xp", "operator": "includes", "value": 1},
        {"field": "stats.holidays", "operator": "==", "value": "christmas"},
    ])
    def test_malformed_rules_rejected(self, raw):
        """Malformed rules fail at load time instead of silently never matching."""
        with pytest.raises(ConfigError):
            parse_rule(raw)

    def test_field_ref_round_trips_to_path(self):
        assert str(rule("stats.mentionCount", ">", 3).field) == "stats.mentionCount"


class TestLoadCatalog:
    """Tests for load_catalog."""

    def test_loads_in_order_and_skips_metadata(self, catalog):
        assert catalog.ids()[0] == "first_words"
        assert "_metadata" not in catalog
        assert len(catalog) == len(RAW_CATALOG) - 1

    def test_accepts_achievements_wrapper(self):
        wrapped = load_catalog({"version": 2, "achievements": RAW_CATALOG}, strict=True)
        assert wrapped.ids() == make_catalog().ids()

    def test_camel_case_keys(self, catalog):
        assert catalog["choom"].game_category == "Cyberpunk 2077"

    def test_categories_in_first_appearance_order(self, catalog):
        assert catalog.categories()[:3] == ["messages", "streaks", "levels"]

    def test_not_an_object(self):
        with pytest.raises(ConfigError):
            load_catalog(["first_words"], strict=True)

    def test_strict_collects_every_problem(self):
        raw = dict(RAW_CATALOG)
        raw["broken_op"] = {"name": "Broken", "rule": {"field": "userData.xp", "operator": "=~", "value": 1}}
        raw["no_rule"] = {"name": "No Rule"}

        with pytest.raises(ConfigError) as exc_info:
            load_catalog(raw, strict=True)

        problems = exc_info.value.problems
        assert len(problems) == 2
        assert problems[0].startswith("broken_op")
        assert problems[1].startswith("no_rule")

    def test_strict_rejects_bad_rarity(self):
        raw = {"odd": {"rarity": "mythic", "rule": {"field": "userData.xp", "operator": ">=", "value": 1}}}
        with pytest.raises(ConfigError):
            load_catalog(raw, strict=True)

    def test_non_strict_marks_entries_non_evaluable(self, caplog):
        raw = dict(RAW_CATALOG)
        raw["ghost"] = {"name": "Ghost", "category": "special",
                        "rule": {"field": "stats.ghostSightings", "operator": ">=", "value": 1}}

        with caplog.at_level(logging.WARNING, logger="chatxp.services.rules"):
            catalog = load_catalog(raw, strict=False)

        ghost = catalog["ghost"]
        assert not ghost.evaluable
        assert ghost.name == "Ghost"
        assert "stats.ghostSightings" in ghost.load_error
        assert catalog.rejected == [ghost]
        assert "ghost" in caplog.text

    def test_non_evaluable_never_unlocks_or_predicts(self):
        raw = {"ghost": {"rule": {"field": "stats.ghostSightings", "operator": ">=", "value": 0}}}
        catalog = load_catalog(raw, strict=False)
        record = make_record()

        assert evaluate_unlocked(record, catalog) == set()
        assert predict_progress(record, catalog) == []


# =============================================================================
# FIELD RESOLUTION & OPERATORS
# =============================================================================

class TestFieldResolvers:
    """Tests for the closed resolver table."""

    def test_every_operator_has_a_comparator(self):
        assert set(COMPARATORS) == set(Operator)

    def test_trackable_fields_are_numeric(self):
        for field, spec in FIELD_RESOLVERS.items():
            if spec.trackable:
                assert spec.kind is FieldKind.NUMBER, field

    def test_user_data_fields(self):
        record = make_record(total_messages=42, achievements=["a", "b"])
        assert resolve_field(FieldRef.parse("userData.totalMessages"), record) == (True, 42)
        assert resolve_field(FieldRef.parse("userData.achievements"), record) == (True, ["a", "b"])
        assert resolve_field(FieldRef.parse("userData.achievements.length"), record) == (True, 2)

    def test_missing_stat_defaults(self):
        record = make_record()
        assert resolve_field(FieldRef.parse("stats.mentionCount"), record) == (True, 0)
        assert resolve_field(FieldRef.parse("stats.dethroned"), record) == (True, False)
        assert resolve_field(FieldRef.parse("stats.holidays"), record) == (True, [])
        assert resolve_field(FieldRef.parse("stats.bestRank"), record) == (True, None)

    def test_unknown_field_is_unresolved(self):
        assert resolve_field(FieldRef(Namespace.STATS, "secret"), make_record()) == (False, None)


class TestEvaluate:
    """Tests for evaluate: one rule against one record."""

    def test_gte_boundary(self):
        """{totalMessages >= 250}: 250 unlocks, 249 does not."""
        threshold = rule("userData.totalMessages", ">=", 250)
        assert evaluate(threshold, make_record(total_messages=250))
        assert not evaluate(threshold, make_record(total_messages=249))

    @pytest.mark.parametrize("value", [1, 7, 100, 5000])
    def test_gte_boundary_for_any_threshold(self, value):
        threshold = rule("userData.xp", ">=", value)
        assert evaluate(threshold, make_record(xp=value))
        assert not evaluate(threshold, make_record(xp=value - 1))

    @pytest.mark.parametrize("operator,value,expected", [
        (">", 10, True),
        (">", 11, False),
        ("<", 12, True),
        ("<", 11, False),
        ("<=", 11, True),
        ("<=", 10, False),
        ("==", 11, True),
        ("==", 12, False),
        ("!=", 12, True),
        ("!=", 11, False),
    ])
    def test_numeric_operators(self, operator, value, expected):
        record = make_record(achievement_stats={"mentionCount": 11})
        assert evaluate(rule("stats.mentionCount", operator, value), record) is expected

    def test_boolean_flag_equality(self):
        phoenix = rule("stats.phoenixAchieved", "==", True)
        assert evaluate(phoenix, make_record(achievement_stats={"phoenixAchieved": True}))
        assert not evaluate(phoenix, make_record(achievement_stats={"phoenixAchieved": False}))
        assert not evaluate(phoenix, make_record())

    def test_number_is_not_a_boolean(self):
        phoenix = rule("stats.phoenixAchieved", "==", True)
        assert not evaluate(phoenix, make_record(achievement_stats={"phoenixAchieved": 1}))

    def test_includes(self):
        christmas = rule("stats.holidays", "includes", "christmas")
        assert evaluate(christmas, make_record(achievement_stats={"holidays": ["halloween", "christmas"]}))
        assert not evaluate(christmas, make_record(achievement_stats={"holidays": ["halloween"]}))
        assert not evaluate(christmas, make_record())

    def test_includes_on_achievement_list(self):
        has_first = rule("userData.achievements", "includes", "first_words")
        assert evaluate(has_first, make_record(achievements=["first_words"]))
        assert not evaluate(has_first, make_record())

    def test_type_mismatch_never_matches(self):
        """A counter stored as a string cannot satisfy a numeric comparison."""
        record = make_record(achievement_stats={"mentionCount": "5"})
        assert not evaluate(rule("stats.mentionCount", ">=", 1), record)
        assert not evaluate(rule("stats.mentionCount", "==", 5), record)

    def test_absent_best_rank_never_matches(self):
        assert not evaluate(rule("stats.bestRank", "<=", 10), make_record())
        assert evaluate(rule("stats.bestRank", "<=", 10), make_record(achievement_stats={"bestRank": 4}))

    def test_unresolved_field_never_matches(self):
        """Rules built outside the loader still cannot read unlisted fields."""
        stray = AchievementRule(field="stats.secret", operator=">=", value=0)
        assert not evaluate(stray, make_record(achievement_stats={"secret": 10}))


class TestUnlocking:
    """Tests for evaluate_unlocked and newly_unlocked."""

    def test_evaluate_unlocked(self, catalog):
        record = make_record(
            total_messages=60,
            streak_days=0,
            achievement_stats={"holidays": ["christmas"], "phoenixAchieved": True},
        )
        assert evaluate_unlocked(record, catalog) == {"first_words", "chatterbox", "christmas", "phoenix"}

    def test_newly_unlocked_skips_held(self, catalog):
        record = make_record(total_messages=60, streak_days=0, achievements=["first_words"])
        assert [d.id for d in newly_unlocked(record, catalog)] == ["chatterbox"]

    def test_does_not_mutate_record(self, catalog):
        record = make_record(total_messages=60, achievements=["first_words"])
        newly_unlocked(record, catalog)
        assert record.achievement_ids == ["first_words"]


# =============================================================================
# PROGRESS PREDICTION
# =============================================================================

class TestPredictProgress:
    """Tests for predict_progress."""

    def test_almost_unlocked(self, catalog):
        """249 of 250 messages is 99.6% with one message remaining."""
        record = make_record(total_messages=249)
        predictions = {p.id: p for p in predict_progress(record, catalog, limit=20)}

        conversador = predictions["conversador"]
        assert conversador.progress == pytest.approx(99.6)
        assert conversador.remaining == 1
        assert conversador.current_value == 249
        assert conversador.target_value == 250
        assert conversador.is_close

    def test_sorted_by_progress_then_target(self, catalog):
        record = make_record(total_messages=249, streak_days=3, level=2)
        ids = [p.id for p in predict_progress(record, catalog, limit=20)]
        assert ids == ["streak_starter", "first_words", "chatterbox", "conversador", "level_10", "devoted"]

    def test_excludes_held_achievements(self, catalog):
        record = make_record(total_messages=249, achievements=["conversador", "first_words"])
        ids = {p.id for p in predict_progress(record, catalog, limit=20)}
        assert "conversador" not in ids
        assert "first_words" not in ids

    def test_excludes_untrackable_rules(self, catalog):
        """includes, ==, <= and non-trackable counters cannot express partial progress."""
        ids = {p.id for p in predict_progress(make_record(), catalog, limit=20)}
        assert ids.isdisjoint({"christmas", "phoenix", "top_10", "choom"})

    def test_default_limit(self, catalog):
        assert len(predict_progress(make_record(total_messages=249), catalog)) == 6

    def test_limit(self, catalog):
        assert len(predict_progress(make_record(), catalog, limit=2)) == 2
        assert predict_progress(make_record(), catalog, limit=0) == []

    def test_negative_limit(self, catalog):
        with pytest.raises(ValueError):
            predict_progress(make_record(), catalog, limit=-1)

    def test_not_close_below_threshold(self, catalog):
        predictions = {p.id: p for p in predict_progress(make_record(streak_days=3), catalog, limit=20)}
        assert predictions["devoted"].progress == pytest.approx(10.0)
        assert not predictions["devoted"].is_close

    def test_best_rank_uses_plain_ratio(self):
        """bestRank keeps the current/target arithmetic even though lower ranks are better."""
        catalog = load_catalog({
            "climber": {"rule": {"field": "stats.bestRank", "operator": ">=", "value": 10}},
        }, strict=True)

        ranked = predict_progress(make_record(achievement_stats={"bestRank": 5}), catalog)[0]
        assert ranked.progress == pytest.approx(50.0)
        assert ranked.remaining == 5

        unranked = predict_progress(make_record(), catalog)[0]
        assert unranked.current_value == 999
        assert unranked.progress == 100.0

    def test_zero_target_counts_as_complete(self):
        catalog = load_catalog({
            "anyone": {"rule": {"field": "userData.xp", "operator": ">", "value": 0}},
        }, strict=True)
        assert predict_progress(make_record(xp=0), catalog)[0].progress == 100.0
