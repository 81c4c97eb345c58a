from __future__ import annotations

import pytest

from ideahub.models.tiles import TileType
from ideahub.services.tile_formulas import (
    LONG_TTL,
    SHORT_TTL,
    TILE_FORMULAS,
    get_formula,
    tile_references_for,
    ttl_for,
)


def test_every_tile_type_has_a_formula():
    assert set(TILE_FORMULAS) == set(TileType)
    for formula in TILE_FORMULAS.values():
        assert formula.formula_id
        assert formula.required_indices
        assert formula.ttl_seconds > 0


def test_pmf_weights_sum_to_one_and_describe_in_order():
    formula = get_formula("pmf_score")

    assert sum(formula.weights.values()) == pytest.approx(1.0)
    assert formula.describe() == "0.3×sentiment + 0.2×competition + 0.3×demand + 0.2×trends"


def test_ttl_lookup_falls_back_to_default():
    assert ttl_for("sentiment", 1) == SHORT_TTL
    assert ttl_for("market_size", 1) == LONG_TTL
    assert ttl_for("unknown_tile", 77) == 77
    assert get_formula("unknown_tile") is None


def test_purpose_references_are_tile_types():
    tile_types = {tile.value for tile in TileType}

    for purpose in ("market_overview", "competitor_deep", "pricing_deep", "news_recent",
                    "interest_trends", "reddit_sentiment", "twitter_buzz", "market_size",
                    "competitor_analysis", "something_else"):
        references = tile_references_for(purpose)
        assert references
        assert set(references) <= tile_types
        assert len(references) == len(set(references))


def test_unmatched_purpose_points_at_web_search():
    assert tile_references_for("mystery") == ["web_search"]
    assert "market_size" in tile_references_for("market_size")
