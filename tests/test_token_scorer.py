"""
Token scoring tests: hard filters, tier boundaries, determinism.
"""

import pytest

from conftest import make_token
from database.models import TokenSecurities
from analyzer.token_scorer import TokenAnalyst, hard_filter, rank_tokens, score_token
from database.store import JsonDocumentStore
from utils.clock import utc_now


class TestHardFilters:

    def test_fresh_clean_token_passes(self, settings):
        assert hard_filter(make_token(), settings) is None

    def test_stale_token_rejected(self, settings):
        reason = hard_filter(make_token(age_seconds=61 * 60), settings)
        assert reason.startswith("stale")

    def test_dead_launch_rejected(self, settings):
        assert hard_filter(make_token(market_cap=900), settings).startswith("dead")

    @pytest.mark.parametrize("securities,expected", [
        (TokenSecurities(mint_ability=True), "mint enabled"),
        (TokenSecurities(freeze_ability=True), "freeze enabled"),
        (TokenSecurities(buy_tax=6), "buy tax 6%"),
        (TokenSecurities(sell_tax=10), "sell tax 10%"),
    ])
    def test_security_rejections(self, settings, securities, expected):
        assert hard_filter(make_token(securities=securities), settings) == expected

    def test_tax_at_limit_passes(self, settings):
        assert hard_filter(make_token(securities=TokenSecurities(buy_tax=5, sell_tax=5)), settings) is None


class TestScoreTiers:

    def test_sweet_spot_token(self):
        token = make_token(
            bonding_curve=50, tx_count=120, market_cap=10_000, m5=35,
            securities=TokenSecurities(lp_lock_pct=100, top_holders_pct=40, contract_verified=1),
        )
        score = score_token(token)
        assert score.breakdown.bonding_curve == 25
        assert score.breakdown.tx_count == 20
        assert score.breakdown.market_cap == 20
        assert score.breakdown.velocity == 15
        assert score.breakdown.security == 10
        assert score.score == 90
        assert "BC 50% sweet spot (+25)" in score.reasoning
        assert "txCount 120 >= 100 (+20)" in score.reasoning

    def test_graduation_candidate(self):
        score = score_token(make_token(bonding_curve=90))
        assert score.breakdown.bonding_curve == 30
        assert score.is_graduation_candidate

    @pytest.mark.parametrize("bc,points", [(10, 0), (15, 12), (30, 25), (70, 25), (71, 12), (96, 0)])
    def test_bonding_curve_bands(self, bc, points):
        assert score_token(make_token(bonding_curve=bc)).breakdown.bonding_curve == points

    @pytest.mark.parametrize("mc,points", [(1_500, 0), (2_000, 8), (5_000, 20), (80_000, 20), (150_000, 8), (250_000, 0)])
    def test_market_cap_bands(self, mc, points):
        assert score_token(make_token(market_cap=mc)).breakdown.market_cap == points

    def test_velocity_falls_back_to_prev_price(self):
        token = make_token(price=0.00015, prev_price=0.0001)
        assert score_token(token).breakdown.velocity == 15

    def test_graduated_gets_lp_credit(self):
        token = make_token(securities=TokenSecurities(lp_lock_pct=0))
        token.is_listed_on_dex = True
        assert score_token(token).breakdown.security == 3

    def test_scoring_is_deterministic(self):
        token = make_token(m5=12, tx_count=60)
        assert score_token(token) == score_token(token)


class TestRanking:

    def test_rank_best_first_and_counts_rejections(self, settings):
        now = utc_now()
        tokens = [
            make_token(address="a", symbol="LOW", bonding_curve=5, now=now),
            make_token(address="b", symbol="HIGH", bonding_curve=50, tx_count=150, m5=120, now=now),
            make_token(address="c", symbol="RUG", securities=TokenSecurities(mint_ability=True), now=now),
        ]
        scores, rejections = rank_tokens(tokens, settings, now)
        assert [s.symbol for s in scores] == ["HIGH", "LOW"]
        assert rejections["mint enabled"] == 1

    @pytest.mark.asyncio
    async def test_analyst_tick_writes_scores(self, settings):
        JsonDocumentStore(settings.watchlist_path, "tokens").write([make_token().to_dict()])
        analyst = TokenAnalyst(settings)
        await analyst.tick()

        scores = JsonDocumentStore(settings.scores_path, "scores").read()
        assert len(scores) == 1
        assert scores[0]["address"] == "Mint111"
