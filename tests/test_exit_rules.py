"""
Exit rule tests: staged swing exits, ratcheting stops, scalp trailing.
"""

from datetime import timedelta

import pytest

from conftest import make_position
from database.models import ExitReason, Strategy
from trader.exit_rules import effective_stop_loss, evaluate_scalp, evaluate_swing, next_peak, pnl_pct
from utils.clock import utc_now


class TestSwingStages:
    """The de-risk-then-ride state machine."""

    def test_plus_25_sells_first_third(self, settings):
        """+25% exactly at stage 0 is the first partial."""
        now = utc_now()
        position = make_position(now=now)
        decision = evaluate_swing(position, 1.25, now, settings)
        assert decision is not None
        assert decision.reason == ExitReason.TAKE_PROFIT
        assert decision.is_partial
        assert decision.new_stage == 1

    def test_just_below_25_holds(self, settings):
        now = utc_now()
        assert evaluate_swing(make_position(now=now), 1.24, now, settings) is None

    def test_plus_50_moves_stage_1_to_2(self, settings):
        now = utc_now()
        position = make_position(exit_stage=1, now=now)
        decision = evaluate_swing(position, 1.5, now, settings)
        assert decision.new_stage == 2

    def test_stage_1_does_not_repeat_first_partial(self, settings):
        """At stage 1, +30% is neither a partial nor a stop."""
        now = utc_now()
        position = make_position(exit_stage=1, now=now)
        assert evaluate_swing(position, 1.30, now, settings) is None

    def test_plus_100_closes_at_stage_2(self, settings):
        now = utc_now()
        position = make_position(exit_stage=2, now=now)
        decision = evaluate_swing(position, 2.0, now, settings)
        assert decision.reason == ExitReason.TAKE_PROFIT
        assert not decision.is_partial

    def test_big_jump_at_stage_0_only_takes_first_partial(self, settings):
        """A +120% tick at stage 0 still advances one stage at a time."""
        now = utc_now()
        decision = evaluate_swing(make_position(now=now), 2.2, now, settings)
        assert decision.is_partial
        assert decision.new_stage == 1


class TestRatchetingStop:
    """The stop level is a function of the stage alone."""

    @pytest.mark.parametrize("stage,expected", [(0, -5), (1, 0), (2, 15)])
    def test_stop_per_stage(self, settings, stage, expected):
        assert effective_stop_loss(stage, settings) == expected

    def test_stage_0_stop_at_minus_5(self, settings):
        now = utc_now()
        decision = evaluate_swing(make_position(now=now), 0.95, now, settings)
        assert decision.reason == ExitReason.STOP_LOSS
        assert decision.stop_pct == -5

    def test_stage_0_minus_4_holds(self, settings):
        now = utc_now()
        assert evaluate_swing(make_position(now=now), 0.96, now, settings) is None

    def test_stage_1_above_breakeven_holds(self, settings):
        now = utc_now()
        position = make_position(exit_stage=1, now=now)
        assert evaluate_swing(position, 1.01, now, settings) is None

    def test_stage_1_below_breakeven_stops(self, settings):
        now = utc_now()
        position = make_position(exit_stage=1, now=now)
        decision = evaluate_swing(position, 0.99, now, settings)
        assert decision.reason == ExitReason.STOP_LOSS
        assert decision.stop_pct == 0

    def test_stage_2_stop_locks_15_pct(self, settings):
        now = utc_now()
        position = make_position(exit_stage=2, now=now)
        assert evaluate_swing(position, 1.14, now, settings).reason == ExitReason.STOP_LOSS
        assert evaluate_swing(position, 1.20, now, settings) is None


class TestSwingTimeExpiry:

    def test_expiry_after_20_minutes(self, settings):
        now = utc_now()
        position = make_position(held_seconds=21 * 60, now=now)
        decision = evaluate_swing(position, 1.10, now, settings)
        assert decision.reason == ExitReason.TIME_EXPIRY

    def test_expiry_wins_over_take_profit(self, settings):
        """An expired position closes whole even if a partial level is hit."""
        now = utc_now()
        position = make_position(held_seconds=21 * 60, now=now)
        decision = evaluate_swing(position, 1.30, now, settings)
        assert decision.reason == ExitReason.TIME_EXPIRY
        assert not decision.is_partial

    def test_19_minutes_is_not_expired(self, settings):
        now = utc_now()
        position = make_position(held_seconds=19 * 60, now=now)
        assert evaluate_swing(position, 1.10, now, settings) is None


class TestScalpExits:

    def _scalp(self, now, **kwargs):
        return make_position(position_id="scalp-1", strategy=Strategy.SCALP, held_seconds=5, now=now, **kwargs)

    def test_take_profit_at_10(self, settings):
        now = utc_now()
        decision = evaluate_scalp(self._scalp(now), 1.10, now, settings)
        assert decision.reason == ExitReason.TAKE_PROFIT

    def test_stop_loss_at_minus_3(self, settings):
        now = utc_now()
        decision = evaluate_scalp(self._scalp(now), 0.97, now, settings)
        assert decision.reason == ExitReason.STOP_LOSS

    def test_trailing_stop_after_peak(self, settings):
        """Peak +5%, then 2% off the peak -> take_profit via the trail."""
        now = utc_now()
        position = self._scalp(now)

        assert evaluate_scalp(position, 1.05, now, settings) is None
        position.peak_price = next_peak(position, 1.05)

        decision = evaluate_scalp(position, 1.029, now, settings)
        assert decision is not None
        assert decision.reason == ExitReason.TAKE_PROFIT
        assert decision.note.startswith("trailing")

    def test_trail_needs_activation(self, settings):
        """A 2% pullback from a +2% peak is not a trailing exit."""
        now = utc_now()
        position = self._scalp(now, peak_price=1.02)
        assert evaluate_scalp(position, 0.9996, now, settings) is None

    def test_max_hold_30s(self, settings):
        now = utc_now()
        position = self._scalp(now)
        later = now + timedelta(seconds=26)
        assert evaluate_scalp(position, 1.01, later, settings).reason == ExitReason.TIME_EXPIRY


class TestPeakAndReplay:

    def test_peak_never_decreases(self):
        position = make_position(strategy=Strategy.SCALP)
        peaks = []
        for price in [1.0, 1.04, 1.02, 1.06, 0.98]:
            position.peak_price = next_peak(position, price)
            peaks.append(position.peak_price)
        assert peaks == sorted(peaks)
        assert peaks[-1] == 1.06

    def test_replay_is_deterministic(self, settings):
        """Same ticks against the same position give the same decisions."""
        now = utc_now()
        ticks = [1.02, 1.26, 1.1, 0.99, 1.55]

        def replay():
            position = make_position(now=now)
            out = []
            for price in ticks:
                decision = evaluate_swing(position, price, now, settings)
                out.append(decision)
                if decision and decision.is_partial:
                    position.exit_stage = decision.new_stage
                elif decision:
                    break
            return out

        assert replay() == replay()

    def test_pnl_pct_zero_entry(self):
        assert pnl_pct(0, 1.0) == 0.0
