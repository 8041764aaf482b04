"""
Token Scorer
============
Agent 2: hard-filters the watchlist and scores survivors 0-100.

Hard filters (any one rejects the token):
- Older than MAX_TOKEN_AGE_MINUTES since the scanner first saw it
- Market cap below MIN_MARKET_CAP_USD (dead launch)
- Mint authority or freeze authority still enabled
- Buy or sell tax above MAX_TAX_PCT

The score is additive across 5 dimensions:

1. Bonding curve (0-30 points)
   - 85-95% = graduation imminent (30)
   - 30-70% = sweet spot (25)
   - 15-30% or 70-85% = outer range (12)

2. Transaction count (0-20 points)
   - 100+ = 20, 50+ = 15, 20+ = 10, 5+ = 4

3. Market cap (0-20 points)
   - $5K-$80K = 20, $2K-$5K or $80K-$200K = 8

4. 5-minute velocity (0-20 points)
   - m5 change, or the change since the previous observation when the
     platform gave no m5 figure
   - 100%+ = 20, 30%+ = 15, 10%+ = 10, 3%+ = 5

5. Security bonus (0-10 points)
   - Graduated to a DEX +3, otherwise LP 100% locked +5 / 80%+ +3
   - Top holders under 50% +3, under 80% +1
   - Verified contract +2

Scoring is a pure function of the token snapshot: the same snapshot
always produces the same score, breakdown and reasoning. The scores file
is replaced wholesale every cycle.
"""

from collections import Counter
from datetime import datetime

from agent.runtime import Agent
from config.settings import Settings
from database.models import ScoreBreakdown, TokenScore, WatchedToken
from database.store import JsonDocumentStore
from utils.clock import seconds_since, utc_now
from utils.logger import get_logger

logger = get_logger(__name__)


def hard_filter(token: WatchedToken, settings: Settings, now: datetime | None = None) -> str | None:
    """Return a rejection reason, or None when the token may be scored."""
    age = seconds_since(token.first_seen, now)
    max_age = settings.max_token_age_minutes * 60
    if age is not None and age > max_age:
        return f"stale ({age / 60:.0f}min > {settings.max_token_age_minutes:.0f}min)"

    if token.market_cap < settings.min_market_cap_usd:
        return f"dead (mcap ${token.market_cap:.0f})"

    sec = token.securities
    if sec:
        if sec.mint_ability:
            return "mint enabled"
        if sec.freeze_ability:
            return "freeze enabled"
        if sec.buy_tax > settings.max_tax_pct:
            return f"buy tax {sec.buy_tax:g}%"
        if sec.sell_tax > settings.max_tax_pct:
            return f"sell tax {sec.sell_tax:g}%"

    return None


def velocity_pct(token: WatchedToken) -> float:
    if token.price_changes is not None:
        return token.price_changes.m5
    if token.prev_price and token.prev_price > 0:
        return (token.price - token.prev_price) / token.prev_price * 100
    return 0.0


def score_token(token: WatchedToken) -> TokenScore:
    reasons: list[str] = []
    bd = ScoreBreakdown()

    # 1. Bonding curve
    bc = token.bonding_curve_progress
    is_grad = 85 <= bc <= 95
    if is_grad:
        bd.bonding_curve = 30
        reasons.append(f"BC {bc:.0f}% graduation imminent (+30)")
    elif 30 <= bc <= 70:
        bd.bonding_curve = 25
        reasons.append(f"BC {bc:.0f}% sweet spot (+25)")
    elif 15 <= bc < 30 or 70 < bc < 85:
        bd.bonding_curve = 12
        reasons.append(f"BC {bc:.0f}% outer range (+12)")
    else:
        reasons.append(f"BC {bc:.0f}% outside scoring range (+0)")

    # 2. Transaction count
    tx = token.tx_count
    for floor, points in ((100, 20), (50, 15), (20, 10), (5, 4)):
        if tx >= floor:
            bd.tx_count = points
            reasons.append(f"txCount {tx} >= {floor} (+{points})")
            break
    else:
        reasons.append(f"txCount {tx} < 5 (+0)")

    # 3. Market cap
    mc = token.market_cap
    if 5_000 <= mc <= 80_000:
        bd.market_cap = 20
        reasons.append(f"mcap ${mc / 1000:.1f}K in $5K-$80K (+20)")
    elif 2_000 <= mc < 5_000 or 80_000 < mc <= 200_000:
        bd.market_cap = 8
        reasons.append(f"mcap ${mc / 1000:.1f}K outer range (+8)")
    else:
        reasons.append(f"mcap ${mc / 1000:.1f}K outside range (+0)")

    # 4. Velocity
    m5 = velocity_pct(token)
    for floor, points, label in ((100, 20, "surge"), (30, 15, "strong"), (10, 10, "momentum"), (3, 5, "slight")):
        if m5 >= floor:
            bd.velocity = points
            reasons.append(f"m5 +{m5:.0f}% {label} (+{points})")
            break
    else:
        reasons.append(f"m5 {m5:.0f}% flat/down (+0)")

    # 5. Security bonus
    sec = token.securities
    if sec:
        points = 0
        # Graduated tokens show 0% LP lock on the DEX, so graduation earns the LP credit
        if token.is_listed_on_dex:
            points += 3
            reasons.append("graduated (LP on DEX +3)")
        elif sec.lp_lock_pct >= 100:
            points += 5
            reasons.append("LP 100% locked (+5)")
        elif sec.lp_lock_pct >= 80:
            points += 3
            reasons.append(f"LP {sec.lp_lock_pct:.0f}% locked (+3)")

        if sec.top_holders_pct < 50:
            points += 3
            reasons.append(f"whales {sec.top_holders_pct:.0f}% < 50% (+3)")
        elif sec.top_holders_pct < 80:
            points += 1
            reasons.append(f"whales {sec.top_holders_pct:.0f}% < 80% (+1)")

        if sec.contract_verified == 1:
            points += 2
            reasons.append("verified (+2)")
        bd.security = min(points, 10)

    return TokenScore(
        address=token.address,
        name=token.name,
        symbol=token.symbol,
        score=bd.total,
        breakdown=bd,
        reasoning="; ".join(reasons),
        current_price=token.price,
        prev_price=token.prev_price,
        price_changes=token.price_changes,
        market_cap=mc,
        tx_count=tx,
        bonding_curve_progress=bc,
        is_graduation_candidate=is_grad,
    )


def rank_tokens(
    tokens: list[WatchedToken],
    settings: Settings,
    now: datetime | None = None,
) -> tuple[list[TokenScore], Counter]:
    """Filter and score a watchlist. Returns (scores best first, rejection counts)."""
    now = now or utc_now()
    rejections: Counter = Counter()
    scores = []
    for token in tokens:
        reason = hard_filter(token, settings, now)
        if reason:
            rejections[reason] += 1
            continue
        scores.append(score_token(token))
    scores.sort(key=lambda s: s.score, reverse=True)
    return scores, rejections


class TokenAnalyst(Agent):
    """
    Usage:
        analyst = TokenAnalyst(settings)
        await run_agent(analyst)
    """

    name = "analyst"

    def __init__(self, settings: Settings):
        super().__init__(settings, settings.analyst_interval)
        self.watchlist = JsonDocumentStore(settings.watchlist_path, "tokens")
        self.scores = JsonDocumentStore(settings.scores_path, "scores")

    async def tick(self) -> None:
        tokens = [WatchedToken.from_dict(item) for item in self.watchlist.read()]
        if not tokens:
            logger.info("analyst_watchlist_empty")
            return

        scores, rejections = rank_tokens(tokens, self.settings)

        if not scores and rejections:
            top = ", ".join(f"{reason} ({count})" for reason, count in rejections.most_common(3))
            logger.info("analyst_all_filtered", rejected=sum(rejections.values()), top_reasons=top)

        self.scores.write([s.to_dict() for s in scores])

        above = [s for s in scores if s.score > self.settings.score_threshold]
        logger.info(
            "scores_written",
            scored=len(scores),
            rejected=sum(rejections.values()),
            above_threshold=len(above),
            top=f"{scores[0].symbol}={scores[0].score}" if scores else "-",
        )
