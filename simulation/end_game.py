"""Net worth, risk classification and final ranking of all participants."""

from __future__ import annotations

import logging

from models.accounts import HumanPlayer, TraderAccount
from models.agents import VirtualPlayer
from models.config import LoanConfig
from models.world import EndGameStats, PlayerEndStats, RiskLevel, WorldState
from simulation.loans import pending_interest

logger = logging.getLogger(__name__)


def holdings_value(account: TraderAccount, prices: dict[str, float]) -> float:
    return sum(prices.get(h.symbol, 0.0) * h.shares for h in account.portfolio.holdings)


def short_unrealized_pl(account: TraderAccount, prices: dict[str, float]) -> float:
    """Unrealized short P/L; a symbol without a price is valued at its entry."""
    return sum(
        (p.entry_price - prices.get(p.symbol, p.entry_price)) * p.shares for p in account.short_positions
    )


def net_worth(account: TraderAccount, prices: dict[str, float], config: LoanConfig) -> float:
    """Cash + holdings - loan balances - uncharged interest + unrealized short P/L."""
    return (
        account.portfolio.cash
        + holdings_value(account, prices)
        - account.credit.total_debt
        - pending_interest(account, config)
        + short_unrealized_pl(account, prices)
    )


def _level(score: int) -> RiskLevel:
    if score >= 4:
        return "aggressive"
    if score >= 2:
        return "moderate"
    return "conservative"


def _diversification_points(account: TraderAccount) -> int:
    count = len(account.portfolio.holdings)
    if count <= 2:
        return 2
    if count <= 4:
        return 1
    return 0


def _ratio_points(ratio: float) -> int:
    if ratio > 0.5:
        return 2
    if ratio > 0.2:
        return 1
    return 0


def player_risk_level(player: HumanPlayer, cycles: int) -> RiskLevel:
    """Classify the human from trade frequency, diversification and peak loan utilization."""
    trades_per_cycle = player.total_trades_executed / max(cycles, 1)
    score = 0
    if trades_per_cycle > 0.5:
        score += 2
    elif trades_per_cycle > 0.2:
        score += 1
    score += _diversification_points(player)
    score += _ratio_points(player.max_loan_utilization)
    return _level(score)


def agent_risk_level(agent: VirtualPlayer, prices: dict[str, float]) -> RiskLevel:
    """Classify an agent from diversification, debt load and concentration."""
    invested = holdings_value(agent, prices)
    worth = agent.portfolio.cash + invested
    debt_ratio = agent.credit.total_debt / worth if worth > 0 else 0.0

    score = _diversification_points(agent) + _ratio_points(debt_ratio)
    if invested > 0:
        largest = max(prices.get(h.symbol, 0.0) * h.shares for h in agent.portfolio.holdings)
        if largest / invested > 0.5:
            score += 1
    return _level(score)


def calculate_end_game_stats(world: WorldState, config: LoanConfig) -> EndGameStats:
    """Rank the human and all agents by net worth."""
    prices = world.prices()
    player = world.player
    player_worth = net_worth(player, prices, config)
    player_level = player_risk_level(player, world.session.current_cycle)

    ranked = [
        PlayerEndStats(
            id=player.id,
            name=player.name,
            net_worth=player_worth,
            profit=player_worth - player.initial_cash,
            risk_level=player_level,
            is_human=True,
        )
    ]
    for agent in world.agents:
        worth = net_worth(agent, prices, config)
        ranked.append(
            PlayerEndStats(
                id=agent.id,
                name=agent.name,
                net_worth=worth,
                profit=worth - agent.initial_cash,
                risk_level=agent_risk_level(agent, prices),
                is_human=False,
            )
        )
    ranked.sort(key=lambda p: p.net_worth, reverse=True)
    ranking = next(i for i, p in enumerate(ranked, start=1) if p.is_human)
    logger.info("Game over: player ranked %d of %d with net worth %.2f", ranking, len(ranked), player_worth)
    return EndGameStats(
        player_ranking=ranking,
        player_net_worth=player_worth,
        player_profit=player_worth - player.initial_cash,
        player_risk_level=player_level,
        all_players_ranked=ranked,
    )
