"""Credit subsystem: credit lines, interest pricing, accrual, maturity and repayment.

The same functions serve the human player and agents. Agents pass
``notify=False`` and never produce notifications. Every function copies the
account it changes and returns the copy.
"""

from __future__ import annotations

import logging
import math
import random

from models.accounts import TraderAccount
from models.config import LoanConfig
from models.events import Notification
from models.loans import CreditEvent, CreditEventType, CreditLineInfo, DelinquencyRecord, InterestRateBreakdown, Loan
from models.market import Stock
from models.orders import CommandResult, CompletedTrade
from simulation.notifications import make_notification, new_id

logger = logging.getLogger(__name__)

_ROMAN = (
    (1000, "M"), (900, "CM"), (500, "D"), (400, "CD"), (100, "C"), (90, "XC"),
    (50, "L"), (40, "XL"), (10, "X"), (9, "IX"), (5, "V"), (4, "IV"), (1, "I"),
)
_EPSILON = 1e-9


def to_roman(number: int) -> str:
    result = []
    for value, numeral in _ROMAN:
        while number >= value:
            result.append(numeral)
            number -= value
    return "".join(result)


def loan_name(loan: Loan) -> str:
    return f"Loan #{to_roman(loan.loan_number)}"


# ---------------------------------------------------------------------------
# Credit line and pricing
# ---------------------------------------------------------------------------


def collateral_value(account: TraderAccount, stocks: list[Stock], config: LoanConfig) -> float:
    """Holdings valued at the large/small-cap collateral ratio plus base collateral.

    Cash does not count as collateral. Base collateral is a share of the
    starting capital and does not add to net worth.
    """
    by_symbol = {s.symbol: s for s in stocks}
    total = account.initial_cash * config.base_collateral_percent
    for holding in account.portfolio.holdings:
        stock = by_symbol.get(holding.symbol)
        if stock is None:
            continue
        value = stock.current_price * holding.shares
        if stock.market_cap_billions > config.large_cap_threshold_billions:
            total += value * config.large_cap_collateral_ratio
        else:
            total += value * config.small_cap_collateral_ratio
    return total


def credit_line_info(account: TraderAccount, stocks: list[Stock], config: LoanConfig) -> CreditLineInfo:
    collateral = collateral_value(account, stocks, config)
    recommended = math.floor(collateral / 1000) * 1000
    max_line = recommended * config.max_credit_line_multiplier
    debt = account.credit.total_debt
    return CreditLineInfo(
        collateral_value=collateral,
        recommended_credit_line=recommended,
        max_credit_line=max_line,
        current_debt=debt,
        available_credit=max(0.0, max_line - debt),
        utilization_ratio=debt / max_line if max_line > 0 else 0.0,
        active_loan_count=len(account.credit.loans),
    )


def credit_score_adjustment(credit_score: int, config: LoanConfig) -> float:
    """Rate surcharge below the neutral score, discount above it."""
    deviation = credit_score - config.initial_credit_score
    if deviation < 0:
        return abs(deviation) * config.credit_score_penalty_rate
    if deviation > 0:
        return -deviation * config.credit_score_bonus_rate
    return 0.0


def duration_discount(duration_cycles: int, config: LoanConfig) -> float:
    steps = (duration_cycles - config.min_loan_duration_cycles) // config.loan_duration_step_cycles
    if steps <= 0:
        return 0.0
    return -min(steps * config.duration_discount_per_step, config.max_duration_discount)


def progressive_overdue_penalty(overdue_for_cycles: int, config: LoanConfig) -> int:
    """Per-cycle score penalty that grows with the length of the delinquency."""
    multiplier = 1 + overdue_for_cycles // config.credit_score_progressive_threshold
    return min(config.credit_score_overdue_penalty_per_cycle * multiplier, config.credit_score_max_penalty_per_cycle)


def calculate_interest_rate(
    config: LoanConfig,
    risk_score: int | None = None,
    realized_profit_loss: float = 0.0,
    utilization_ratio: float = 0.0,
    loan_count: int = 1,
    total_trades: int = 0,
    credit_score: int | None = None,
    duration_cycles: int | None = None,
) -> InterestRateBreakdown:
    """Effective rate with every modifier, floored at ``min_interest_rate``.

    ``loan_count`` includes the loan being priced; the first loan carries
    no count penalty.
    """
    if credit_score is None:
        credit_score = config.initial_credit_score
    if duration_cycles is None:
        duration_cycles = config.default_loan_duration_cycles

    dampening = min(1.0, total_trades / config.min_trades_for_full_risk_impact)
    risk_adjustment = 0.0
    if risk_score is not None:
        if risk_score <= -34:
            risk_adjustment = config.conservative_interest_bonus * dampening
        elif risk_score >= 34:
            risk_adjustment = config.aggressive_interest_penalty * dampening

    history_adjustment = 0.0
    if realized_profit_loss < -config.loss_threshold_for_history_impact:
        excess = abs(realized_profit_loss) - config.loss_threshold_for_history_impact
        history_adjustment = min(
            config.max_profit_history_modifier,
            excess / 1000 * config.profit_history_modifier_rate,
        )

    if utilization_ratio >= 1.0:
        utilization = config.utilization_tier_100_surcharge
    elif utilization_ratio >= 0.75:
        utilization = config.utilization_tier_75_surcharge
    elif utilization_ratio >= 0.5:
        utilization = config.utilization_tier_50_surcharge
    else:
        utilization = 0.0

    count_penalty = max(0, loan_count - 1) * config.additional_loan_interest_penalty
    score_adjustment = credit_score_adjustment(credit_score, config)
    discount = duration_discount(duration_cycles, config)

    effective = max(
        config.min_interest_rate,
        config.base_interest_rate
        + risk_adjustment
        + history_adjustment
        + utilization
        + count_penalty
        + score_adjustment
        + discount,
    )
    return InterestRateBreakdown(
        base_rate=config.base_interest_rate,
        risk_profile_adjustment=risk_adjustment,
        profit_history_adjustment=history_adjustment,
        utilization_surcharge=utilization,
        loan_count_penalty=count_penalty,
        credit_score_adjustment=score_adjustment,
        duration_discount=discount,
        effective_rate=effective,
    )


def trading_risk_score(trades: list[CompletedTrade], initial_cash: float) -> int | None:
    """Risk score in [-100, 100] inferred from a trade history, or None with fewer than two trades.

    Holding duration is measured in cycles between a buy and the next sell
    of the same symbol.
    """
    if len(trades) < 2:
        return None
    sells = [t for t in trades if t.side == "sell" and t.realized_profit_loss is not None]
    buys = [t for t in trades if t.side == "buy"]
    losers = [t for t in sells if (t.realized_profit_loss or 0) < 0]

    score = 0.0
    avg_position_pct = (sum(t.total_amount for t in buys) / len(buys) / initial_cash * 100) if buys else 0.0
    if avg_position_pct < 10:
        score -= 20
    elif avg_position_pct > 30:
        score += min(40, avg_position_pct - 30)

    score += min(30, len(trades) * 1.5)

    durations = []
    for symbol in {t.symbol for t in trades}:
        ordered = sorted((t for t in trades if t.symbol == symbol), key=lambda t: t.cycle)
        for prev, curr in zip(ordered, ordered[1:]):
            if prev.side == "buy" and curr.side == "sell":
                durations.append(curr.cycle - prev.cycle)
    if durations:
        avg_duration = sum(durations) / len(durations)
        if avg_duration < 2:
            score += 20
        elif avg_duration < 5:
            score += 10
        elif avg_duration > 20:
            score -= 10

    if losers:
        loss_pcts = [
            abs((t.realized_profit_loss or 0) / (t.avg_buy_price * t.shares) * 100) if t.avg_buy_price else 0.0
            for t in losers
        ]
        avg_loss_pct = sum(loss_pcts) / len(loss_pcts)
        if avg_loss_pct > 10:
            score += 15
        elif avg_loss_pct < 5:
            score -= 10

    return int(max(-100, min(100, round(score))))


def validate_duration(duration_cycles: int, config: LoanConfig) -> str | None:
    if not config.min_loan_duration_cycles <= duration_cycles <= config.max_loan_duration_cycles:
        return (
            f"Loan duration must be between {config.min_loan_duration_cycles} "
            f"and {config.max_loan_duration_cycles} cycles"
        )
    if (duration_cycles - config.min_loan_duration_cycles) % config.loan_duration_step_cycles:
        return f"Loan duration must be a multiple of {config.loan_duration_step_cycles} cycles"
    return None


def pending_interest(account: TraderAccount, config: LoanConfig) -> float:
    """Interest accrued since the last charge but not yet added to balances."""
    cycles = account.credit.cycles_since_last_interest_charge
    if cycles == 0:
        return 0.0
    return sum(loan.balance * loan.interest_rate / config.interest_charge_cycles * cycles for loan in account.credit.loans)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _add_credit_event(
    account: TraderAccount,
    event_type: CreditEventType,
    change: int,
    loan_id: str,
    cycle: int,
    config: LoanConfig,
    description: str = "",
) -> None:
    credit = account.credit
    credit.credit_score = max(config.min_credit_score, min(config.max_credit_score, credit.credit_score + change))
    credit.credit_history.append(
        CreditEvent(type=event_type, change=change, loan_id=loan_id, cycle=cycle, description=description)
    )


def _resolve_delinquency(account: TraderAccount, loan_id: str, cycle: int) -> None:
    for record in account.credit.delinquency_history:
        if record.loan_id == loan_id and record.resolved_cycle is None:
            record.resolved_cycle = cycle
            return


def take_loan(
    account: TraderAccount,
    amount: float,
    duration_cycles: int,
    stocks: list[Stock],
    config: LoanConfig,
    rng: random.Random,
    cycle: int,
    risk_score: int | None = None,
    realized_profit_loss: float = 0.0,
) -> tuple[TraderAccount, CommandResult]:
    """Originate a loan. The origination fee is withheld from the disbursement."""
    if amount <= 0:
        return account, CommandResult(status="rejected", message="Loan amount must be positive")
    if len(account.credit.loans) >= config.max_loans:
        return account, CommandResult(status="rejected", message=f"At most {config.max_loans} loans allowed")
    problem = validate_duration(duration_cycles, config)
    if problem:
        return account, CommandResult(status="rejected", message=problem)

    info = credit_line_info(account, stocks, config)
    if info.collateral_value < config.min_collateral_for_loan:
        return account, CommandResult(status="rejected", message="Insufficient collateral")
    if amount > info.available_credit + _EPSILON:
        return account, CommandResult(
            status="rejected",
            message=f"Requested {amount:.2f} exceeds available credit {info.available_credit:.2f}",
        )

    utilization = (info.current_debt + amount) / info.max_credit_line if info.max_credit_line > 0 else 0.0
    rate = calculate_interest_rate(
        config,
        risk_score=risk_score,
        realized_profit_loss=realized_profit_loss,
        utilization_ratio=utilization,
        loan_count=len(account.credit.loans) + 1,
        total_trades=account.total_trades_executed,
        credit_score=account.credit.credit_score,
        duration_cycles=duration_cycles,
    ).effective_rate

    account = account.model_copy(deep=True)
    credit = account.credit
    fee = amount * config.origination_fee_percent
    loan = Loan(
        id=new_id(rng, "loan"),
        loan_number=credit.next_loan_number,
        principal=amount,
        balance=amount,
        interest_rate=rate,
        duration_cycles=duration_cycles,
        remaining_cycles=duration_cycles,
        created_cycle=cycle,
    )
    credit.loans.append(loan)
    credit.next_loan_number += 1
    credit.total_origination_fees_paid += fee
    account.portfolio.cash += amount - fee
    logger.debug("%s took %s: %.2f at %.2f%% for %d cycles", account.id, loan.id, amount, rate * 100, duration_cycles)
    return account, CommandResult(status="accepted", message=f"{loan_name(loan)} granted", loan_id=loan.id)


def repay_loan(
    account: TraderAccount,
    loan_id: str,
    config: LoanConfig,
    cycle: int,
    amount: float | None = None,
    reserved: float = 0.0,
) -> tuple[TraderAccount, CommandResult]:
    """Repay part or all of a loan from cash not *reserved* by open orders.

    Repaying before maturity costs an extra fee on the repaid amount. Full
    repayment adjusts the credit score: none while overdue (the delinquency
    is resolved), an early bonus before maturity, the on-time bonus otherwise.
    """
    loan = account.credit.loan(loan_id)
    if loan is None:
        return account, CommandResult(status="rejected", message=f"Unknown loan {loan_id}")
    if amount is None:
        amount = loan.balance
    if amount <= 0 or amount > loan.balance + _EPSILON:
        return account, CommandResult(status="rejected", message="Repayment must be positive and at most the balance")
    amount = min(amount, loan.balance)

    is_early = loan.remaining_cycles > 0 and not loan.is_overdue
    fee = amount * config.repayment_fee_percent if is_early else 0.0
    if account.portfolio.cash - reserved + _EPSILON < amount + fee:
        return account, CommandResult(status="rejected", message="Insufficient available cash", loan_id=loan_id)

    account = account.model_copy(deep=True)
    credit = account.credit
    loan = credit.loan(loan_id)
    account.portfolio.cash = max(0.0, account.portfolio.cash - amount - fee)
    loan.balance = max(0.0, loan.balance - amount)
    credit.total_repayment_fees_paid += fee

    if loan.balance <= _EPSILON:
        if loan.is_overdue:
            _resolve_delinquency(account, loan_id, cycle)
        elif is_early:
            _add_credit_event(account, "repaid_early", config.credit_score_early_bonus, loan_id, cycle, config)
        else:
            _add_credit_event(account, "repaid_on_time", config.credit_score_on_time_bonus, loan_id, cycle, config)
        credit.loans = [l for l in credit.loans if l.id != loan_id]
        return account, CommandResult(status="accepted", message=f"{loan_name(loan)} repaid", loan_id=loan_id)

    return account, CommandResult(status="accepted", message=f"{loan_name(loan)} partially repaid", loan_id=loan_id)


# ---------------------------------------------------------------------------
# Tick processing
# ---------------------------------------------------------------------------


def accrue_interest(account: TraderAccount, config: LoanConfig) -> TraderAccount:
    """Advance the interest counter; charge every loan once it reaches the cadence."""
    account = account.model_copy(deep=True)
    credit = account.credit
    credit.cycles_since_last_interest_charge += 1
    if credit.cycles_since_last_interest_charge < config.interest_charge_cycles:
        return account

    for loan in credit.loans:
        interest = loan.balance * loan.interest_rate / config.interest_charge_cycles
        loan.balance += interest
        loan.total_interest_paid += interest
        credit.total_interest_paid += interest
    credit.cycles_since_last_interest_charge = 0
    return account


def process_maturities(
    account: TraderAccount,
    config: LoanConfig,
    rng: random.Random,
    cycle: int,
    notify: bool = True,
) -> tuple[TraderAccount, list[Notification]]:
    """Due-soon warnings, then repayments of loans due now, then cycle decrement.

    A loan due now is repaid in full when cash allows. Otherwise all cash is
    applied, the loan turns overdue and the shortfall stays as its balance.
    Overdue loans accumulate overdue cycles with a progressive score penalty.
    """
    account = account.model_copy(deep=True)
    credit = account.credit
    notifications: list[Notification] = []

    for loan in credit.loans:
        if loan.is_overdue or loan.warning_shown:
            continue
        if 0 < loan.remaining_cycles <= config.loan_due_warning_cycles:
            loan.warning_shown = True
            if notify:
                notifications.append(
                    make_notification(
                        rng,
                        "warning",
                        "loan_due_soon",
                        "Loan due soon",
                        f"{loan_name(loan)} ({loan.principal:,.0f}) is due in {loan.remaining_cycles} cycles",
                        config.warning_ttl_ms,
                        cycle,
                        loan_id=loan.id,
                    )
                )

    repaid_ids: set[str] = set()
    for loan in credit.loans:
        if loan.is_overdue or loan.remaining_cycles != 0:
            continue
        due = loan.balance
        cash = account.portfolio.cash
        if cash + _EPSILON >= due:
            account.portfolio.cash = max(0.0, cash - due)
            loan.balance = 0.0
            repaid_ids.add(loan.id)
            _add_credit_event(account, "auto_repaid", config.credit_score_on_time_bonus, loan.id, cycle, config)
            if notify:
                notifications.append(
                    make_notification(
                        rng,
                        "success",
                        "loan_repaid",
                        "Loan repaid",
                        f"{loan_name(loan)} was repaid automatically ({due:,.2f})",
                        config.repaid_ttl_ms,
                        cycle,
                        loan_id=loan.id,
                    )
                )
        else:
            account.portfolio.cash = 0.0
            loan.balance = due - cash
            loan.is_overdue = True
            credit.delinquency_history.append(DelinquencyRecord(loan_id=loan.id, started_cycle=cycle))
            logger.debug("%s: %s overdue, shortfall %.2f", account.id, loan.id, loan.balance)
            if notify:
                notifications.append(
                    make_notification(
                        rng,
                        "error",
                        "loan_overdue",
                        "Loan overdue",
                        f"{loan_name(loan)} could not be repaid; {loan.balance:,.2f} outstanding",
                        0,
                        cycle,
                        loan_id=loan.id,
                    )
                )
    credit.loans = [l for l in credit.loans if l.id not in repaid_ids]

    for loan in credit.loans:
        if not loan.is_overdue:
            loan.remaining_cycles = max(0, loan.remaining_cycles - 1)
            continue
        loan.overdue_for_cycles += 1
        penalty = progressive_overdue_penalty(loan.overdue_for_cycles, config)
        _add_credit_event(
            account,
            "overdue",
            -penalty,
            loan.id,
            cycle,
            config,
            description=f"Overdue for {loan.overdue_for_cycles} cycles (penalty: {penalty})",
        )
        for record in credit.delinquency_history:
            if record.loan_id == loan.id and record.resolved_cycle is None:
                record.max_overdue_cycles = loan.overdue_for_cycles

    return account, notifications
