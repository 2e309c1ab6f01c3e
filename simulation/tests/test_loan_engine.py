"""Tests for credit lines, interest pricing, accrual, maturity and repayment."""

import random

import pytest

from models.accounts import HumanPlayer
from models.config import LoanConfig
from models.loans import CreditAccount, Loan
from models.orders import CompletedTrade
from models.portfolio import Holding, Portfolio
from simulation.loans import (
    accrue_interest,
    calculate_interest_rate,
    credit_line_info,
    loan_name,
    pending_interest,
    process_maturities,
    repay_loan,
    take_loan,
    trading_risk_score,
    validate_duration,
)


@pytest.fixture
def loan_config() -> LoanConfig:
    return LoanConfig()


def _account(cash: float, loans: list[Loan] | None = None, holdings=None, initial_cash: float = 100_000) -> HumanPlayer:
    return HumanPlayer(
        portfolio=Portfolio(cash=cash, holdings=holdings or []),
        initial_cash=initial_cash,
        credit=CreditAccount(loans=loans or []),
    )


def _loan(balance: float, remaining: int, loan_id: str = "loan_1", **extra) -> Loan:
    return Loan(
        id=loan_id,
        loan_number=1,
        principal=balance,
        balance=balance,
        interest_rate=0.06,
        duration_cycles=40,
        remaining_cycles=remaining,
        **extra,
    )


# =============================================================================
# MATURITY
# =============================================================================


class TestMaturity:

    def test_full_repayment_when_cash_suffices(self, loan_config):
        account = _account(20_000, [_loan(10_000, 0)])
        updated, notes = process_maturities(account, loan_config, random.Random(1), cycle=12)
        assert updated.portfolio.cash == pytest.approx(10_000)
        assert updated.credit.loans == []
        assert len(notes) == 1
        assert notes[0].kind == "success"
        assert notes[0].loan_id == "loan_1"
        assert updated.credit.credit_score == 53

    def test_shortfall_marks_overdue(self, loan_config):
        account = _account(3_000, [_loan(10_000, 0)])
        updated, notes = process_maturities(account, loan_config, random.Random(1), cycle=12)
        loan = updated.credit.loan("loan_1")
        assert updated.portfolio.cash == 0
        assert loan.is_overdue
        assert loan.balance == pytest.approx(7_000)
        assert [n.kind for n in notes] == ["error"]
        assert notes[0].ttl_ms == 0
        assert notes[0].loan_id == "loan_1"
        assert updated.credit.delinquency_history[0].loan_id == "loan_1"

    def test_due_soon_warning_once(self, loan_config):
        account = _account(50_000, [_loan(10_000, 4)])
        updated, notes = process_maturities(account, loan_config, random.Random(1), cycle=1)
        assert [n.category for n in notes] == ["loan_due_soon"]
        assert updated.credit.loans[0].remaining_cycles == 3
        again, notes = process_maturities(updated, loan_config, random.Random(1), cycle=2)
        assert notes == []
        assert again.credit.loans[0].remaining_cycles == 2

    def test_overdue_penalty_grows(self, loan_config):
        account = _account(0, [_loan(5_000, 0, is_overdue=True, overdue_for_cycles=4)])
        updated, _ = process_maturities(account, loan_config, random.Random(1), cycle=30)
        # fifth overdue cycle: 1 * (1 + 5 // 5)
        assert updated.credit.credit_score == 48
        assert updated.credit.loans[0].overdue_for_cycles == 5

    def test_silent_for_agents(self, loan_config):
        account = _account(20_000, [_loan(10_000, 0)])
        updated, notes = process_maturities(account, loan_config, random.Random(1), cycle=3, notify=False)
        assert notes == []
        assert updated.credit.loans == []

    def test_input_untouched(self, loan_config):
        account = _account(20_000, [_loan(10_000, 0)])
        process_maturities(account, loan_config, random.Random(1), cycle=3)
        assert account.portfolio.cash == 20_000
        assert len(account.credit.loans) == 1


# =============================================================================
# INTEREST
# =============================================================================


class TestInterest:

    def test_charged_on_cadence(self, loan_config):
        account = _account(0, [_loan(10_000, 40)])
        for _ in range(19):
            account = accrue_interest(account, loan_config)
        assert account.credit.loans[0].balance == pytest.approx(10_000)
        assert pending_interest(account, loan_config) == pytest.approx(10_000 * 0.06 / 20 * 19)
        account = accrue_interest(account, loan_config)
        assert account.credit.loans[0].balance == pytest.approx(10_030)
        assert account.credit.cycles_since_last_interest_charge == 0

    def test_base_rate_with_default_duration(self, loan_config):
        breakdown = calculate_interest_rate(loan_config)
        assert breakdown.duration_discount == pytest.approx(-0.005)
        assert breakdown.effective_rate == pytest.approx(0.055)

    def test_modifiers_add_up(self, loan_config):
        breakdown = calculate_interest_rate(
            loan_config,
            risk_score=80,
            utilization_ratio=0.8,
            loan_count=2,
            total_trades=5,
            credit_score=40,
            duration_cycles=20,
        )
        assert breakdown.risk_profile_adjustment == pytest.approx(0.01)
        assert breakdown.utilization_surcharge == pytest.approx(0.03)
        assert breakdown.loan_count_penalty == pytest.approx(0.01)
        assert breakdown.credit_score_adjustment == pytest.approx(0.01)
        assert breakdown.effective_rate == pytest.approx(0.06 + 0.01 + 0.03 + 0.01 + 0.01)

    def test_rate_floor(self, loan_config):
        breakdown = calculate_interest_rate(loan_config, risk_score=-90, total_trades=50, credit_score=100, duration_cycles=100)
        assert breakdown.effective_rate >= loan_config.min_interest_rate

    def test_loss_history_surcharge_capped(self, loan_config):
        breakdown = calculate_interest_rate(loan_config, realized_profit_loss=-10_000_000)
        assert breakdown.profit_history_adjustment == pytest.approx(0.02)


# =============================================================================
# CREDIT LINE AND COMMANDS
# =============================================================================


class TestCommands:

    def test_credit_line_uses_holdings_and_base_collateral(self, make_stock, loan_config):
        stocks = [make_stock("AAPL", prices=[100.0], market_cap_billions=3000)]
        account = _account(0, holdings=[Holding(symbol="AAPL", shares=100, avg_buy_price=90)])
        info = credit_line_info(account, stocks, loan_config)
        assert info.collateral_value == pytest.approx(25_000 + 7_000)
        assert info.recommended_credit_line == 32_000
        assert info.max_credit_line == pytest.approx(80_000)

    def test_take_loan_withholds_origination_fee(self, make_stock, loan_config):
        account = _account(1_000)
        updated, result = take_loan(account, 10_000, 40, [make_stock()], loan_config, random.Random(1), cycle=0)
        assert result.status == "accepted"
        assert updated.portfolio.cash == pytest.approx(1_000 + 10_000 - 150)
        assert loan_name(updated.credit.loans[0]) == "Loan #I"
        assert updated.credit.next_loan_number == 2

    def test_take_loan_rejections(self, make_stock, loan_config):
        account = _account(1_000)
        stocks = [make_stock()]
        _, too_much = take_loan(account, 10_000_000, 40, stocks, loan_config, random.Random(1), cycle=0)
        _, bad_duration = take_loan(account, 1_000, 30, stocks, loan_config, random.Random(1), cycle=0)
        full = _account(1_000, [_loan(1, 40, f"l{i}") for i in range(3)])
        _, max_loans = take_loan(full, 1_000, 40, stocks, loan_config, random.Random(1), cycle=0)
        assert too_much.status == bad_duration.status == max_loans.status == "rejected"

    def test_early_repayment_fee_and_bonus(self, loan_config):
        account = _account(20_000, [_loan(10_000, 20)])
        updated, result = repay_loan(account, "loan_1", loan_config, cycle=5)
        assert result.status == "accepted"
        assert updated.portfolio.cash == pytest.approx(20_000 - 10_000 - 50)
        assert updated.credit.loans == []
        assert updated.credit.credit_score == 55

    def test_partial_repayment_keeps_loan(self, loan_config):
        account = _account(20_000, [_loan(10_000, 20)])
        updated, _ = repay_loan(account, "loan_1", loan_config, cycle=5, amount=4_000)
        assert updated.credit.loans[0].balance == pytest.approx(6_000)

    def test_repay_rejects_insufficient_cash(self, loan_config):
        account = _account(100, [_loan(10_000, 20)])
        updated, result = repay_loan(account, "loan_1", loan_config, cycle=5)
        assert result.status == "rejected"
        assert updated is account

    def test_repay_keeps_reserved_cash(self, loan_config):
        # early repayment of 10,000 costs 10,050
        account = _account(20_000, [_loan(10_000, 20)])
        updated, result = repay_loan(account, "loan_1", loan_config, cycle=5, reserved=15_000)
        assert (result.status, result.message) == ("rejected", "Insufficient available cash")
        assert updated is account
        updated, result = repay_loan(account, "loan_1", loan_config, cycle=5, reserved=9_950)
        assert result.status == "accepted"
        assert updated.portfolio.cash == pytest.approx(9_950)

    def test_overdue_repayment_resolves_delinquency(self, loan_config):
        account = _account(3_000, [_loan(10_000, 0)])
        overdue, _ = process_maturities(account, loan_config, random.Random(1), cycle=10)
        overdue = overdue.model_copy(update={"portfolio": Portfolio(cash=8_000)})
        repaid, result = repay_loan(overdue, "loan_1", loan_config, cycle=14)
        assert result.status == "accepted"
        assert repaid.portfolio.cash == pytest.approx(1_000)
        assert repaid.credit.delinquency_history[0].resolved_cycle == 14

    def test_duration_validation(self, loan_config):
        assert validate_duration(40, loan_config) is None
        assert validate_duration(100, loan_config) is None
        assert validate_duration(10, loan_config) is not None
        assert validate_duration(50, loan_config) is not None


class TestRiskScore:

    def test_needs_two_trades(self):
        assert trading_risk_score([], 100_000) is None

    def test_frequent_large_trades_score_aggressive(self):
        trades = []
        for i in range(10):
            trades.append(
                CompletedTrade(id=f"b{i}", symbol="AAPL", side="buy", shares=400, price_per_share=100,
                               total_amount=40_000, cycle=2 * i)
            )
            trades.append(
                CompletedTrade(id=f"s{i}", symbol="AAPL", side="sell", shares=400, price_per_share=85,
                               total_amount=34_000, cycle=2 * i + 1, realized_profit_loss=-6_000,
                               avg_buy_price=100)
            )
        assert trading_risk_score(trades, 100_000) >= 34
