"""Credit models: loans, credit events, delinquency records, and the credit account."""

from typing import Literal

from pydantic import BaseModel, Field

CreditEventType = Literal["repaid_early", "repaid_on_time", "auto_repaid", "overdue"]


class Loan(BaseModel):
    """A single loan. ``loan_number`` is a per-account sequence used for display names."""

    id: str
    loan_number: int
    principal: float
    balance: float = Field(ge=0)
    interest_rate: float
    duration_cycles: int
    remaining_cycles: int = Field(ge=0)
    is_overdue: bool = False
    overdue_for_cycles: int = 0
    warning_shown: bool = False
    total_interest_paid: float = 0.0
    created_cycle: int = 0


class CreditEvent(BaseModel):
    """A change of the credit score and its cause."""

    type: CreditEventType
    change: int
    loan_id: str
    cycle: int
    description: str = ""


class DelinquencyRecord(BaseModel):
    """Tracks one overdue episode of a loan until it is resolved."""

    loan_id: str
    started_cycle: int
    max_overdue_cycles: int = 0
    resolved_cycle: int | None = None


class InterestRateBreakdown(BaseModel):
    """All components of an effective loan interest rate."""

    base_rate: float
    risk_profile_adjustment: float = 0.0
    profit_history_adjustment: float = 0.0
    utilization_surcharge: float = 0.0
    loan_count_penalty: float = 0.0
    credit_score_adjustment: float = 0.0
    duration_discount: float = 0.0
    effective_rate: float


class CreditLineInfo(BaseModel):
    """Collateral and credit-line figures for a trader."""

    collateral_value: float
    recommended_credit_line: float
    max_credit_line: float
    current_debt: float
    available_credit: float
    utilization_ratio: float
    active_loan_count: int


class CreditAccount(BaseModel):
    """Loan book and credit standing. Used identically by the human and by agents."""

    loans: list[Loan] = []
    cycles_since_last_interest_charge: int = 0
    credit_score: int = 50
    credit_history: list[CreditEvent] = []
    delinquency_history: list[DelinquencyRecord] = []
    next_loan_number: int = 1
    total_interest_paid: float = 0.0
    total_origination_fees_paid: float = 0.0
    total_repayment_fees_paid: float = 0.0

    @property
    def total_debt(self) -> float:
        return sum(loan.balance for loan in self.loans)

    def loan(self, loan_id: str) -> Loan | None:
        for loan in self.loans:
            if loan.id == loan_id:
                return loan
        return None
