from enum import Enum


class TransactionType(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"

    @property
    def needs_category(self) -> bool:
        """Expenses and incomes are categorized; transfers are not."""
        return self is not TransactionType.TRANSFER
