from ledger_sink.policy.selector import AccountsSelector, TransactionSelector

__all__ = ["AccountsSelector", "TransactionSelector"]
