from prometheus_client import Counter

wallet_credit_total = Counter("wallet_credit_total", "Number of successful wallet credit ledger rows", ["type"])
wallet_debit_total = Counter("wallet_debit_total", "Number of successful wallet debit ledger rows", ["type"])
wallet_idempotency_replay_total = Counter(
    "wallet_idempotency_replay_total", "Number of idempotent replays detected for wallet operations", ["type"]
)
wallet_insufficient_funds_total = Counter(
    "wallet_insufficient_funds_total", "Number of debit attempts failed due to insufficient funds", ["type"]
)
wallet_status_change_total = Counter("wallet_status_change_total", "Number of wallet freeze/unfreeze operations", ["status"])

orders_placed_total = Counter("orders_placed_total", "Number of orders placed", ["pay_method"])
orders_idempotency_replay_total = Counter(
    "orders_idempotency_replay_total", "Number of place-order calls answered from an existing order"
)
order_transitions_total = Counter("order_transitions_total", "Number of order status transitions", ["status"])
orders_refunded_total = Counter("orders_refunded_total", "Number of refunded orders", ["pay_method"])

tx_retry_total = Counter("commerce_tx_retry_total", "Number of transaction retries after a transient store error")
