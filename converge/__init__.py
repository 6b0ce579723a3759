"""converge — convergence engine for end-to-end cluster tests.

Waits for remote state to settle (poll, watch, or a worker raced
against a deadline), retries the actions that mutate it, and always
tears down what a scenario created.
"""

__version__ = "0.1.0"
