"""Error taxonomy for consensus and execution.

Every error is scoped to one symbol or one account; none of them stop
the engine as a whole.
"""


class ConsensusTraderError(Exception):
    """Base class for all consensus trader errors."""

    pass


class InsufficientConsensus(ConsensusTraderError):
    """Votes were too few or too divided to emit a signal."""

    pass


class UpstreamUnavailable(ConsensusTraderError):
    """A price, account or market-data dependency failed for this cycle."""

    pass


class LockTimeout(ConsensusTraderError):
    """The account's execution lock could not be acquired in time."""

    pass


class ExecutionRejected(ConsensusTraderError):
    """An execution attempt failed validation; nothing was mutated."""

    pass


class InsufficientBalance(ExecutionRejected):
    pass


class InsufficientHoldings(ExecutionRejected):
    pass


class StaleSignal(ExecutionRejected):
    pass


class AccountInactive(ExecutionRejected):
    pass


class InvalidSize(ExecutionRejected):
    pass


class DuplicateExecution(ExecutionRejected):
    """The (account, signal) pair has already been executed."""

    pass
