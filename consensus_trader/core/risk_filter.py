"""Per-account acceptance and position sizing."""
import logging

from consensus_trader.models import Account, EnsembleSignal, RiskDecision

logger = logging.getLogger(__name__)


class AccountRiskFilter:
    """Decides whether and how much of a signal an account takes.

    Stateless and deterministic given (account snapshot, signal).
    """

    def accept(self, account: Account, signal: EnsembleSignal) -> RiskDecision:
        """Apply the account's threshold, risk multiplier and position cap.

        Args:
            account: Account snapshot
            signal: Signal being distributed

        Returns:
            RiskDecision with the accepted size
        """
        if signal.confidence < account.confidence_threshold:
            return RiskDecision(
                accept=False,
                size=0.0,
                reason=(
                    f"confidence {signal.confidence:.0f} below account threshold "
                    f"{account.confidence_threshold:.0f}"
                ),
            )

        requested = signal.size * account.risk_multiplier
        size = requested
        reason = f"size {signal.size:.6f} x risk {account.risk_multiplier:g}"

        if signal.price > 0:
            cap = account.max_position_value / signal.price
            if requested > cap:
                size = cap
                reason += (
                    f", clamped to {cap:.6f} by max position value "
                    f"{account.max_position_value:,.2f}"
                )

        if size <= 0:
            return RiskDecision(accept=False, size=0.0, reason=f"non-positive size ({reason})")

        logger.debug(f"Account {account.id} accepts {signal.symbol} signal {signal.id}: {reason}")
        return RiskDecision(accept=True, size=size, reason=reason)
