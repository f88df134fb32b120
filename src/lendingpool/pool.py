"""Lending Pool - Command and query surface.

Every command:
- checks authorization first when owner-gated
- runs inside one storage transaction, so a failure leaves no partial state
- accrues each market it touches before reading or writing balances
- queues outbound messages only after all state changes are done
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from .config.schema import AssetParams, ConfigUpdate, PoolConfig, Settings
from .engine.fixed_point import mul_floor
from .engine.interest import InterestRateEngine
from .engine.ledger import ScaledLedger, debt_amount, deposit_amount
from .engine.liquidation import HealthSummary, LiquidationEngine, PriceOracle
from .engine.positions import iter_borrowed, iter_collateral
from .engine.registry import MarketRegistry
from .engine.state import Asset, Debt, GlobalState, Market
from .engine.storage import PoolStorage
from .errors import (
    BorrowLimitExceeded,
    InsufficientBalance,
    Insolvent,
    InvalidAmount,
    InvalidConfig,
)
from .messages import Env, InstantiateShareToken, MessageInfo, Response, TransferMessage
from .validation.rules import validate_pool_config

logger = logging.getLogger(__name__)


@dataclass
class UserPosition:
    """Markets a user is active in, with the position's valuation."""
    borrowed_assets: List[str] = field(default_factory=list)
    collateral_assets: List[str] = field(default_factory=list)
    health: HealthSummary = field(default_factory=HealthSummary)


@dataclass
class UserAssetBalance:
    """One user's balance in one market."""
    asset_reference: str
    amount_scaled: int
    amount: int
    uncollateralized: bool = False


class LendingPool:
    """Multi-asset lending pool with scaled balances and liquidations."""

    def __init__(self, config: PoolConfig, price_oracle: PriceOracle):
        """
        Initialize pool.

        Args:
            config: Validated global configuration
            price_oracle: Maps an asset reference to its price in a common unit

        Raises:
            InvalidConfig: If the configuration violates a rule
        """
        validate_pool_config(config)
        self.storage = PoolStorage(config)
        self.interest = InterestRateEngine()
        self.ledger = ScaledLedger(self.storage, self.interest)
        self.registry = MarketRegistry(self.storage, self.interest)
        self.liquidation = LiquidationEngine(self.storage, self.interest, price_oracle)

    @classmethod
    def from_settings(cls, settings: Settings, block_time: int, price_oracle: PriceOracle) -> 'LendingPool':
        """Create a pool and list every asset in the settings, as the owner."""
        pool = cls(settings.pool, price_oracle)
        env = Env(block_time=block_time)
        info = MessageInfo(sender=settings.pool.owner)
        for setup in settings.assets:
            pool.init_asset(env, info, Asset(setup.reference, setup.asset_type), setup.params)
        return pool

    # Owner commands

    def init_asset(self, env: Env, info: MessageInfo, asset: Asset, params: AssetParams) -> Response:
        """List a new asset and request its share token."""
        with self.storage.transaction():
            market = self.registry.create_market(info.sender, asset, params, env.block_time)

        logger.info(
            "Asset initialized",
            extra={"event": "lending_pool.init_asset", "asset": asset.reference, "index": market.index},
        )
        return (
            Response()
            .add_attribute("action", "init_asset")
            .add_attribute("asset", asset.reference)
            .add_attribute("index", market.index)
            .add_message(
                InstantiateShareToken(
                    asset=asset,
                    admin=env.contract_address,
                    name=f"Lending pool {asset.reference} share",
                    symbol=f"lp{asset.reference[:8]}",
                )
            )
        )

    def update_asset(self, env: Env, info: MessageInfo, reference: str, params: AssetParams) -> Response:
        with self.storage.transaction():
            self.registry.update_market(info.sender, reference, params, env.block_time)

        logger.info("Asset updated", extra={"event": "lending_pool.update_asset", "asset": reference})
        return Response().add_attribute("action", "update_asset").add_attribute("asset", reference)

    def register_share_token(self, env: Env, info: MessageInfo, reference: str) -> Response:
        """Callback from a freshly instantiated share token; the sender is the token."""
        with self.storage.transaction():
            self.registry.register_share_token(info.sender, reference)

        logger.info(
            "Share token registered",
            extra={"event": "lending_pool.register_share_token", "asset": reference, "token": info.sender},
        )
        return (
            Response()
            .add_attribute("action", "register_share_token")
            .add_attribute("asset", reference)
            .add_attribute("token", info.sender)
        )

    def update_uncollateralized_loan_limit(
        self,
        env: Env,
        info: MessageInfo,
        user_address: str,
        reference: str,
        new_limit: int,
    ) -> Response:
        """
        Set the credit line of a user in a market. A positive limit marks the
        user's debt there as uncollateralized; zero turns it back into
        ordinary collateral-backed debt.
        """
        self.registry.require_owner(info.sender, "update_uncollateralized_loan_limit")
        if new_limit < 0:
            raise InvalidAmount(f"Loan limit must not be negative, got {new_limit}")

        with self.storage.transaction():
            market = self.storage.load_market(reference)
            key = (market.asset_reference, user_address)
            uncollateralized = new_limit > 0

            if uncollateralized:
                self.storage.uncollateralized_loan_limits[key] = new_limit
            else:
                self.storage.uncollateralized_loan_limits.pop(key, None)

            debt = self.storage.debts.get(key)
            if debt is None and uncollateralized:
                self.storage.debts[key] = Debt(amount_scaled=0, uncollateralized=True)
            elif debt is not None:
                debt.uncollateralized = uncollateralized
                if debt.amount_scaled == 0 and not uncollateralized:
                    del self.storage.debts[key]

        logger.info(
            "Uncollateralized loan limit updated",
            extra={
                "event": "lending_pool.update_uncollateralized_loan_limit",
                "asset": reference,
                "user": user_address,
                "limit": new_limit,
            },
        )
        return (
            Response()
            .add_attribute("action", "update_uncollateralized_loan_limit")
            .add_attribute("user", user_address)
            .add_attribute("asset", reference)
            .add_attribute("new_allowance", new_limit)
        )

    def update_config(self, env: Env, info: MessageInfo, update: ConfigUpdate) -> Response:
        """Overlay the provided fields on the configuration and validate the result."""
        self.registry.require_owner(info.sender, "update_config")

        with self.storage.transaction():
            merged = self.storage.config.model_copy(update=update.model_dump(exclude_none=True))
            validate_pool_config(merged)
            self.storage.config = merged

        logger.info(
            "Config updated",
            extra={"event": "lending_pool.update_config", "config_hash": merged.compute_hash()},
        )
        return Response().add_attribute("action", "update_config")

    # User commands

    def deposit(
        self,
        env: Env,
        info: MessageInfo,
        reference: str,
        amount: int,
        on_behalf_of: Optional[str] = None,
    ) -> Response:
        """
        Credit funds already delivered by the host to a user's deposit.

        Args:
            env: Host environment
            info: Caller; the funds come from the sender
            reference: Asset deposited
            amount: Amount delivered with the call
            on_behalf_of: User credited, defaults to the sender
        """
        depositor = on_behalf_of or info.sender

        with self.storage.transaction():
            market = self.storage.load_market(reference)
            self.ledger.increase_collateral(market, depositor, amount, env.block_time)
            self.ledger.credit_liquidity(market, amount)
            self.interest.update_interest_rates(market, env.block_time)

        logger.info(
            "Deposit",
            extra={"event": "lending_pool.deposit", "asset": reference, "user": depositor, "amount": amount},
        )
        return (
            Response()
            .add_attribute("action", "deposit")
            .add_attribute("asset", reference)
            .add_attribute("sender", info.sender)
            .add_attribute("user", depositor)
            .add_attribute("amount", amount)
        )

    def withdraw(
        self,
        env: Env,
        info: MessageInfo,
        reference: str,
        amount: Optional[int] = None,
    ) -> Response:
        """
        Withdraw part or all of the sender's deposit.

        Raises:
            InsufficientBalance: If `amount` exceeds the deposit
            InsufficientLiquidity: If the pool cash cannot cover the withdrawal
            Insolvent: If the remaining position would be unhealthy
        """
        with self.storage.transaction():
            market = self.storage.load_market(reference)
            withdrawn, _ = self.ledger.decrease_collateral(market, info.sender, amount, env.block_time)
            self.ledger.debit_liquidity(market, withdrawn)
            self.interest.update_interest_rates(market, env.block_time)
            self._require_healthy(info.sender, env.block_time, "withdraw")

            transfer = TransferMessage(recipient=info.sender, asset=market.asset, amount=withdrawn)

        logger.info(
            "Withdraw",
            extra={"event": "lending_pool.withdraw", "asset": reference, "user": info.sender, "amount": withdrawn},
        )
        return (
            Response()
            .add_attribute("action", "withdraw")
            .add_attribute("asset", reference)
            .add_attribute("user", info.sender)
            .add_attribute("amount", withdrawn)
            .add_message(transfer)
        )

    def borrow(self, env: Env, info: MessageInfo, reference: str, amount: int) -> Response:
        """
        Borrow from the pool against collateral, or against a credit line.

        Raises:
            InsufficientLiquidity: If the pool cash cannot cover the loan
            Insolvent: If the position would exceed its max loan-to-value
            BorrowLimitExceeded: If credit-line debt would pass the user's limit
        """
        now = env.block_time

        with self.storage.transaction():
            market = self.storage.load_market(reference)
            limit = self.storage.uncollateralized_loan_limit(reference, info.sender)

            self.interest.accrue(market, now)
            if limit > 0:
                debt_after = self.ledger.debt_balance(market, info.sender, now) + amount
                if debt_after > limit:
                    raise BorrowLimitExceeded(
                        f"Borrow of {amount} would bring uncollateralized debt to {debt_after}, "
                        f"above the limit of {limit}"
                    )

            self.ledger.increase_debt(market, info.sender, amount, now)
            self.ledger.debit_liquidity(market, amount)
            self.interest.update_interest_rates(market, now)

            if limit == 0:
                self._require_healthy(info.sender, now, "borrow")

            transfer = TransferMessage(recipient=info.sender, asset=market.asset, amount=amount)

        logger.info(
            "Borrow",
            extra={"event": "lending_pool.borrow", "asset": reference, "user": info.sender, "amount": amount},
        )
        return (
            Response()
            .add_attribute("action", "borrow")
            .add_attribute("asset", reference)
            .add_attribute("user", info.sender)
            .add_attribute("amount", amount)
            .add_message(transfer)
        )

    def repay(
        self,
        env: Env,
        info: MessageInfo,
        reference: str,
        amount: int,
        on_behalf_of: Optional[str] = None,
    ) -> Response:
        """
        Repay debt with funds delivered by the host. Anything above the
        outstanding debt is refunded to the sender.

        Raises:
            InsufficientBalance: If the user has no debt in the market
        """
        borrower = on_behalf_of or info.sender
        now = env.block_time

        if amount <= 0:
            raise InvalidAmount(f"Amount must be greater than 0, got {amount}")

        with self.storage.transaction():
            market = self.storage.load_market(reference)
            self.interest.accrue(market, now)

            outstanding = self.ledger.debt_balance(market, borrower, now)
            if outstanding == 0:
                raise InsufficientBalance(f"{borrower} has no debt in {reference}")

            repaid = min(amount, outstanding)
            refund = amount - repaid
            self.ledger.decrease_debt(market, borrower, repaid, now)
            self.ledger.credit_liquidity(market, repaid)
            self.interest.update_interest_rates(market, now)

            # Refunded funds never enter the pool's cash
            refund_message = None
            if refund > 0:
                refund_message = TransferMessage(recipient=info.sender, asset=market.asset, amount=refund)

        logger.info(
            "Repay",
            extra={
                "event": "lending_pool.repay",
                "asset": reference,
                "user": borrower,
                "amount": repaid,
                "refund": refund,
            },
        )
        response = (
            Response()
            .add_attribute("action", "repay")
            .add_attribute("asset", reference)
            .add_attribute("sender", info.sender)
            .add_attribute("user", borrower)
            .add_attribute("amount", repaid)
        )
        if refund_message is not None:
            response.add_attribute("refund_amount", refund).add_message(refund_message)
        return response

    def liquidate(
        self,
        env: Env,
        info: MessageInfo,
        borrower: str,
        debt_reference: str,
        collateral_reference: str,
        amount: int,
        receive_shares: bool = False,
    ) -> Response:
        """
        Repay part of an unhealthy borrower's debt in exchange for collateral
        at a bonus.

        Args:
            env: Host environment
            info: Liquidator
            borrower: Address of the position being liquidated
            debt_reference: Asset sent by the liquidator to repay debt
            collateral_reference: Asset seized from the borrower
            amount: Funds delivered with the call, in the debt asset
            receive_shares: Take the seized collateral as a deposit in the pool
                instead of an underlying transfer

        Raises:
            NotLiquidatable: If the position is healthy or has no eligible debt
            NoCollateral: If the borrower holds no collateral in the market
            LiquidationAmountTooSmall: If `amount` is below the dust threshold
        """
        liquidator = info.sender
        now = env.block_time

        with self.storage.transaction():
            debt_market = self.storage.load_market(debt_reference)
            collateral_market = self.storage.load_market(collateral_reference)

            plan = self.liquidation.plan_liquidation(borrower, debt_market, collateral_market, amount, now)

            self.ledger.decrease_debt(debt_market, borrower, plan.repay_amount, now)
            self.ledger.credit_liquidity(debt_market, plan.repay_amount)

            seized_transfer = None
            if plan.collateral_seized > 0:
                if receive_shares:
                    self.ledger.transfer_collateral(
                        collateral_market, borrower, liquidator, plan.collateral_seized, now
                    )
                else:
                    self.ledger.decrease_collateral(collateral_market, borrower, plan.collateral_seized, now)
                    self.ledger.debit_liquidity(collateral_market, plan.collateral_seized)
                    seized_transfer = TransferMessage(
                        recipient=liquidator, asset=collateral_market.asset, amount=plan.collateral_seized
                    )

            self.interest.update_interest_rates(debt_market, now)
            self.interest.update_interest_rates(collateral_market, now)

            refund_transfer = None
            if plan.refund_amount > 0:
                refund_transfer = TransferMessage(
                    recipient=liquidator, asset=debt_market.asset, amount=plan.refund_amount
                )

        logger.info(
            "Liquidation",
            extra={
                "event": "lending_pool.liquidate",
                "borrower": borrower,
                "liquidator": liquidator,
                "debt_asset": debt_reference,
                "collateral_asset": collateral_reference,
                "repay_amount": plan.repay_amount,
                "collateral_seized": plan.collateral_seized,
            },
        )
        response = (
            Response()
            .add_attribute("action", "liquidate")
            .add_attribute("borrower", borrower)
            .add_attribute("liquidator", liquidator)
            .add_attribute("debt_asset", debt_reference)
            .add_attribute("collateral_asset", collateral_reference)
            .add_attribute("debt_amount_repaid", plan.repay_amount)
            .add_attribute("collateral_amount_liquidated", plan.collateral_seized)
            .add_attribute("refund_amount", plan.refund_amount)
        )
        if seized_transfer is not None:
            response.add_message(seized_transfer)
        if refund_transfer is not None:
            response.add_message(refund_transfer)
        return response

    def distribute_protocol_income(
        self,
        env: Env,
        info: MessageInfo,
        reference: str,
        amount: Optional[int] = None,
    ) -> Response:
        """
        Pay accrued protocol income out to the insurance fund, the treasury
        and the rewards address. Anyone may call.

        Args:
            env: Host environment
            info: Caller
            reference: Market whose income is distributed
            amount: Amount to distribute, defaults to all accrued income

        Raises:
            InvalidAmount: If there is nothing to distribute
            InsufficientBalance: If `amount` exceeds the accrued income
            InvalidConfig: If a recipient with a nonzero share has no address
        """
        config = self.storage.config

        with self.storage.transaction():
            market = self.storage.load_market(reference)
            self.interest.accrue(market, env.block_time)

            available = market.protocol_income_to_distribute
            if amount is None:
                amount = available
            if amount <= 0:
                raise InvalidAmount(f"No protocol income to distribute in {reference}")
            if amount > available:
                raise InsufficientBalance(
                    f"Cannot distribute {amount} of {reference}: {available} accrued"
                )

            insurance_amount = mul_floor(amount, config.insurance_fund_fee_share)
            treasury_amount = mul_floor(amount, config.treasury_fee_share)
            rewards_amount = amount - insurance_amount - treasury_amount
            payouts = [
                ("insurance_fund_address", config.insurance_fund_address, insurance_amount),
                ("treasury_address", config.treasury_address, treasury_amount),
                ("rewards_address", config.rewards_address, rewards_amount),
            ]

            transfers = []
            for name, recipient, payout in payouts:
                if payout == 0:
                    continue
                if not recipient:
                    raise InvalidConfig(f"Invalid param: {name} is not set", field=name)
                transfers.append(TransferMessage(recipient=recipient, asset=market.asset, amount=payout))

            market.protocol_income_to_distribute = available - amount
            self.ledger.debit_liquidity(market, amount)
            self.interest.update_interest_rates(market, env.block_time)

        logger.info(
            "Protocol income distributed",
            extra={
                "event": "lending_pool.distribute_protocol_income",
                "asset": reference,
                "amount": amount,
                "insurance_fund_amount": insurance_amount,
                "treasury_amount": treasury_amount,
                "rewards_amount": rewards_amount,
            },
        )
        response = (
            Response()
            .add_attribute("action", "distribute_protocol_income")
            .add_attribute("asset", reference)
            .add_attribute("amount", amount)
        )
        for transfer in transfers:
            response.add_message(transfer)
        return response

    def _require_healthy(self, address: str, now: int, action: str) -> None:
        health = self.liquidation.compute_health(address, now)
        if not health.is_healthy:
            raise Insolvent(
                f"{action} would leave {address} with debt value {health.total_debt_value} "
                f"above max borrow value {health.max_borrow_value}"
            )

    # Queries

    def config(self) -> PoolConfig:
        return self.storage.config

    def global_state(self) -> GlobalState:
        return self.storage.global_state

    def market(self, reference: str) -> Market:
        return self.storage.load_market(reference)

    def market_by_index(self, index: int) -> Market:
        return self.storage.load_market_by_index(index)

    def market_by_share_token(self, token_address: str) -> Market:
        return self.storage.load_market_by_token(token_address)

    def markets_list(self, start_after: Optional[int] = None, limit: Optional[int] = None) -> List[Market]:
        return self.registry.markets_list(start_after, limit)

    def user_position(self, env: Env, address: str) -> UserPosition:
        """
        Decode a user's bit-sets to asset references and value the position.

        Raises:
            UserRecordNotFound: If the user holds no position
        """
        user = self.storage.load_user(address)
        return UserPosition(
            borrowed_assets=[self.storage.market_refs_by_index[i] for i in iter_borrowed(user)],
            collateral_assets=[self.storage.market_refs_by_index[i] for i in iter_collateral(user)],
            health=self.liquidation.compute_health(address, env.block_time),
        )

    def user_debt(self, env: Env, address: str, reference: str) -> UserAssetBalance:
        market = self.storage.load_market(reference)
        debt = self.storage.debt(reference, address)
        if debt is None:
            return UserAssetBalance(reference, 0, 0)
        projected = self.interest.projected_indices(market, env.block_time)
        return UserAssetBalance(
            asset_reference=reference,
            amount_scaled=debt.amount_scaled,
            amount=debt_amount(debt.amount_scaled, projected.borrow_index),
            uncollateralized=debt.uncollateralized,
        )

    def user_collateral(self, env: Env, address: str, reference: str) -> UserAssetBalance:
        market = self.storage.load_market(reference)
        scaled = self.storage.collateral_scaled(reference, address)
        projected = self.interest.projected_indices(market, env.block_time)
        return UserAssetBalance(
            asset_reference=reference,
            amount_scaled=scaled,
            amount=deposit_amount(scaled, projected.liquidity_index),
        )

    def uncollateralized_loan_limit(self, address: str, reference: str) -> int:
        self.storage.load_market(reference)
        return self.storage.uncollateralized_loan_limit(reference, address)

    def price(self, reference: str) -> Decimal:
        return self.liquidation.price(reference)
