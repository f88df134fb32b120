"""Export functionality for CSV and JSON."""

import json
from typing import Any, Dict

import pandas as pd

from ..engine.ledger import debt_amount, deposit_amount
from ..messages import Env
from ..pool import LendingPool


def markets_frame(pool: LendingPool, env: Env) -> pd.DataFrame:
    """
    One row per market, with indices projected to the block time of `env`.

    Returns:
        DataFrame ordered by market index
    """
    data = []
    storage = pool.storage
    for index in range(storage.global_state.market_count):
        market = storage.load_market_by_index(index)
        projected = pool.interest.projected_indices(market, env.block_time)
        data.append({
            'index': market.index,
            'asset': market.asset_reference,
            'asset_type': market.asset_type.value,
            'share_token': market.share_token_address,
            'borrow_rate': float(market.borrow_rate),
            'liquidity_rate': float(market.liquidity_rate),
            'borrow_index': float(projected.borrow_index),
            'liquidity_index': float(projected.liquidity_index),
            'total_debt': debt_amount(market.debt_total_scaled, projected.borrow_index),
            'total_deposits': deposit_amount(market.collateral_total_scaled, projected.liquidity_index),
            'available_liquidity': market.available_liquidity,
            'utilization': float(pool.interest.utilization(market)),
            'protocol_income': market.protocol_income_to_distribute + projected.protocol_income,
            'max_loan_to_value': float(market.max_loan_to_value),
            'maintenance_margin': float(market.maintenance_margin),
            'reserve_factor': float(market.reserve_factor),
            'liquidation_bonus': float(market.liquidation_bonus),
        })

    return pd.DataFrame(data, columns=[
        'index', 'asset', 'asset_type', 'share_token', 'borrow_rate', 'liquidity_rate',
        'borrow_index', 'liquidity_index', 'total_debt', 'total_deposits', 'available_liquidity',
        'utilization', 'protocol_income', 'max_loan_to_value', 'maintenance_margin',
        'reserve_factor', 'liquidation_bonus',
    ])


def export_markets_csv(pool: LendingPool, env: Env, filepath: str):
    """Export the markets table to CSV."""
    markets_frame(pool, env).to_csv(filepath, index=False)


def state_dict(pool: LendingPool) -> Dict[str, Any]:
    """Stored pool state as JSON-compatible values, without projection."""
    storage = pool.storage
    return {
        'config': storage.config.to_dict(),
        'config_hash': storage.config.compute_hash(),
        'global_state': {'market_count': storage.global_state.market_count},
        'markets': [
            {
                'index': market.index,
                'asset': market.asset_reference,
                'asset_type': market.asset_type.value,
                'share_token': market.share_token_address,
                'max_loan_to_value': str(market.max_loan_to_value),
                'reserve_factor': str(market.reserve_factor),
                'maintenance_margin': str(market.maintenance_margin),
                'liquidation_bonus': str(market.liquidation_bonus),
                'interest_rate_strategy': market.interest_rate_strategy.model_dump(mode="json"),
                'interests_last_updated': market.interests_last_updated,
                'rates_last_updated': market.rates_last_updated,
                'borrow_rate': str(market.borrow_rate),
                'liquidity_rate': str(market.liquidity_rate),
                'borrow_index': str(market.borrow_index),
                'liquidity_index': str(market.liquidity_index),
                'debt_total_scaled': str(market.debt_total_scaled),
                'collateral_total_scaled': str(market.collateral_total_scaled),
                'available_liquidity': str(market.available_liquidity),
                'protocol_income_to_distribute': str(market.protocol_income_to_distribute),
            }
            for market in (storage.load_market_by_index(i) for i in range(storage.global_state.market_count))
        ],
    }


def export_state_json(pool: LendingPool, filepath: str):
    """Export config, global state and markets to JSON."""
    with open(filepath, 'w') as f:
        json.dump(state_dict(pool), f, indent=2)
