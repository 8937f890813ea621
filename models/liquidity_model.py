"""
TVL and yield response to simulated price moves.

TVL_t = TVL_0 * (S_t / S_0)^e * U[low, high]

yield_t = y_0 * (1 - s * ΔTVL + w * p * σ), clipped to [min_yield, max_yield]

where ΔTVL is the fractional TVL change from the baseline, s the dilution
sensitivity, and p * σ a volatility risk premium.
"""

from config.params import PATH, PathParams


class LiquidityModel:
    """
    TVL tracks the cumulative price ratio; yield is diluted by TVL growth
    and lifted by volatility.
    """

    def __init__(self, params: PathParams = PATH):
        self.elasticity = params.tvl_price_elasticity
        self.noise_low = params.tvl_noise_low
        self.noise_high = params.tvl_noise_high
        self.tvl_sensitivity = params.yield_tvl_sensitivity
        self.vol_premium = params.yield_vol_premium
        self.vol_weight = params.yield_vol_weight
        self.min_yield = params.min_yield
        self.max_yield = params.max_yield

    def predict_tvl(self, base_tvl: float, price_ratio: float, rng) -> float:
        noise = self.noise_low + rng.random() * (self.noise_high - self.noise_low)
        return base_tvl * price_ratio ** self.elasticity * noise

    def predict_yield(self, base_yield: float, tvl_change: float, volatility: float) -> float:
        tvl_effect = -tvl_change * self.tvl_sensitivity
        vol_bonus = volatility * self.vol_premium * self.vol_weight
        predicted = base_yield * (1.0 + tvl_effect + vol_bonus)
        return float(min(self.max_yield, max(self.min_yield, predicted)))
