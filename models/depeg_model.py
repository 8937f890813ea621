"""
Peg deviation model: discrete mean reversion toward the peg with uniform noise.

d' = |d * (1 - k) + U(-a/2, a/2)|, clipped to [0, max_deviation]

Two tracks with different reversion speeds model two distinct pegged assets.
"""

from config.params import PATH, PathParams


class PegDeviationModel:
    """
    Mean-reverting absolute deviation of a pegged asset from its target.

    Deviation is reported as a magnitude, so the noise term can push a
    near-zero deviation away from the peg in either direction.
    """

    def __init__(self, reversion_speed: float, initial_deviation: float = 0.0,
                 noise_amplitude: float = PATH.peg_noise_amplitude,
                 max_deviation: float = PATH.max_peg_deviation):
        self.reversion_speed = reversion_speed
        self.initial_deviation = initial_deviation
        self.noise_amplitude = noise_amplitude
        self.max_deviation = max_deviation

    @classmethod
    def pair_from_params(cls, params: PathParams = PATH) -> tuple["PegDeviationModel", "PegDeviationModel"]:
        """Track A and track B models from path parameters."""
        track_a = cls(params.peg_a_reversion, params.peg_a_initial,
                      params.peg_noise_amplitude, params.max_peg_deviation)
        track_b = cls(params.peg_b_reversion, params.peg_b_initial,
                      params.peg_noise_amplitude, params.max_peg_deviation)
        return track_a, track_b

    def step(self, deviation: float, rng) -> float:
        noise = (rng.random() - 0.5) * self.noise_amplitude
        reverted = deviation * (1.0 - self.reversion_speed) + noise
        return float(min(self.max_deviation, max(0.0, abs(reverted))))
