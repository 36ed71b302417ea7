"""PID controller module.

Pure feedback state machine with no I/O. The caller supplies a normalized
error once per window and receives a bounded correction.
"""

import logging
from dataclasses import dataclass


logger = logging.getLogger(__name__)


@dataclass
class PIDState:
    """Gains, output bounds and the two mutable fields of the controller."""
    proportional_gain: float
    integral_gain: float
    derivative_gain: float
    output_min: float
    output_max: float
    integral: float = 0.0
    last_error: float = 0.0


@dataclass(frozen=True)
class PIDTerms:
    """Individual contributions from the most recent update."""
    proportional: float
    integral: float
    derivative: float
    unclamped_output: float


class PIDController:
    """Proportional-integral-derivative controller with anti-windup.

    The integral is frozen while the output is pinned at a bound in the
    direction of the current error, so that releasing the bound does not
    overshoot.
    """

    def __init__(
        self,
        proportional_gain: float,
        integral_gain: float,
        derivative_gain: float,
        output_min: float,
        output_max: float,
    ) -> None:
        """Initialize the controller.

        Args:
            proportional_gain: Reaction to the current error
            integral_gain: Reaction to the accumulated error
            derivative_gain: Reaction to the change in error
            output_min: Minimum allowable output
            output_max: Maximum allowable output

        Raises:
            ValueError: If output_min is not below output_max
        """
        if output_min >= output_max:
            raise ValueError(
                f"output_min must be < output_max, got {output_min!r} >= {output_max!r}"
            )
        self._state = PIDState(
            proportional_gain=proportional_gain,
            integral_gain=integral_gain,
            derivative_gain=derivative_gain,
            output_min=output_min,
            output_max=output_max,
        )
        self.last_terms = PIDTerms(0.0, 0.0, 0.0, 0.0)

    @property
    def state(self) -> PIDState:
        return self._state

    @property
    def integral(self) -> float:
        return self._state.integral

    @property
    def last_error(self) -> float:
        return self._state.last_error

    def update(self, error: float) -> float:
        """Feed one error sample and return the clamped correction.

        Args:
            error: Normalized difference between the measured value and the
                setpoint, e.g. (measured - target) / target

        Returns:
            Output clamped to [output_min, output_max]
        """
        s = self._state

        derivative = error - s.last_error
        candidate_integral = s.integral + error

        p_term = s.proportional_gain * error
        i_term = s.integral_gain * candidate_integral
        d_term = s.derivative_gain * derivative
        unclamped_output = p_term + i_term + d_term

        output = max(s.output_min, min(s.output_max, unclamped_output))

        saturated_high = output == s.output_max and error > 0
        saturated_low = output == s.output_min and error < 0

        if not saturated_high and not saturated_low:
            s.integral = candidate_integral
        s.last_error = error

        self.last_terms = PIDTerms(
            proportional=p_term,
            integral=i_term,
            derivative=d_term,
            unclamped_output=unclamped_output,
        )

        logger.debug(
            f"PID update: error={error:.6f}, derivative={derivative:.6f}, "
            f"candidate_integral={candidate_integral:.6f}, "
            f"unclamped={unclamped_output:.6f}, output={output:.6f}, "
            f"saturated_high={saturated_high}, saturated_low={saturated_low}, "
            f"integral={s.integral:.6f}"
        )

        return output
