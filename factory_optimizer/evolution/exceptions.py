"""
Strategy Optimization Exception Classes

This module defines custom exceptions for the strategy optimization engine.
Every exception carries a message plus an optional remediation suggestion so
callers can surface a clear, actionable error.
"""

from typing import Optional, Any


class EvolutionError(Exception):
    """Base exception class for all optimization-related errors."""

    def __init__(self, message: str, suggestion: Optional[str] = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.suggestion:
            return f"{self.message}. Suggestion: {self.suggestion}"
        return self.message


# =============================================================================
# Invalid Configuration Errors
# =============================================================================

class ConfigurationError(EvolutionError):
    """
    Raised when an optimizer configuration is rejected.

    Configuration errors are always raised before any candidate is evaluated.
    """


class InvalidPopulationSizeError(ConfigurationError):
    """Raised when population_size is too small or smaller than elite_count."""

    MIN_SIZE = 2

    def __init__(self, population_size: int, elite_count: Optional[int] = None):
        self.population_size = population_size
        self.elite_count = elite_count
        if elite_count is not None and population_size < elite_count:
            message = (
                f"Invalid population size: {population_size} is smaller than "
                f"elite count {elite_count}"
            )
            suggestion = "Increase population_size or reduce elite_count"
        else:
            message = f"Invalid population size: {population_size}"
            suggestion = f"Population size must be at least {self.MIN_SIZE}"
        super().__init__(message, suggestion)


class InvalidEliteCountError(ConfigurationError):
    """Raised when elite_count is not positive."""

    def __init__(self, elite_count: int):
        self.elite_count = elite_count
        message = f"Invalid elite count: {elite_count}"
        suggestion = "Elite count must be at least 1 so parents can be selected"
        super().__init__(message, suggestion)


class InvalidGenerationCountError(ConfigurationError):
    """Raised when the generation budget is not positive."""

    MIN_GENERATIONS = 1

    def __init__(self, generation_count: int):
        self.generation_count = generation_count
        message = f"Invalid generation count: {generation_count}"
        suggestion = f"Generation count must be at least {self.MIN_GENERATIONS}"
        super().__init__(message, suggestion)


class InvalidCrossoverRateError(ConfigurationError):
    """Raised when crossover_rate is outside [0, 1]."""

    MIN_RATE = 0.0
    MAX_RATE = 1.0

    def __init__(self, crossover_rate: float):
        self.crossover_rate = crossover_rate
        message = f"Invalid crossover rate: {crossover_rate}"
        suggestion = f"Crossover rate must be between {self.MIN_RATE} and {self.MAX_RATE}"
        super().__init__(message, suggestion)


class InvalidMutationRateError(ConfigurationError):
    """Raised when a mutation rate is outside [0, 1]."""

    MIN_RATE = 0.0
    MAX_RATE = 1.0

    def __init__(self, mutation_rate: float, name: str = "mutation_rate"):
        self.mutation_rate = mutation_rate
        self.name = name
        message = f"Invalid {name}: {mutation_rate}"
        suggestion = f"Mutation rates must be between {self.MIN_RATE} and {self.MAX_RATE}"
        super().__init__(message, suggestion)


class InvalidMutationScheduleError(ConfigurationError):
    """Raised when the adaptive schedule would increase the mutation rate."""

    def __init__(self, initial_rate: float, final_rate: float):
        self.initial_rate = initial_rate
        self.final_rate = final_rate
        message = (
            f"Invalid mutation schedule: initial rate ({initial_rate}) "
            f"is below final rate ({final_rate})"
        )
        suggestion = "Set initial_mutation_rate >= final_mutation_rate"
        super().__init__(message, suggestion)


class InvalidRefinementIntensityError(ConfigurationError):
    """Raised when the local variation intensity is outside (0, 1)."""

    def __init__(self, intensity: float):
        self.intensity = intensity
        message = f"Invalid refinement intensity: {intensity}"
        suggestion = "Refinement intensity must be in (0, 1), typically 0.05 to 0.3"
        super().__init__(message, suggestion)


class InvalidEarlyStoppingError(ConfigurationError):
    """Raised when early stopping is configured with a window smaller than 2."""

    def __init__(self, early_stop_generations: int):
        self.early_stop_generations = early_stop_generations
        message = f"Invalid early stop window: {early_stop_generations}"
        suggestion = "early_stop_generations must be at least 2"
        super().__init__(message, suggestion)


# =============================================================================
# Runtime Errors
# =============================================================================

class EvaluatorUnavailableError(EvolutionError):
    """
    Raised when every candidate in a generation failed at the transport level.

    The convergence history collected before the failure stays available on
    the exception so partial progress can still be reported.
    """

    def __init__(self, generation: int, history: Optional[Any] = None):
        self.generation = generation
        self.history = history
        message = f"Fitness evaluator unavailable: every evaluation in generation {generation} failed"
        suggestion = "Check that the simulator is running and reachable, then retry the run"
        super().__init__(message, suggestion)


class SimulatorResponseError(EvolutionError):
    """
    Raised when an out-of-process simulator answers with an error or with a
    payload that cannot be read as a fitness result.
    """

    def __init__(self, detail: str):
        self.detail = detail
        message = f"Simulator returned an unusable response: {detail}"
        suggestion = "Check the simulator logs and that its API version matches this client"
        super().__init__(message, suggestion)


# =============================================================================
# Utility Functions
# =============================================================================

def validate_population_size(size: int, elite_count: Optional[int] = None) -> None:
    """Validate population size and its relation to the elite count."""
    if size < InvalidPopulationSizeError.MIN_SIZE:
        raise InvalidPopulationSizeError(size)
    if elite_count is not None and size < elite_count:
        raise InvalidPopulationSizeError(size, elite_count)


def validate_elite_count(count: int) -> None:
    """Validate that at least one elite survives each generation."""
    if count < 1:
        raise InvalidEliteCountError(count)


def validate_generation_count(count: int) -> None:
    """Validate the generation budget is positive."""
    if count < InvalidGenerationCountError.MIN_GENERATIONS:
        raise InvalidGenerationCountError(count)


def validate_crossover_rate(rate: float) -> None:
    """Validate crossover rate is within allowed range."""
    if rate < InvalidCrossoverRateError.MIN_RATE or rate > InvalidCrossoverRateError.MAX_RATE:
        raise InvalidCrossoverRateError(rate)


def validate_mutation_rate(rate: float, name: str = "mutation_rate") -> None:
    """Validate mutation rate is within allowed range."""
    if rate < InvalidMutationRateError.MIN_RATE or rate > InvalidMutationRateError.MAX_RATE:
        raise InvalidMutationRateError(rate, name)


def validate_mutation_schedule(initial_rate: float, final_rate: float) -> None:
    """Validate that the adaptive schedule never increases."""
    validate_mutation_rate(initial_rate, "initial_mutation_rate")
    validate_mutation_rate(final_rate, "final_mutation_rate")
    if initial_rate < final_rate:
        raise InvalidMutationScheduleError(initial_rate, final_rate)


def validate_refinement_intensity(intensity: float) -> None:
    """Validate the local variation intensity."""
    if not 0.0 < intensity < 1.0:
        raise InvalidRefinementIntensityError(intensity)


def validate_early_stopping(early_stop_generations: int) -> None:
    """Validate the early stopping window."""
    if early_stop_generations < 2:
        raise InvalidEarlyStoppingError(early_stop_generations)
