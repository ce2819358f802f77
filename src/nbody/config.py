"""
Configuration management for the n-body simulation.

This module handles loading and parsing YAML configuration files,
converting the body table from astronomical units to SI units.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Any, Optional
import logging
import warnings
import yaml
from pathlib import Path
import numpy as np

from nbody import constants as const
from nbody import units
from nbody.errors import ConfigurationError
from nbody.physics import DISTANCE_POLICIES, UPDATE_SCHEMES
from nbody.state import SimulationState

logger = logging.getLogger(__name__)


@dataclass
class BodyConfig:
    """Configuration for a single body, already converted to SI units."""

    label: str
    mass: float  # kg
    position: np.ndarray  # m
    velocity: np.ndarray  # m/s

    @classmethod
    def from_astronomical(cls, label: str, mass: float, position_au, velocity_au_per_day) -> 'BodyConfig':
        """Create a body from a position in AU and a velocity in AU/day."""
        return cls(
            label=label,
            mass=float(mass),
            position=units.au_to_meters(np.asarray(position_au, dtype=np.float64)),
            velocity=units.au_per_day_to_meters_per_second(np.asarray(velocity_au_per_day, dtype=np.float64)),
        )

    def __repr__(self):
        """Human-readable representation."""
        r_au = np.linalg.norm(self.position) / const.AU
        v_kms = np.linalg.norm(self.velocity) / 1000.0
        return f"{self.label}: {self.mass:.3e} kg at {r_au:.4f} AU, v={v_kms:.2f} km/s"


@dataclass
class SimulationParameters:
    """
    Container for all simulation parameters.

    All internal values stored in SI units:
    - Distance: meters (m)
    - Time: seconds (s)
    - Mass: kilograms (kg)
    - Velocity: meters per second (m/s)
    """

    # Metadata
    simulation_name: str
    output_directory: str = "./results"
    start_time: datetime = const.DEFAULT_START_TIME

    # Bodies, in update order
    bodies: List[BodyConfig] = field(default_factory=list)

    # Simulation control
    dt: float = 1.0  # seconds
    snapshot_interval: float = const.SECONDS_PER_WEEK  # seconds
    max_ticks: Optional[int] = None  # None = run until stopped

    # Physics options
    update_scheme: str = "sequential"  # "sequential" or "synchronous"
    distance_policy: str = "raise"  # "raise", "skip" or "clamp"
    min_distance: float = 0.0  # meters (only for "clamp")

    # Diagnostics
    log_level: str = "INFO"
    show_progress: bool = False

    @property
    def n_bodies(self) -> int:
        return len(self.bodies)

    @property
    def labels(self) -> List[str]:
        return [body.label for body in self.bodies]

    def validate(self) -> list:
        """
        Perform sanity checks on configuration parameters.

        Returns:
            List of warning/error messages. Empty list if all checks pass.
        """
        warnings = []

        if not self.bodies:
            warnings.append("ERROR: at least one body is required")

        seen = set()
        for i, body in enumerate(self.bodies):
            name = f"Body {i} ('{body.label}')"

            if not body.label:
                warnings.append(f"ERROR: Body {i} has an empty label")
            elif body.label in seen:
                warnings.append(f"ERROR: duplicate body label '{body.label}'")
            seen.add(body.label)

            if not np.isfinite(body.mass) or body.mass <= 0:
                warnings.append(f"ERROR: {name} mass must be positive, got {body.mass}")

            if np.shape(body.position) != (3,):
                warnings.append(f"ERROR: {name} position must have 3 components, got {np.shape(body.position)}")
            elif not np.all(np.isfinite(body.position)):
                warnings.append(f"ERROR: {name} position must be finite")

            if np.shape(body.velocity) != (3,):
                warnings.append(f"ERROR: {name} velocity must have 3 components, got {np.shape(body.velocity)}")
            elif not np.all(np.isfinite(body.velocity)):
                warnings.append(f"ERROR: {name} velocity must be finite")

        # Check for coincident bodies (zero separation at t=0)
        for i, body1 in enumerate(self.bodies):
            for j in range(i + 1, len(self.bodies)):
                body2 = self.bodies[j]
                if np.shape(body1.position) != (3,) or np.shape(body2.position) != (3,):
                    continue
                if np.array_equal(body1.position, body2.position):
                    level = "ERROR" if self.distance_policy == "raise" else "WARNING"
                    warnings.append(
                        f"{level}: '{body1.label}' and '{body2.label}' start at the same position"
                    )

        # Check timestep
        if not np.isfinite(self.dt) or self.dt <= 0:
            warnings.append(f"ERROR: timestep dt must be positive, got {self.dt}")

        if not np.isfinite(self.snapshot_interval) or self.snapshot_interval <= 0:
            warnings.append(f"ERROR: snapshot interval must be positive, got {self.snapshot_interval}")
        elif self.dt > 0 and self.snapshot_interval < self.dt:
            warnings.append(
                f"WARNING: snapshot interval ({self.snapshot_interval} s) is shorter than the "
                f"timestep ({self.dt} s); a snapshot will follow every tick"
            )

        if self.max_ticks is not None and self.max_ticks < 0:
            warnings.append(f"ERROR: max_ticks must be non-negative, got {self.max_ticks}")

        # Physics options
        if self.update_scheme not in UPDATE_SCHEMES:
            warnings.append(
                f"ERROR: update_scheme must be one of {UPDATE_SCHEMES}, got '{self.update_scheme}'"
            )
        elif self.update_scheme == "synchronous":
            warnings.append(
                "INFO: update_scheme 'synchronous' computes all accelerations from the "
                "tick-start positions; results differ from the sequential default"
            )

        if self.distance_policy not in DISTANCE_POLICIES:
            warnings.append(
                f"ERROR: distance_policy must be one of {sorted(DISTANCE_POLICIES)}, "
                f"got '{self.distance_policy}'"
            )
        elif self.distance_policy == "clamp" and self.min_distance <= 0:
            warnings.append(
                f"ERROR: distance_policy 'clamp' requires a positive min_distance, got {self.min_distance}"
            )

        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            warnings.append(f"WARNING: unknown log_level '{self.log_level}', INFO will be used")

        # Large timesteps make Euler-Cromer orbits drift quickly
        if self.dt > const.SECONDS_PER_DAY:
            warnings.append(
                f"WARNING: timestep ({self.dt / const.SECONDS_PER_DAY:.2f} days) is large "
                f"for planetary orbits. Expect significant orbital drift."
            )

        return warnings

    def check(self):
        """
        Run validate() and act on the result.

        Raises:
            ConfigurationError: If any ERROR was found

        WARNING and INFO messages are reported through warnings/logging.
        """
        messages = self.validate()
        errors = [m for m in messages if m.startswith("ERROR")]
        for message in messages:
            if message.startswith("WARNING"):
                warnings.warn(message)
            elif message.startswith("INFO"):
                logger.info(message)
        if errors:
            raise ConfigurationError("; ".join(errors))

    @classmethod
    def from_dict(cls, config: dict) -> 'SimulationParameters':
        """
        Build parameters from a parsed configuration mapping.

        Raises:
            ConfigurationError: If the mapping is malformed or invalid
        """
        def to_float(value: Any) -> float:
            """Convert value to float, handling YAML quirks with scientific notation."""
            return float(value)

        def to_bool(value: Any) -> bool:
            """Convert value to bool."""
            if isinstance(value, str):
                return value.lower() in ('true', 'yes', '1')
            return bool(value)

        def to_vector(value: Any) -> np.ndarray:
            return np.array([to_float(v) for v in value], dtype=np.float64)

        def to_datetime(value: Any) -> datetime:
            if isinstance(value, datetime):
                moment = value
            else:
                moment = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
            if moment.tzinfo is None:
                moment = moment.replace(tzinfo=timezone.utc)
            return moment

        if not isinstance(config, dict):
            raise ConfigurationError("Configuration must be a mapping")

        try:
            # Parse body table (AU, AU/day → m, m/s)
            bodies = []
            for i, body_data in enumerate(config['bodies']):
                bodies.append(BodyConfig.from_astronomical(
                    label=str(body_data.get('label', f"body_{i}")),
                    mass=to_float(body_data['mass_kg']),
                    position_au=to_vector(body_data['position_au']),
                    velocity_au_per_day=to_vector(body_data['velocity_au_per_day']),
                ))

            # Parse simulation control
            sim_control = config.get('simulation_control', {}) or {}
            dt = to_float(sim_control.get('timestep_seconds', 1.0))
            snapshot_interval = to_float(sim_control.get('snapshot_interval_days', 7.0)) * const.SECONDS_PER_DAY  # days → s
            max_ticks = sim_control.get('max_ticks')
            if max_ticks is not None:
                max_ticks = int(max_ticks)

            # Parse physics options
            physics_opts = config.get('physics_options', {}) or {}
            update_scheme = physics_opts.get('update_scheme', 'sequential')
            distance_policy = physics_opts.get('distance_policy', 'raise')
            min_distance = to_float(physics_opts.get('min_distance_m', 0.0))

            # Parse diagnostics
            diagnostics = config.get('diagnostics', {}) or {}
            log_level = str(diagnostics.get('log_level', 'INFO')).upper()
            show_progress = to_bool(diagnostics.get('show_progress', False))

            start_time = to_datetime(config.get('start_time', const.DEFAULT_START_TIME))

            params = cls(
                simulation_name=str(config.get('simulation_name', 'nbody')),
                output_directory=str(config.get('output_directory', './results')),
                start_time=start_time,
                bodies=bodies,
                dt=dt,
                snapshot_interval=snapshot_interval,
                max_ticks=max_ticks,
                update_scheme=update_scheme,
                distance_policy=distance_policy,
                min_distance=min_distance,
                log_level=log_level,
                show_progress=show_progress,
            )
        except KeyError as e:
            raise ConfigurationError(f"Missing configuration key: {e}") from e
        except (AttributeError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Malformed configuration value: {e}") from e

        params.check()
        return params

    @classmethod
    def from_yaml(cls, filepath: str) -> 'SimulationParameters':
        """
        Load configuration from YAML file and convert to SI units.

        Args:
            filepath: Path to YAML configuration file

        Returns:
            SimulationParameters object with all values in SI units

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigurationError: If config is invalid
        """
        config_path = Path(filepath)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {filepath}")

        with open(config_path, 'r') as f:
            try:
                config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {filepath}: {e}") from e

        logger.debug("Loaded configuration from %s", config_path)
        return cls.from_dict(config)

    def __repr__(self):
        """Human-readable representation."""
        lines = [
            f"Simulation: {self.simulation_name}",
            f"Start time: {self.start_time.isoformat()}",
            f"Bodies: {len(self.bodies)} configured",
        ]
        for body in self.bodies:
            lines.append(f"  {body}")
        lines.extend([
            f"Timestep: {self.dt} s",
            f"Snapshot interval: {self.snapshot_interval / const.SECONDS_PER_DAY:.2f} days",
            f"Max ticks: {'unbounded' if self.max_ticks is None else self.max_ticks}",
            f"Update scheme: {self.update_scheme}",
            f"Distance policy: {self.distance_policy}",
        ])
        return "\n".join(lines)


def initialize_state(params: SimulationParameters) -> SimulationState:
    """
    Build the initial SimulationState from validated parameters.

    Args:
        params: SimulationParameters object

    Returns:
        SimulationState at time 0, bodies in configuration order
    """
    return SimulationState.from_bodies(
        labels=params.labels,
        masses=[body.mass for body in params.bodies],
        positions=np.array([body.position for body in params.bodies]).reshape(-1, 3),
        velocities=np.array([body.velocity for body in params.bodies]).reshape(-1, 3),
        start_time=params.start_time,
    )
