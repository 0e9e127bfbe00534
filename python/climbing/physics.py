"""
Physics collaborator for the climbing environment.

PhysicsBackend is the fixed query vocabulary the environment uses to drive a
single agent body: position/velocity access, force and impulse application,
contact predicates and a fixed-timestep advance(). Scene geometry is described
by a StaircaseLayout and built by whoever owns the physics world.

StaircaseSimulator is a small deterministic kinematic implementation of that
vocabulary for headless training and tests. It models the agent as a point at
its feet: gravity, ground damping, stepping up onto ledges lower than
step_up_height, and treating taller ledges as walls.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import GRAVITY, PHYSICS_TIMESTEP

CONTACT_EPS = 1e-6


@dataclass(frozen=True)
class Support:
    """A climbable step: an axis-aligned footprint in x/z with a flat top."""
    index: int
    center_x: float
    center_z: float
    half_width: float
    half_depth: float
    top: float

    def contains(self, x: float, z: float) -> bool:
        return (abs(x - self.center_x) <= self.half_width and
                abs(z - self.center_z) <= self.half_depth)

    @property
    def center(self) -> np.ndarray:
        """Center of the top surface."""
        return np.array([self.center_x, self.top, self.center_z])


@dataclass
class StaircaseLayout:
    """Supports, start pose and world bounds for one staircase scene."""
    supports: List[Support]
    start_position: Tuple[float, float, float] = (0.0, 0.0, 3.0)
    ground_height: float = 0.0
    lateral_bound: float = 5.0
    back_bound: float = 8.0
    front_bound: float = -15.0
    fall_threshold: float = -2.0

    def __post_init__(self):
        if not self.supports:
            raise ValueError("A staircase needs at least one support")
        for i, support in enumerate(self.supports):
            if support.index != i:
                raise ValueError(f"Support at position {i} has index {support.index}")

    @property
    def goal_index(self) -> int:
        return len(self.supports) - 1

    def supports_at(self, x: float, z: float) -> List[Support]:
        return [s for s in self.supports if s.contains(x, z)]

    def in_bounds(self, position: Sequence[float]) -> bool:
        x, _, z = position
        return abs(x) <= self.lateral_bound and self.front_bound <= z <= self.back_bound


def build_staircase(num_supports: int = 6, first_rise: float = 0.25, rise: float = 0.5,
                    tread_depth: float = 2.0, width: float = 3.0,
                    start_distance: float = 2.0) -> StaircaseLayout:
    """
    Build a straight staircase climbing towards -z.

    Support 0 is low enough to walk onto; every later step needs a jump or a
    grab. The agent starts on the ground `start_distance` in front of support 0.
    """
    if num_supports < 1:
        raise ValueError("num_supports must be at least 1")

    half_depth = tread_depth / 2.0
    supports = [
        Support(
            index=i,
            center_x=0.0,
            center_z=-tread_depth * i,
            half_width=width / 2.0,
            half_depth=half_depth,
            top=first_rise + rise * i,
        )
        for i in range(num_supports)
    ]
    last_edge = -tread_depth * (num_supports - 1) - half_depth
    return StaircaseLayout(
        supports=supports,
        start_position=(0.0, 0.0, half_depth + start_distance),
        front_bound=last_edge - 2.0,
    )


class PhysicsBackend(ABC):
    """Query vocabulary the environment uses to drive the agent body."""

    @abstractmethod
    def get_position(self) -> np.ndarray:
        pass

    @abstractmethod
    def get_velocity(self) -> np.ndarray:
        pass

    @abstractmethod
    def set_position(self, position: Sequence[float]):
        pass

    @abstractmethod
    def set_velocity(self, velocity: Sequence[float]):
        pass

    @abstractmethod
    def apply_force(self, force: Sequence[float]):
        """Apply a force for the next advance() only."""
        pass

    @abstractmethod
    def apply_impulse(self, impulse: Sequence[float]):
        """Change velocity immediately by impulse / mass."""
        pass

    @abstractmethod
    def is_grounded(self) -> bool:
        """True while standing on the ground or on a support."""
        pass

    @abstractmethod
    def is_touching_support(self) -> bool:
        """True while standing on, or pressed against, a climbable support."""
        pass

    @abstractmethod
    def advance(self):
        """Advance the simulation by one fixed timestep."""
        pass


class StaircaseSimulator(PhysicsBackend):
    """Deterministic point-mass simulation over a StaircaseLayout."""

    def __init__(self, layout: StaircaseLayout, timestep: float = PHYSICS_TIMESTEP,
                 gravity: float = GRAVITY, mass: float = 1.0,
                 ground_damping: float = 0.9, air_damping: float = 0.99,
                 step_up_height: float = 0.3, max_horizontal_speed: float = 6.0):
        self.layout = layout
        self.timestep = timestep
        self.gravity = gravity
        self.mass = mass
        self.ground_damping = ground_damping
        self.air_damping = air_damping
        self.step_up_height = step_up_height
        self.max_horizontal_speed = max_horizontal_speed

        self._position = np.array(layout.start_position, dtype=np.float64)
        self._velocity = np.zeros(3)
        self._force = np.zeros(3)
        self._grounded = False
        self._standing_on: Optional[Support] = None
        self._blocked = False
        self._update_contacts(blocked=False)

    def get_position(self) -> np.ndarray:
        return self._position.copy()

    def get_velocity(self) -> np.ndarray:
        return self._velocity.copy()

    def set_position(self, position: Sequence[float]):
        self._position = np.array(position, dtype=np.float64)
        self._force = np.zeros(3)
        self._update_contacts(blocked=False)

    def set_velocity(self, velocity: Sequence[float]):
        self._velocity = np.array(velocity, dtype=np.float64)

    def apply_force(self, force: Sequence[float]):
        self._force = self._force + np.asarray(force, dtype=np.float64)

    def apply_impulse(self, impulse: Sequence[float]):
        self._velocity = self._velocity + np.asarray(impulse, dtype=np.float64) / self.mass

    def is_grounded(self) -> bool:
        return self._grounded

    def is_touching_support(self) -> bool:
        return self._standing_on is not None or self._blocked

    def advance(self):
        dt = self.timestep
        acceleration = self._force / self.mass
        acceleration[1] += self.gravity

        velocity = self._velocity + acceleration * dt
        damping = self.ground_damping if self._grounded else self.air_damping
        velocity[0] *= damping
        velocity[2] *= damping

        speed = np.hypot(velocity[0], velocity[2])
        if speed > self.max_horizontal_speed:
            scale = self.max_horizontal_speed / speed
            velocity[0] *= scale
            velocity[2] *= scale

        old = self._position
        new = old + velocity * dt
        reach = old[1] + self.step_up_height

        # Ledges taller than the step-up height stop horizontal motion
        blocked = any(s.top > reach for s in self.layout.supports_at(new[0], new[2]))
        if blocked:
            new[0], new[2] = old[0], old[2]
            velocity[0] = velocity[2] = 0.0

        floor, _ = self._surface_below(new[0], new[2], reach)
        if new[1] <= floor:
            new[1] = floor
            if velocity[1] < 0:
                velocity[1] = 0.0

        self._position = new
        self._velocity = velocity
        self._force = np.zeros(3)
        self._update_contacts(blocked=blocked)

    def _surface_below(self, x: float, z: float, reach: float) -> Tuple[float, Optional[Support]]:
        """Highest walkable surface at (x, z) whose top is not above `reach`."""
        height, support = -np.inf, None
        if self.layout.ground_height <= reach:
            height = self.layout.ground_height
        for s in self.layout.supports_at(x, z):
            if height < s.top <= reach:
                height, support = s.top, s
        return height, support

    def _update_contacts(self, blocked: bool):
        x, y, z = self._position
        floor, support = self._surface_below(x, z, y + CONTACT_EPS)
        self._grounded = y - floor <= CONTACT_EPS
        self._standing_on = support if self._grounded else None
        self._blocked = blocked
