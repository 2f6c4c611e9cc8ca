# -*- coding: utf-8 -*-
from __future__ import annotations

import math
import os
import sys
import time
import traceback
import unittest
import uuid
from collections import deque
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any,
    Final,
    Literal,
    Protocol,
    Tuple,
    TypeAlias,
    runtime_checkable,
)

try:
    from PIL import Image, ImageDraw
    import numpy as np
    import numpy.typing as npt
    import scipy.stats as stats
except ImportError as import_error:
    print(
        f"Error: Missing dependencies -> {import_error}. "
        "Please run: pip install Pillow numpy scipy"
    )
    sys.exit(1)


Color: TypeAlias = Tuple[int, int, int]
NDArrayF64: TypeAlias = npt.NDArray[np.float64]
NDArrayInt: TypeAlias = npt.NDArray[np.int_]
BeanMode: TypeAlias = Literal["luck", "skill"]
EngineState: TypeAlias = Literal["empty", "loaded", "running", "terminated"]
SeedLike: TypeAlias = int | np.random.SeedSequence | None

NO_BEAN_IN_YPOS: Final[int] = -1
VALID_MODES: Final[frozenset[str]] = frozenset({"luck", "skill"})
DEFAULT_OUTPUT_DIR: Final[Path] = Path("./simulation_outputs").resolve()
DEFAULT_MAX_WORKERS: Final[int] = min(8, os.cpu_count() or 1)
DEFAULT_SEED_FUNC: Callable[[], int] = lambda: int(
    time.time() * 1_000_000
) % (2**32)


class SimulationError(Exception):
    pass


class VisualizationError(Exception):
    pass


class ConfigError(ValueError):
    pass


class InternalConsistencyError(SimulationError):
    pass


class PreconditionViolationError(SimulationError):
    pass


class IndexOutOfRangeError(SimulationError, IndexError):
    pass


def _create_unique_filename(prefix: str, suffix: str) -> str:
    timestamp = time.strftime("%Y%m%d_%H%M%S")
    unique_id = uuid.uuid4().hex[:6]
    return f"{prefix}_{timestamp}_{unique_id}.{suffix}"


def _ensure_output_dir(file_path: Path) -> Path | None:
    resolved_path = file_path.resolve()
    output_dir = resolved_path.parent
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        return resolved_path
    except OSError as e:
        print(
            f"Warning: Directory access error for {output_dir}: {e}",
            file=sys.stderr,
        )
        return None


def _validate_positive_ints(*named_values: Tuple[str, Any]) -> None:
    for name, value in named_values:
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ConfigError(
                f"Configuration error: '{name}' must be a positive integer, got {value}."
            )


def _validate_non_negative_ints(*named_values: Tuple[str, Any]) -> None:
    for name, value in named_values:
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ConfigError(
                f"Configuration error: '{name}' must be a non-negative integer, got {value}."
            )


def _validate_mode(mode: Any) -> None:
    if mode not in VALID_MODES:
        raise ConfigError(
            f"Invalid bean mode '{mode}'. Must be one of {sorted(VALID_MODES)}."
        )


@dataclass(frozen=True)
class BeanCounterConfig:
    SLOT_COUNT: int = 10
    BEAN_COUNT: int = 400
    MODE: BeanMode = "luck"
    DEBUG: bool = False
    SEED: int | None = field(default_factory=DEFAULT_SEED_FUNC)
    X_SPACING: int = 3
    BATCH_RUNS: int = 0
    IMAGE_WIDTH: int = 400
    IMAGE_HEIGHT: int = 300
    BACKGROUND_COLOR: Color = (40, 40, 80)
    LEFT_COLOR: Color = (100, 100, 220)
    RIGHT_COLOR: Color = (100, 220, 100)
    HISTOGRAM_BAR_MIN_WIDTH: int = 1
    DEFAULT_IMAGE_FILENAME: str = field(
        default_factory=lambda: _create_unique_filename(
            "bean_counter", "png"
        )
    )

    def __post_init__(self) -> None:
        _validate_positive_ints(
            ("SLOT_COUNT", self.SLOT_COUNT),
            ("X_SPACING", self.X_SPACING),
            ("IMAGE_WIDTH", self.IMAGE_WIDTH),
            ("IMAGE_HEIGHT", self.IMAGE_HEIGHT),
            ("HISTOGRAM_BAR_MIN_WIDTH", self.HISTOGRAM_BAR_MIN_WIDTH),
        )
        _validate_non_negative_ints(
            ("BEAN_COUNT", self.BEAN_COUNT),
            ("BATCH_RUNS", self.BATCH_RUNS),
        )
        if self.SEED is not None:
            _validate_non_negative_ints(("SEED", self.SEED))
        if self.X_SPACING % 2 == 0:
            raise ConfigError(
                f"Configuration error: 'X_SPACING' must be odd, got {self.X_SPACING}."
            )
        _validate_mode(self.MODE)


def next_column(current_column: int, random_bit: int) -> int:
    if random_bit not in (0, 1):
        raise SimulationError(
            f"Peg decision must be 0 (stay) or 1 (advance), got {random_bit}."
        )
    return current_column + int(random_bit)


@runtime_checkable
class BeanPolicy(Protocol):
    def decide(self, row: int, column: int) -> int:
        ...


class LuckPolicy:
    """Fair coin at every peg, drawn from an injected generator."""

    def __init__(self, rng: np.random.Generator) -> None:
        self._rng: Final = rng

    def decide(self, row: int, column: int) -> int:
        return int(self._rng.integers(0, 2))

    def __repr__(self) -> str:
        return "LuckPolicy()"


class SkillPolicy:
    """Moves right until the column reaches the skill level, then stays.

    The decision only depends on the current column, so a bean replays the
    same path after every reset.
    """

    def __init__(self, skill_level: int) -> None:
        _validate_non_negative_ints(("skill_level", skill_level))
        self._skill_level: Final[int] = skill_level

    @classmethod
    def from_rng(
        cls, slot_count: int, rng: np.random.Generator
    ) -> SkillPolicy:
        _validate_positive_ints(("slot_count", slot_count))
        mean = (slot_count - 1) * 0.5
        std_dev = math.sqrt(slot_count * 0.5 * (1 - 0.5))
        level = int(round(rng.normal(mean, std_dev)))
        return cls(int(np.clip(level, 0, slot_count - 1)))

    @property
    def skill_level(self) -> int:
        return self._skill_level

    def decide(self, row: int, column: int) -> int:
        return 1 if column < self._skill_level else 0

    def __repr__(self) -> str:
        return f"SkillPolicy(skill_level={self._skill_level})"


class Bean:
    def __init__(self, policy: BeanPolicy) -> None:
        if not isinstance(policy, BeanPolicy):
            raise TypeError(
                f"Bean policy must provide decide(row, column), got {type(policy).__name__}."
            )
        self._policy = policy
        self._x_pos = 0
        self._y_pos = 0

    @property
    def policy(self) -> BeanPolicy:
        return self._policy

    @property
    def x_pos(self) -> int:
        return self._x_pos

    @property
    def y_pos(self) -> int:
        return self._y_pos

    def choose(self) -> int:
        bit = self._policy.decide(self._y_pos, self._x_pos)
        self._x_pos = next_column(self._x_pos, bit)
        self._y_pos += 1
        return self._x_pos

    def reset(self) -> None:
        self._x_pos = 0
        self._y_pos = 0

    def __repr__(self) -> str:
        return f"Bean(x_pos={self._x_pos}, y_pos={self._y_pos}, policy={self._policy!r})"


def create_beans(
    slot_count: int,
    bean_count: int,
    mode: BeanMode,
    seed: SeedLike = None,
) -> list[Bean]:
    _validate_positive_ints(("slot_count", slot_count))
    _validate_non_negative_ints(("bean_count", bean_count))
    _validate_mode(mode)

    seed_sequence = (
        seed
        if isinstance(seed, np.random.SeedSequence)
        else np.random.SeedSequence(seed)
    )
    beans: list[Bean] = []
    for child in seed_sequence.spawn(bean_count):
        rng = np.random.default_rng(child)
        policy: BeanPolicy = (
            LuckPolicy(rng)
            if mode == "luck"
            else SkillPolicy.from_rng(slot_count, rng)
        )
        beans.append(Bean(policy))
    return beans


class SimulationEngine:
    """Bean counter state machine.

    Logical coordinates of in-flight beans for a 4-slot machine::

        (0, 0)
        (0, 1) (1, 1)
        (0, 2) (1, 2) (2, 2)
        (0, 3) (1, 3) (2, 3) (3, 3)
        [Slot0] [Slot1] [Slot2] [Slot3]
    """

    def __init__(self, slot_count: int) -> None:
        _validate_positive_ints(("slot_count", slot_count))
        self._in_flight: list[Bean | None] = [None] * slot_count
        self._remaining: deque[Bean] = deque()
        self._slots: list[deque[Bean]] = [
            deque() for _ in range(slot_count)
        ]
        self._population = 0
        self._state: EngineState = "empty"

    @classmethod
    def create(cls, slot_count: int) -> SimulationEngine:
        return cls(slot_count)

    @property
    def slot_count(self) -> int:
        return len(self._slots)

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_terminated(self) -> bool:
        return self._state == "terminated"

    @property
    def population(self) -> int:
        return self._population

    @property
    def remaining_bean_count(self) -> int:
        return len(self._remaining)

    @property
    def in_flight_bean_count(self) -> int:
        return sum(1 for bean in self._in_flight if bean is not None)

    @property
    def settled_bean_count(self) -> int:
        return sum(len(slot) for slot in self._slots)

    def _check_index(self, index: Any, kind: str) -> None:
        if not isinstance(index, int) or isinstance(index, bool):
            raise TypeError(f"{kind} index must be an integer.")
        if not 0 <= index < self.slot_count:
            raise IndexOutOfRangeError(
                f"{kind} index {index} out of range for {self.slot_count} slots."
            )

    def in_flight_bean_x_pos(self, y_pos: int) -> int:
        self._check_index(y_pos, "Row")
        bean = self._in_flight[y_pos]
        return bean.x_pos if bean is not None else NO_BEAN_IN_YPOS

    def slot_bean_count(self, slot_index: int) -> int:
        self._check_index(slot_index, "Slot")
        return len(self._slots[slot_index])

    def slot_bean_counts(self) -> list[int]:
        return [len(slot) for slot in self._slots]

    def average_slot_bean_count(self) -> float:
        counts = np.asarray(self.slot_bean_counts(), dtype=np.float64)
        if counts.sum() <= 0:
            return 0.0
        return float(np.average(np.arange(self.slot_count), weights=counts))

    def _admit_bean_at_top(self) -> None:
        if self._remaining:
            bean = self._remaining.popleft()
            bean.reset()
            self._in_flight[0] = bean
        else:
            self._in_flight[0] = None

    def _loaded_state(self) -> EngineState:
        return "loaded" if self._population > 0 else "empty"

    def reset(self, beans: Sequence[Bean] | None) -> None:
        population = list(beans) if beans is not None else []
        if len({id(bean) for bean in population}) != len(population):
            raise ConfigError(
                "The same bean cannot be added to the machine more than once."
            )

        self._remaining.clear()
        for row in range(self.slot_count):
            self._in_flight[row] = None
        for slot in self._slots:
            slot.clear()

        for bean in population:
            bean.reset()
        self._remaining.extend(population)
        self._population = len(population)
        self._admit_bean_at_top()
        self._state = self._loaded_state()

    def repeat(self) -> None:
        for slot in self._slots:
            self._remaining.extend(slot)
            slot.clear()
        for row, bean in enumerate(self._in_flight):
            if bean is not None:
                self._remaining.append(bean)
                self._in_flight[row] = None
        self._admit_bean_at_top()
        self._state = self._loaded_state()

    def _settle(self, bean: Bean) -> None:
        slot_index = bean.x_pos
        if not 0 <= slot_index < self.slot_count:
            raise InternalConsistencyError(
                f"Bean settled at column {slot_index}, outside slots [0, {self.slot_count})."
            )
        self._slots[slot_index].append(bean)

    def advance_step(self) -> bool:
        last_row = self.slot_count - 1
        moved = False
        for row in range(last_row, -1, -1):
            bean = self._in_flight[row]
            if bean is not None:
                if row == last_row:
                    self._settle(bean)
                    self._in_flight[row] = None
                else:
                    bean.choose()
                    if not 0 <= bean.x_pos <= row + 1:
                        raise InternalConsistencyError(
                            f"Bean moved to illegal position ({bean.x_pos}, {row + 1})."
                        )
                    self._in_flight[row + 1] = bean
                moved = True
            elif row < last_row:
                self._in_flight[row + 1] = None
        self._admit_bean_at_top()
        self._state = "running" if moved else "terminated"
        return moved

    def run_to_completion(
        self, on_step: Callable[[SimulationEngine], None] | None = None
    ) -> int:
        steps = 0
        while self.advance_step():
            steps += 1
            if on_step is not None:
                on_step(self)
        return steps

    def _require_settled_only(self, operation: str) -> None:
        if self._remaining or self.in_flight_bean_count:
            raise PreconditionViolationError(
                f"{operation} requires a terminated machine, but "
                f"{self.remaining_bean_count} beans are remaining and "
                f"{self.in_flight_bean_count} are in flight."
            )

    def _truncate(self, slot_order: Iterable[int]) -> int:
        beans_to_remove = max(self.settled_bean_count - 1, 0) // 2
        removed = 0
        for slot_index in slot_order:
            if removed >= beans_to_remove:
                break
            slot = self._slots[slot_index]
            take = min(len(slot), beans_to_remove - removed)
            for _ in range(take):
                slot.popleft()
            removed += take
        self._population -= removed
        return removed

    def upper_half(self) -> int:
        self._require_settled_only("upper_half")
        return self._truncate(range(self.slot_count))

    def lower_half(self) -> int:
        self._require_settled_only("lower_half")
        return self._truncate(range(self.slot_count - 1, -1, -1))

    def __repr__(self) -> str:
        return (
            f"SimulationEngine(slot_count={self.slot_count}, state={self._state!r}, "
            f"population={self._population})"
        )


class SlotReporter:
    def __init__(
        self,
        engine: SimulationEngine,
        config: BeanCounterConfig | None = None,
    ) -> None:
        self.engine = engine
        self.config = config or BeanCounterConfig()
        self._image: Image.Image | None = None
        self._draw: ImageDraw.ImageDraw | None = None

    @property
    def _column_width(self) -> int:
        return self.config.X_SPACING + 1

    def _indent(self, y_pos: int) -> int:
        width = self._column_width
        root_indent = (self.engine.slot_count - 1) * width // 2 + width
        return root_indent - width // 2 * y_pos

    def slot_string(self) -> str:
        width = self._column_width
        return "".join(
            f"{count:>{width}d}" for count in self.engine.slot_bean_counts()
        )

    def board_string(self) -> str:
        width = self._column_width
        lines: list[str] = []
        for y_pos in range(self.engine.slot_count):
            bean_x_pos = self.engine.in_flight_bean_x_pos(y_pos)
            line = ""
            for x_pos in range(y_pos + 1):
                spacing = self._indent(y_pos) if x_pos == 0 else width
                peg = 1 if x_pos == bean_x_pos else 0
                line += f"{peg:>{spacing}d}"
            lines.append(line + "\n")
        return "".join(lines) + self.slot_string()

    def __str__(self) -> str:
        return self.board_string()

    def _prepare_image_context(self) -> None:
        cfg = self.config
        try:
            self._image = Image.new(
                "RGB",
                (cfg.IMAGE_WIDTH, cfg.IMAGE_HEIGHT),
                cfg.BACKGROUND_COLOR,
            )
            self._draw = ImageDraw.Draw(self._image)
        except Exception as e:
            self._image = None
            self._draw = None
            raise VisualizationError(
                f"Failed to initialize image context (size: {cfg.IMAGE_WIDTH}x{cfg.IMAGE_HEIGHT}): {e}"
            ) from e

    def generate_image(self) -> Image.Image:
        self._prepare_image_context()
        if self._image is None or self._draw is None:
            raise VisualizationError(
                "Image context is not available for drawing. Preparation failed."
            )

        cfg = self.config
        counts = self.engine.slot_bean_counts()
        max_frequency = max(counts)
        if max_frequency <= 0:
            return self._image

        num_slots = len(counts)
        bar_width = max(cfg.HISTOGRAM_BAR_MIN_WIDTH, cfg.IMAGE_WIDTH // num_slots)
        image_center = cfg.IMAGE_WIDTH / 2.0
        height_scale = cfg.IMAGE_HEIGHT / max_frequency

        try:
            for i, frequency in enumerate(counts):
                if frequency <= 0:
                    continue

                bar_height = max(1, int(round(frequency * height_scale)))
                x0 = i * bar_width
                y0 = cfg.IMAGE_HEIGHT - bar_height
                x1 = x0 + bar_width - 1
                y1 = cfg.IMAGE_HEIGHT - 1

                bar_color = (
                    cfg.LEFT_COLOR
                    if x0 + bar_width / 2.0 < image_center
                    else cfg.RIGHT_COLOR
                )
                self._draw.rectangle((x0, y0, x1, y1), fill=bar_color)
        except Exception as e:
            raise VisualizationError(
                f"Failed to draw histogram bars: {e}"
            ) from e

        return self._image

    def save_image(self, filename: str | Path | None = None) -> str:
        output_path = Path(
            filename or (DEFAULT_OUTPUT_DIR / self.config.DEFAULT_IMAGE_FILENAME)
        )

        resolved_path = _ensure_output_dir(output_path)
        if resolved_path is None:
            raise IOError(
                f"Invalid output path or directory creation failed for '{output_path}'. Image not saved."
            )

        try:
            self.generate_image().save(resolved_path)
            return str(resolved_path)
        except (OSError, VisualizationError) as e:
            raise IOError(
                f"Failed to save bean counter image to '{resolved_path}': {e}"
            ) from e


class SlotStatistics:
    def __init__(self, counts: Sequence[int] | NDArrayInt) -> None:
        data = np.asarray(counts, dtype=np.int64)
        if data.ndim != 1 or data.size == 0:
            raise ValueError(
                f"Slot counts must be a non-empty 1-D sequence, got shape {data.shape}."
            )
        if np.any(data < 0):
            raise ValueError("Slot counts cannot be negative.")
        self._counts: Final[NDArrayInt] = data

    @classmethod
    def from_engine(cls, engine: SimulationEngine) -> SlotStatistics:
        return cls(engine.slot_bean_counts())

    @property
    def counts(self) -> NDArrayInt:
        return self._counts.copy()

    @property
    def slot_count(self) -> int:
        return int(self._counts.size)

    @property
    def total(self) -> int:
        return int(self._counts.sum())

    @property
    def mean(self) -> float:
        if self.total == 0:
            return 0.0
        return float(
            np.average(np.arange(self.slot_count), weights=self._counts)
        )

    @property
    def variance(self) -> float:
        if self.total == 0:
            return 0.0
        offsets = np.arange(self.slot_count) - self.mean
        return float(np.average(offsets**2, weights=self._counts))

    @property
    def std(self) -> float:
        return math.sqrt(self.variance)

    def expected_counts(self) -> NDArrayF64:
        pmf = stats.binom.pmf(np.arange(self.slot_count), self.slot_count - 1, 0.5)
        return pmf * self.total

    def chi_square(self) -> tuple[float, float]:
        if self.total == 0 or self.slot_count < 2:
            return math.nan, math.nan
        expected = self.expected_counts()
        result = stats.chisquare(
            f_obs=self._counts.astype(np.float64),
            f_exp=expected * (self.total / expected.sum()),
        )
        return float(result.statistic), float(result.pvalue)

    def summary(self) -> str:
        statistic, p_value = self.chi_square()
        expected = ", ".join(f"{value:.1f}" for value in self.expected_counts())
        return "\n".join(
            [
                f"Beans in slots:        {self.total:,}",
                f"Average slot:          {self.mean:.4f}",
                f"Standard deviation:    {self.std:.4f}",
                f"Binomial expectation:  [{expected}]",
                f"Chi-square statistic:  {statistic:.4f} (p-value: {p_value:.4f})",
            ]
        )


class BatchSimulator:
    def __init__(
        self,
        config: BeanCounterConfig,
        runs: int,
        max_workers: int | None = None,
    ) -> None:
        _validate_positive_ints(("runs", runs))
        self.config = config
        self.runs = runs
        self.max_workers = max_workers or min(runs, DEFAULT_MAX_WORKERS)
        self._results: NDArrayF64 | None = None

    def _run_single(self, seed_sequence: np.random.SeedSequence) -> list[int]:
        cfg = self.config
        engine = SimulationEngine(cfg.SLOT_COUNT)
        engine.reset(
            create_beans(cfg.SLOT_COUNT, cfg.BEAN_COUNT, cfg.MODE, seed_sequence)
        )
        engine.run_to_completion()
        return engine.slot_bean_counts()

    def run(self) -> NDArrayF64:
        slot_count = self.config.SLOT_COUNT
        results = np.full((self.runs, slot_count), np.nan)
        children = np.random.SeedSequence(self.config.SEED).spawn(self.runs)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_run = {
                executor.submit(self._run_single, child): run_index
                for run_index, child in enumerate(children)
            }

            for future in as_completed(future_to_run):
                run_index = future_to_run[future]
                try:
                    results[run_index] = future.result()
                except SimulationError as e:
                    print(
                        f"Warning: Batch run {run_index} failed: {e}",
                        file=sys.stderr,
                    )
                except Exception as e:
                    print(
                        f"Warning: Unexpected error in batch run {run_index}: {type(e).__name__}: {e}",
                        file=sys.stderr,
                    )
                    traceback.print_exc(file=sys.stderr)

        self._results = results
        return results

    def mean_counts(self) -> NDArrayF64:
        results = self._results if self._results is not None else self.run()
        if np.all(np.isnan(results)):
            return np.full(self.config.SLOT_COUNT, np.nan)
        return np.nanmean(results, axis=0)


class SimulationRunner:
    def __init__(self, config: BeanCounterConfig | None = None) -> None:
        self.config = config or BeanCounterConfig()
        self.engine = SimulationEngine(self.config.SLOT_COUNT)
        self.reporter = SlotReporter(self.engine, self.config)
        self.beans: list[Bean] = []
        self.statistics: SlotStatistics | None = None
        self.batch_results: NDArrayF64 | None = None

    def _run_task(
        self,
        task_name: str,
        task_func: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> bool:
        print(f"\n--- Running {task_name} ---")
        start_time = time.monotonic()
        success = False
        try:
            task_func(*args, **kwargs)
            success = True
        except (SimulationError, VisualizationError, ConfigError, IOError) as e:
            print(
                f"ERROR during {task_name}: {type(e).__name__}: {e}",
                file=sys.stderr,
            )
        except Exception as e:
            print(
                f"UNEXPECTED ERROR during {task_name}: {type(e).__name__}: {e}",
                file=sys.stderr,
            )
            traceback.print_exc(file=sys.stderr)
        finally:
            elapsed_time = time.monotonic() - start_time
            status = "OK" if success else "FAILED"
            print(
                f"--- {task_name} {status} (Duration: {elapsed_time:.2f}s) ---"
            )
        return success

    def _print_board(self, _: SimulationEngine) -> None:
        print(self.reporter.board_string())

    def run_bean_counter(self) -> bool:
        def task():
            cfg = self.config
            print(
                f"Dropping {cfg.BEAN_COUNT:,} beans into {cfg.SLOT_COUNT} slots (mode: {cfg.MODE}, seed: {cfg.SEED})..."
            )
            self.beans = create_beans(
                cfg.SLOT_COUNT, cfg.BEAN_COUNT, cfg.MODE, cfg.SEED
            )
            self.engine.reset(self.beans)
            if cfg.DEBUG:
                print(self.reporter.board_string())

            steps = self.engine.run_to_completion(
                self._print_board if cfg.DEBUG else None
            )
            print(f"Machine terminated after {steps:,} steps.")
            print("Slot bean counts:")
            print(self.reporter.slot_string())

        return self._run_task("Bean Counter Simulation", task)

    def run_statistics(self) -> bool:
        def task():
            self.statistics = SlotStatistics.from_engine(self.engine)
            print(self.statistics.summary())

        return self._run_task("Slot Statistics", task)

    def run_image_export(self) -> bool:
        def task():
            saved_path = self.reporter.save_image()
            print(f"Bean counter image saved: {saved_path}")

        return self._run_task("Slot Histogram Export", task)

    def run_batch(self) -> bool:
        def task():
            cfg = self.config
            print(
                f"Running {cfg.BATCH_RUNS:,} independent machines ({cfg.BEAN_COUNT:,} beans each)..."
            )
            simulator = BatchSimulator(cfg, cfg.BATCH_RUNS)
            self.batch_results = simulator.run()
            mean_counts = simulator.mean_counts()
            print(
                "Mean slot bean counts: "
                + " ".join(f"{value:.2f}" for value in mean_counts)
            )

        return self._run_task("Batch Simulation", task)

    def run_all(
        self, run_statistics: bool = True, save_image: bool = False
    ) -> bool:
        task_results = [self.run_bean_counter()]
        if task_results[0]:
            if run_statistics:
                task_results.append(self.run_statistics())
            if save_image:
                task_results.append(self.run_image_export())
        if self.config.BATCH_RUNS > 0:
            task_results.append(self.run_batch())
        return all(task_results)


def show_usage() -> None:
    script_name = Path(sys.argv[0]).name if sys.argv and sys.argv[0] else "bean_counter.py"
    print(
        f"Usage: python {script_name} slot_count bean_count <luck | skill> [debug] "
        "[--seed N] [--batch N] [--save-image]"
    )
    print(f"Example: python {script_name} 10 400 luck")
    print(f"Example: python {script_name} 20 1000 skill debug")


def display_help() -> None:
    show_usage()
    print(
        f"""
Bean Counter: step-by-step quincunx (Galton board) simulation.

Options:
  debug         : Print the board after every step.
  --seed N      : Seed for the bean decision streams (reproducible runs).
  --batch N     : Also run N independent machines and report mean counts.
  --save-image  : Save a histogram of the slot counts as a PNG image.
  --test [-v N] : Run the unit test suite (verbosity 0, 1 or 2).
  --help, -h    : Display this help message and exit.

Modes:
  luck  : Every bean decides each peg with its own independent coin.
  skill : Every bean follows a fixed path set by its skill level, so a
          repeated run reproduces the same slot counts.

Default Output Directory:
  Generated files are saved to: {DEFAULT_OUTPUT_DIR}
"""
    )


def run(
    slot_count: int,
    bean_count: int,
    mode: str,
    debug: bool = False,
    seed: int | None = None,
    batch_runs: int = 0,
    save_image: bool = False,
) -> int:
    try:
        config = BeanCounterConfig(
            SLOT_COUNT=slot_count,
            BEAN_COUNT=bean_count,
            MODE=mode,
            DEBUG=debug,
            SEED=seed if seed is not None else DEFAULT_SEED_FUNC(),
            BATCH_RUNS=batch_runs,
        )
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        show_usage()
        return 0

    runner = SimulationRunner(config)
    success = runner.run_all(run_statistics=True, save_image=save_image)
    return 0 if success else 1


def _parse_cli_args(args: Sequence[str]) -> dict[str, Any] | None:
    options: dict[str, Any] = {
        "seed": None,
        "batch_runs": 0,
        "save_image": False,
    }
    positional: list[str] = []
    arg_iter = iter(args)
    for arg in arg_iter:
        if arg in ("--seed", "--batch"):
            value = next(arg_iter, None)
            if value is None or not value.isdigit():
                return None
            options["seed" if arg == "--seed" else "batch_runs"] = int(value)
        elif arg == "--save-image":
            options["save_image"] = True
        else:
            positional.append(arg)

    if len(positional) not in (3, 4):
        return None
    try:
        slot_count = int(positional[0])
        bean_count = int(positional[1])
    except ValueError:
        return None
    if bean_count < 0 or positional[2] not in VALID_MODES:
        return None

    return {
        "slot_count": slot_count,
        "bean_count": bean_count,
        "mode": positional[2],
        "debug": len(positional) == 4 and positional[3] == "debug",
        **options,
    }


def run_tests(verbosity_level: int = 2) -> int:
    import test_bean_counter

    print("\n--- Running Unit Tests ---")
    loader = unittest.TestLoader()
    suite = loader.loadTestsFromModule(test_bean_counter)
    runner = unittest.TextTestRunner(
        verbosity=verbosity_level, failfast=False, buffer=True
    )
    result = runner.run(suite)

    print("\n--- Unit Tests Complete ---")
    print(f"Total Tests Run: {result.testsRun}")
    print(f"Failures: {len(result.failures)}")
    print(f"Errors: {len(result.errors)}")
    print(f"Skipped: {len(result.skipped)}")

    return 0 if result.wasSuccessful() else 1


def _parse_test_verbosity(command_args: list[str]) -> int:
    if "-v" not in command_args:
        return 2
    v_index = command_args.index("-v")
    level_str = command_args[v_index + 1] if v_index + 1 < len(command_args) else ""
    if level_str.isdigit() and int(level_str) in (0, 1, 2):
        return int(level_str)
    print(
        "Warning: Verbosity level after -v must be 0, 1, or 2. Using default (2).",
        file=sys.stderr,
    )
    return 2


def main(argv: Sequence[str] | None = None) -> int:
    command_args = list(sys.argv[1:] if argv is None else argv)

    if "--test" in command_args:
        return run_tests(verbosity_level=_parse_test_verbosity(command_args))

    if "--help" in command_args or "-h" in command_args:
        display_help()
        return 0

    parsed = _parse_cli_args(command_args)
    if parsed is None:
        show_usage()
        return 0

    try:
        return run(**parsed)
    except Exception as e:
        print(
            f"\nCRITICAL UNHANDLED ERROR: {type(e).__name__}: {e}",
            file=sys.stderr,
        )
        traceback.print_exc(file=sys.stderr)
        return 3


if __name__ == "__main__":
    sys.exit(main())
