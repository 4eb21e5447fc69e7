"""Benchmark configuration: specs, loading, validation and layering.

Handles:
- Loading a benchify file from YAML (``.yaml``/``.yml``) or TOML (``.toml``).
- Building immutable tool, runner and test specs from the parsed mapping.
- Merging CLI options over file values.
- Validating the configuration before anything is scheduled.
- Layering global defaults under per-runner overrides into the
  :class:`EffectiveSettings` a pair carries through execution.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Union

import yaml

from benchify.errors import ConfigError
from benchify.interpolate import template_needs_file

log = logging.getLogger("benchify")

SCHEMA_VERSION = 1
DEFAULT_MIN_RUNS = 10
DEFAULT_MAX_RUNS = 1000
DEFAULT_RESULTS_DIR = Path("benchify-results")


# ---------------------------------------------------------------------------
# Specs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ArgvTemplate:
    """Run the tool's program directly with these arguments."""

    args: tuple[str, ...]


@dataclass(frozen=True)
class ShellTemplate:
    """Run this command line through ``sh -c``."""

    command: str


RunTemplate = Union[ArgvTemplate, ShellTemplate]


@dataclass(frozen=True)
class RunnerSpec:
    """How one tool runs the tests carrying one tag."""

    tag: str
    run: RunTemplate
    prepare: str | None = None
    cleanup: str | None = None
    warmup: int | None = None
    min_runs: int | None = None
    max_runs: int | None = None
    timeout: float | None = None

    def needs_file(self) -> bool:
        """True if any phase of this runner interpolates ``{FILE}``."""
        run_template = self.run.args if isinstance(self.run, ArgvTemplate) else self.run.command
        return any(
            template_needs_file(t) for t in (self.prepare, self.cleanup, run_template)
        )


@dataclass(frozen=True)
class ToolSpec:
    """A command-line tool under benchmark."""

    name: str
    program: str
    install_instructions: str = ""
    existence_confirmation: tuple[str, ...] | None = None
    runners: Mapping[str, RunnerSpec] = field(default_factory=dict)


@dataclass(frozen=True)
class TestSpec:
    """One benchmark input, bound to runners through its tag."""

    __test__ = False  # not a pytest test class

    name: str
    tag: str
    file: str | None = None
    extra_args: tuple[str, ...] = ()
    stdin_from_cmd: str | None = None
    stdout_is_timing: bool = False


# ---------------------------------------------------------------------------
# BenchifyConfig
# ---------------------------------------------------------------------------


@dataclass
class BenchifyConfig:
    """Resolved configuration for a benchmark session."""

    schema_version: int = SCHEMA_VERSION
    tags: list[str] = field(default_factory=list)
    tools: list[ToolSpec] = field(default_factory=list)
    tests: list[TestSpec] = field(default_factory=list)

    # Iteration control (global defaults, runners may override)
    warmup: int | None = None
    min_runs: int = DEFAULT_MIN_RUNS
    max_runs: int = DEFAULT_MAX_RUNS
    timeout: float | None = None  # Per-invocation timeout in seconds
    allow_nonzero_exit: bool = False

    # Execution strategy
    parallel_prep: bool = False
    workers: int | None = None  # None = one per CPU

    # Comparison and output
    main_tool: str | None = None
    results_dir: Path = field(default_factory=lambda: DEFAULT_RESULTS_DIR)
    work_dir: Path | None = None  # cwd for every phase; None = current dir

    @property
    def effective_workers(self) -> int:
        """Number of pairs allowed to execute at the same time."""
        if self.workers is not None:
            return max(1, self.workers)
        return os.cpu_count() or 1

    def tool(self, name: str) -> ToolSpec | None:
        for t in self.tools:
            if t.name == name:
                return t
        return None


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EffectiveSettings:
    """Settings for one pair after runner overrides are applied."""

    warmup: int
    min_runs: int
    max_runs: int
    timeout: float | None
    nonzero_exit_is_failure: bool


def _layer(override: Any, default: Any) -> Any:
    return default if override is None else override


def effective_settings(config: BenchifyConfig, runner: RunnerSpec) -> EffectiveSettings:
    """Layer *runner*'s overrides over the global defaults of *config*.

    Warmup falls back to the global value, then to zero.
    """
    return EffectiveSettings(
        warmup=_layer(runner.warmup, _layer(config.warmup, 0)),
        min_runs=_layer(runner.min_runs, config.min_runs),
        max_runs=_layer(runner.max_runs, config.max_runs),
        timeout=_layer(runner.timeout, config.timeout),
        nonzero_exit_is_failure=not config.allow_nonzero_exit,
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass
class ValidationError:
    """A single configuration validation error."""

    field: str
    message: str
    severity: str = "error"  # "error" or "warning"


def validate_config(config: BenchifyConfig) -> list[ValidationError]:
    """Validate a benchmark configuration.

    Returns a list of validation errors.  Empty list means valid.
    """
    errors: list[ValidationError] = []

    if config.schema_version != SCHEMA_VERSION:
        errors.append(
            ValidationError(
                field="benchify_version",
                message=(
                    f"Found config for version {config.schema_version}. "
                    f"Currently only version {SCHEMA_VERSION} is supported."
                ),
            )
        )

    if not config.tools:
        errors.append(ValidationError(field="tools", message="No tools defined."))
    if not config.tests:
        errors.append(ValidationError(field="tests", message="No tests defined."))

    errors.extend(_validate_bounds("", config.min_runs, config.max_runs))

    if config.warmup is not None and config.warmup < 0:
        errors.append(
            ValidationError(
                field="warmup",
                message=f"Warmup runs cannot be negative (got {config.warmup}).",
            )
        )
    if config.timeout is not None and config.timeout <= 0:
        errors.append(
            ValidationError(
                field="timeout",
                message=f"Timeout must be positive (got {config.timeout}).",
            )
        )
    if config.workers is not None and config.workers < 1:
        errors.append(
            ValidationError(
                field="workers",
                message=f"Workers must be at least 1 (got {config.workers}).",
            )
        )
    if config.results_dir.is_file():
        errors.append(
            ValidationError(
                field="results_dir",
                message=f"Results dir {config.results_dir} already exists as a file.",
            )
        )

    tool_names = [t.name for t in config.tools]
    if len(set(tool_names)) != len(tool_names):
        errors.append(ValidationError(field="tools", message="Tool names must be unique."))
    test_names = [t.name for t in config.tests]
    if len(set(test_names)) != len(test_names):
        errors.append(ValidationError(field="tests", message="Test names must be unique."))

    if config.main_tool is not None and config.main_tool not in tool_names:
        errors.append(
            ValidationError(
                field="main_tool",
                message=(
                    f"Main tool {config.main_tool!r} is not one of the known tools. "
                    f"Expected one of {tool_names}"
                ),
            )
        )

    declared = set(config.tags)
    tags_needing_file: dict[str, list[str]] = {}
    for tool in config.tools:
        for tag, runner in tool.runners.items():
            where = f"tools.{tool.name}.runners.{tag}"
            if tag not in declared:
                errors.append(
                    ValidationError(
                        field=where,
                        message=f"Runner tag {tag!r} of {tool.name} is not a declared tag.",
                        severity="warning",
                    )
                )
            errors.extend(
                _validate_bounds(
                    where,
                    _layer(runner.min_runs, config.min_runs),
                    _layer(runner.max_runs, config.max_runs),
                )
            )
            if runner.warmup is not None and runner.warmup < 0:
                errors.append(
                    ValidationError(
                        field=f"{where}.warmup",
                        message=f"Warmup runs cannot be negative (got {runner.warmup}).",
                    )
                )
            if runner.timeout is not None and runner.timeout <= 0:
                errors.append(
                    ValidationError(
                        field=f"{where}.timeout",
                        message=f"Timeout must be positive (got {runner.timeout}).",
                    )
                )
            if runner.needs_file():
                tags_needing_file.setdefault(tag, []).append(tool.name)
        missing = declared - set(tool.runners)
        if missing:
            errors.append(
                ValidationError(
                    field=f"tools.{tool.name}.runners",
                    message=(
                        f"No runner for tag(s) {sorted(missing)} in {tool.name}; "
                        f"those tests will be skipped for this tool."
                    ),
                    severity="warning",
                )
            )

    base_dir = config.work_dir or Path.cwd()
    for test in config.tests:
        where = f"tests.{test.name}"
        if test.tag not in declared:
            errors.append(
                ValidationError(
                    field=f"{where}.tag",
                    message=(
                        f"Invalid tag {test.tag!r} for test {test.name}. "
                        f"Expected one of {sorted(declared)}"
                    ),
                )
            )
        if test.file is not None:
            if not (base_dir / test.file).exists():
                errors.append(
                    ValidationError(
                        field=f"{where}.file",
                        message=(
                            f"Could not find file {test.file} for test {test.name}. "
                            f"Are you sure it exists?"
                        ),
                    )
                )
        elif test.tag in tags_needing_file:
            errors.append(
                ValidationError(
                    field=f"{where}.file",
                    message=(
                        f"Test {test.name} needs a file specified due to runner(s): "
                        f"{tags_needing_file[test.tag]}"
                    ),
                )
            )

    return errors


def _validate_bounds(where: str, min_runs: int, max_runs: int) -> list[ValidationError]:
    prefix = f"{where}." if where else ""
    errors: list[ValidationError] = []
    if min_runs < 1:
        errors.append(
            ValidationError(
                field=f"{prefix}min_runs",
                message=f"Min runs must be at least 1 (got {min_runs}).",
            )
        )
    if min_runs > max_runs:
        errors.append(
            ValidationError(
                field=f"{prefix}min_runs",
                message=f"Min runs ({min_runs}) is greater than max runs ({max_runs}).",
            )
        )
    return errors


def check_config(config: BenchifyConfig) -> None:
    """Validate *config*, logging warnings and raising on errors.

    Raises:
        ConfigError: If any validation error has severity ``error``.
    """
    problems = validate_config(config)
    for w in problems:
        if w.severity == "warning":
            log.warning("Config warning: %s: %s", w.field, w.message)
    fatal = [f"{e.field}: {e.message}" for e in problems if e.severity == "error"]
    if fatal:
        raise ConfigError(fatal)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_config_file(path: Path) -> dict[str, Any]:
    """Parse a benchify file.

    ``.toml`` files are read with :mod:`tomllib`; anything else is
    treated as YAML.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ConfigError: If the file does not parse to a mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix == ".toml":
            data = tomllib.loads(text)
        else:
            data = yaml.safe_load(text)
    except (tomllib.TOMLDecodeError, yaml.YAMLError) as exc:
        raise ConfigError([f"{path}: {exc}"]) from exc

    if not isinstance(data, dict):
        raise ConfigError([f"{path}: config must be a mapping, got {type(data).__name__}"])
    return data


def load_config(
    path: Path,
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> BenchifyConfig:
    """Load, build and validate the benchify config at *path*."""
    config = config_from_dict(load_config_file(path), cli_overrides=cli_overrides)
    check_config(config)
    return config


def _str_tuple(value: Any, where: str, problems: list[str]) -> tuple[str, ...] | None:
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        problems.append(f"{where} must be a list of strings")
        return None
    return tuple(value)


def _scalar(value: Any, where: str, kind: type, problems: list[str]) -> Any:
    """Return *value* if it is None or a *kind*; otherwise record a problem.

    Booleans are never accepted as numbers.  Integers are accepted where
    a float is expected.
    """
    if value is None:
        return None
    accepted = (int, float) if kind is float else (kind,)
    if (isinstance(value, bool) and kind is not bool) or not isinstance(value, accepted):
        problems.append(f"{where} must be {_KIND_NAMES[kind]}, got {value!r}")
        return None
    return value


_KIND_NAMES = {int: "an integer", float: "a number", str: "a string", bool: "true or false"}


def _runner_from_dict(
    tool_name: str, tag: str, data: Any, problems: list[str]
) -> RunnerSpec | None:
    where = f"tools.{tool_name}.runners.{tag}"
    if not isinstance(data, dict):
        problems.append(f"{where} must be a mapping")
        return None

    run_args = _str_tuple(data.get("run_args"), f"{where}.run_args", problems)
    run_cmd = data.get("run_cmd")
    if (run_args is None) == (run_cmd is None):
        problems.append(
            f"Runner {tag!r} for {tool_name!r} should have exactly one of run_cmd "
            f"and run_args set. Got {run_cmd!r} and {data.get('run_args')!r} respectively."
        )
        return None
    run: RunTemplate = ArgvTemplate(run_args) if run_args is not None else ShellTemplate(run_cmd)

    # Empty prepare/cleanup commands are ignored.
    return RunnerSpec(
        tag=tag,
        run=run,
        prepare=data.get("prepare") or None,
        cleanup=data.get("cleanup") or None,
        warmup=_scalar(data.get("warmup"), f"{where}.warmup", int, problems),
        min_runs=_scalar(data.get("min_runs"), f"{where}.min_runs", int, problems),
        max_runs=_scalar(data.get("max_runs"), f"{where}.max_runs", int, problems),
        timeout=_scalar(data.get("timeout"), f"{where}.timeout", float, problems),
    )


def _tool_from_dict(data: Any, index: int, problems: list[str]) -> ToolSpec | None:
    if not isinstance(data, dict):
        problems.append(f"tools[{index}] must be a mapping")
        return None
    name = data.get("name")
    program = data.get("program")
    if not name or not program:
        problems.append(f"tools[{index}] needs both 'name' and 'program'")
        return None

    runners: dict[str, RunnerSpec] = {}
    runners_data = data.get("runners") or {}
    if not isinstance(runners_data, dict):
        problems.append(f"tools.{name}.runners must be a mapping of tag -> runner")
    else:
        for tag, runner_data in runners_data.items():
            runner = _runner_from_dict(name, str(tag), runner_data, problems)
            if runner is not None:
                runners[runner.tag] = runner

    ec = _str_tuple(
        data.get("existence_confirmation"), f"tools.{name}.existence_confirmation", problems
    )
    return ToolSpec(
        name=name,
        program=program,
        install_instructions=data.get("install_instructions", ""),
        # An empty confirmation list means "run the bare program".
        existence_confirmation=ec or None,
        runners=runners,
    )


def _test_from_dict(data: Any, index: int, problems: list[str]) -> TestSpec | None:
    if not isinstance(data, dict):
        problems.append(f"tests[{index}] must be a mapping")
        return None
    name = data.get("name")
    tag = data.get("tag")
    if not name or not tag:
        problems.append(f"tests[{index}] needs both 'name' and 'tag'")
        return None
    extra = _str_tuple(data.get("extra_args"), f"tests.{name}.extra_args", problems)
    return TestSpec(
        name=name,
        tag=tag,
        file=_scalar(data.get("file"), f"tests.{name}.file", str, problems),
        extra_args=extra or (),
        stdin_from_cmd=data.get("stdin_from_cmd") or None,
        stdout_is_timing=bool(data.get("stdout_is_timing", False)),
    )


def config_from_dict(
    data: dict[str, Any],
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> BenchifyConfig:
    """Build a BenchifyConfig from a parsed benchify file.

    CLI overrides take precedence over file values for: results_dir,
    main_tool, workers, parallel_prep, timeout.  ``None`` values in
    *cli_overrides* mean "not given".

    Raises:
        ConfigError: If the mapping is structurally malformed (missing
            names, a runner with both or neither run template, ...).
    """
    cli = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    problems: list[str] = []

    tools: list[ToolSpec] = []
    for i, raw in enumerate(data.get("tools") or []):
        tool = _tool_from_dict(raw, i, problems)
        if tool is not None:
            tools.append(tool)

    tests: list[TestSpec] = []
    for i, raw in enumerate(data.get("tests") or []):
        test = _test_from_dict(raw, i, problems)
        if test is not None:
            tests.append(test)

    tags = data.get("tags") or []
    if not isinstance(tags, list):
        problems.append("'tags' must be a list")
        tags = []

    # CLI values are typed by click; only file values need checking.
    def scalar(key: str, kind: type, default: Any = None) -> Any:
        if key in cli:
            return cli[key]
        value = _scalar(data.get(key), key, kind, problems)
        return default if value is None else value

    schema_version = scalar("benchify_version", int, 0)
    warmup = scalar("warmup", int)
    min_runs = scalar("min_runs", int, DEFAULT_MIN_RUNS)
    max_runs = scalar("max_runs", int, DEFAULT_MAX_RUNS)
    timeout = scalar("timeout", float)
    workers = scalar("workers", int)
    main_tool = scalar("main_tool", str)
    results_dir = scalar("results_dir", str)
    work_dir = scalar("work_dir", str)

    if problems:
        raise ConfigError(problems)

    return BenchifyConfig(
        schema_version=schema_version,
        tags=[str(t) for t in tags],
        tools=tools,
        tests=tests,
        warmup=warmup,
        min_runs=min_runs,
        max_runs=max_runs,
        timeout=timeout,
        allow_nonzero_exit=bool(data.get("allow_nonzero_exit", False)),
        parallel_prep=bool(cli.get("parallel_prep", data.get("parallel_prep", False))),
        workers=workers,
        main_tool=main_tool,
        results_dir=Path(results_dir) if results_dir else DEFAULT_RESULTS_DIR,
        work_dir=Path(work_dir) if work_dir else None,
    )


# ---------------------------------------------------------------------------
# Template
# ---------------------------------------------------------------------------


TEMPLATE = """\
## Schema version. Must be exactly 1.
benchify_version: 1

## Tags group the ways each tool is run. Every test carries one tag and
## every tool provides one runner per tag.
tags: [tag1, tag2]

## Untimed runs before measuring (0 if not specified).
# warmup: 0

## Run every pair's first preparation phase in parallel (false if not specified).
# parallel_prep: true

## Bounds on the number of measured runs (10 and 1000 if not specified).
## The actual number is chosen per tool and test: sampling stops as soon
## as the mean is stable.
# min_runs: 10
# max_runs: 1000

## Per-command timeout in seconds (no timeout if not specified).
# timeout: 60

## Treat a non-zero exit status of the run phase as a valid sample.
# allow_nonzero_exit: false

## Pairs executed concurrently (one per CPU if not specified).
# workers: 1

## Results directory (./benchify-results/ if not specified).
# results_dir: ./benchify-results/

## Baseline for comparisons. If unspecified, the fastest tool of each test.
# main_tool: tool1

## Tools:
##   name, program, existence_confirmation (args proving the program runs;
##   the bare program if omitted), install_instructions.
## Runners (one per tag):
##   prepare / cleanup: shell commands around every run (optional)
##   run_args: argument list for the program, or
##   run_cmd: shell command (exactly one of the two)
##   warmup, min_runs, max_runs, timeout: per-runner overrides
## Interpolants: {NAME} test name, {TAG} current tag, {FILE} test file,
## {...} extra arguments of the test.
tools:
  - name: tool1
    program: program1
    existence_confirmation: ["--version"]
    install_instructions: sudo apt install program1
    runners:
      tag1:
        prepare: cp {FILE} x
        run_args: ["--optimize", "x"]
        cleanup: rm x
        warmup: 3
      tag2:
        run_cmd: program1 {FILE} -- {...}

  - name: tool2
    program: program2
    install_instructions: cargo install program2
    runners:
      tag1:
        prepare: mkdir prog2_{TAG}
        run_args: ["--arg", "{FILE}", "prog2_{TAG}/{FILE}.out"]
        cleanup: rm -rf prog2_{TAG}
      tag2:
        run_cmd: program2 {FILE} -- {...}

## Tests: name, tag, file (optional), extra_args (optional),
## stdin_from_cmd (shell command piped into the run, optional),
## stdout_is_timing (the run prints its own timing in seconds, optional).
tests:
  - name: test1
    tag: tag1
    file: file1.txt

  - name: test2
    tag: tag2
    file: file2.csv
    extra_args: [x, y]
    stdin_from_cmd: cat foobar
"""


def write_template(path: Path) -> None:
    """Write the documented template config to *path*.

    Raises:
        FileExistsError: If *path* already exists.
    """
    if path.exists():
        raise FileExistsError(f"{path} already exists. Not overwriting.")
    path.write_text(TEMPLATE, encoding="utf-8")
