"""
Shader Renderer - Imperative Shell

Handles all GPU operations and side effects.
Uses pure functions from core for calculations.

Follows functional core, imperative shell pattern:
- core.py: Pure transformations (testable, predictable)
- This module: GPU context, frame loop, I/O

Pipeline (strictly sequential, one-shot setup):
1. Create standalone OpenGL context
2. Compile quad vertex shader + user fragment shader, link program
3. Create offscreen render target
4. Resolve time and resolution uniforms
5. Frame loop: uniforms -> clear -> draw -> readback -> sink
"""

import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

import moderngl
import numpy as np

from .core import (
    CLEAR_COLOR,
    RenderSchedule,
    is_blank_frame,
    resolution_value,
    validate_render_parameters,
)
from .errors import SetupError
from .guard import GraphicsCallGuard
from .shaders import (
    QUAD_POSITION_ATTRIBUTE,
    QUAD_VERTEX_SHADER,
    Program,
    ResolvedUniform,
    compile_shader,
    link_program,
)
from .sinks import PixelSink
from .target import RenderTarget


DEFAULT_TIME_UNIFORM = 'iTime'
DEFAULT_RESOLUTION_UNIFORM = 'iResolution'

# Full-screen quad in normalized device coordinates, drawn as a triangle fan
QUAD_VERTICES = np.array([
    [-1.0, -1.0, 0.0],  # Bottom-left
    [ 1.0, -1.0, 0.0],  # Bottom-right
    [ 1.0,  1.0, 0.0],  # Top-right
    [-1.0,  1.0, 0.0],  # Top-left
], dtype='f4')


def log(*args, **kwargs) -> None:
    """Status output; stdout is reserved for pixel data"""
    print(*args, file=sys.stderr, **kwargs)


# ============================================================================
# Performance Timing Utilities
# ============================================================================

class RenderTimings:
    """Accumulates timing data for rendering operations"""
    def __init__(self):
        self.timings = {}
        self.counts = {}

    def record(self, operation: str, duration: float):
        """Record timing for an operation"""
        if operation not in self.timings:
            self.timings[operation] = 0.0
            self.counts[operation] = 0
        self.timings[operation] += duration
        self.counts[operation] += 1

    def get_summary(self) -> Dict[str, Dict[str, float]]:
        """Get timing summary with total, average, and count"""
        summary = {}
        for op, total in self.timings.items():
            count = self.counts[op]
            summary[op] = {
                'total_ms': total * 1000,
                'avg_ms': (total / count) * 1000 if count > 0 else 0,
                'count': count
            }
        return summary


@contextmanager
def time_operation(timings: Optional[RenderTimings], operation: str):
    """Context manager to time an operation

    Args:
        timings: RenderTimings instance to record to (or None to skip timing)
        operation: Name of the operation being timed
    """
    if timings is None:
        yield
        return

    start = time.perf_counter()
    try:
        yield
    finally:
        timings.record(operation, time.perf_counter() - start)


def print_timing_summary(timings: Optional[RenderTimings], title: str = "Render Timing Summary"):
    """Print formatted timing summary to stderr"""
    if timings is None:
        log(f"{title}: Timing disabled")
        return

    summary = timings.get_summary()
    if not summary:
        log(f"{title}: No timing data collected")
        return

    log(f"\n{'='*70}")
    log(title)
    log(f"{'='*70}")
    log(f"{'Operation':<35} {'Total (ms)':>12} {'Avg (ms)':>12} {'Count':>8}")
    log(f"{'-'*70}")

    # Sort by total time descending
    sorted_ops = sorted(summary.items(), key=lambda x: x[1]['total_ms'], reverse=True)
    for op_name, stats in sorted_ops:
        log(f"{op_name:<35} {stats['total_ms']:>12.3f} {stats['avg_ms']:>12.4f} {stats['count']:>8}")

    log(f"{'='*70}\n")


# ============================================================================
# GPU Context
# ============================================================================

class GraphicsContext:
    """Owned standalone OpenGL context (no window required)

    Exactly one per render. Every component receives it (or its guard)
    explicitly instead of relying on an implicit current context.

    Args:
        backend: glcontext backend name (e.g. 'egl'); None for the
            platform default
        require: Minimum OpenGL version (330 = 3.3 core)
    """

    def __init__(self, backend: Optional[str] = None, require: int = 330):
        kwargs = {'require': require}
        if backend:
            kwargs['backend'] = backend
        try:
            self.ctx = moderngl.create_standalone_context(**kwargs)
        except Exception as e:
            raise SetupError(f"Failed to create OpenGL context: {e}") from e

        self.guard = GraphicsCallGuard(self.ctx)
        self.guard.check("create OpenGL context")

    @property
    def renderer_name(self) -> str:
        return self.ctx.info.get('GL_RENDERER', 'unknown')

    def release(self) -> None:
        self.ctx.release()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


# ============================================================================
# Frame Loop
# ============================================================================

class DriverState(Enum):
    IDLE = 'idle'
    READY = 'ready'
    RENDERING = 'rendering'
    DONE = 'done'


class FrameDriver:
    """Per-frame render loop

    IDLE -> READY (prepare) -> RENDERING -> ... -> DONE (run)

    The pixel buffer is allocated once in prepare() and overwritten by
    every frame. Each frame is handed to the sink before the next one is
    rendered; the sink must not keep a reference to it.

    Rows are read back bottom-up (OpenGL origin) and are not flipped.
    """

    def __init__(
        self,
        context: GraphicsContext,
        program: Program,
        target: RenderTarget,
        schedule: RenderSchedule,
        timings: Optional[RenderTimings] = None,
        verbose: bool = False
    ):
        if (target.width, target.height) != (schedule.width, schedule.height):
            raise SetupError(
                f"Render target {target.width}x{target.height} does not match "
                f"schedule {schedule.width}x{schedule.height}"
            )
        self.context = context
        self.guard = context.guard
        self.program = program
        self.target = target
        self.schedule = schedule
        self.timings = timings
        self.verbose = verbose

        self.state = DriverState.IDLE
        self.frames_rendered = 0
        self.blank_frames = 0

        self.pixels: Optional[np.ndarray] = None
        self.frame_view: Optional[memoryview] = None
        self.quad_vbo = None
        self.quad_vao = None
        self.time_uniform: Optional[ResolvedUniform] = None
        self.resolution_uniform: Optional[ResolvedUniform] = None
        self.resolution = None

    def prepare(self, time_uniform: ResolvedUniform, resolution_uniform: ResolvedUniform) -> None:
        """Allocate the pixel buffer and quad geometry

        No frame-dependent work happens here.

        Raises:
            SetupError: If the time uniform is not a single float
        """
        self._require_state(DriverState.IDLE, "prepare")
        ctx = self.context.ctx

        if time_uniform.dimension != 1:
            raise SetupError(
                f"Time uniform '{time_uniform.name}' must be declared as float "
                f"(found {time_uniform.dimension} components)"
            )

        self.time_uniform = time_uniform
        self.resolution_uniform = resolution_uniform
        self.resolution = resolution_value(
            self.schedule.width, self.schedule.height, resolution_uniform.dimension
        )

        self.pixels = np.zeros(self.schedule.frame_size, dtype=np.uint8)
        self.frame_view = memoryview(self.pixels)

        self.quad_vbo = self.guard("create quad vertex buffer", ctx.buffer, QUAD_VERTICES.tobytes())
        self.quad_vao = self.guard(
            "create quad vertex array",
            ctx.vertex_array,
            self.program.handle,
            [(self.quad_vbo, '3f', QUAD_POSITION_ATTRIBUTE)]
        )

        self.state = DriverState.READY

    def render_frame(self, frame_number: int) -> memoryview:
        """Render one frame into the pixel buffer

        Returns:
            View of the pixel buffer, valid until the next render_frame()
        """
        guard = self.guard
        ctx = self.context.ctx
        fbo = self.target.framebuffer

        with time_operation(self.timings, 'update_uniforms'):
            with guard.checked(f"set {self.time_uniform.name} uniform"):
                self.time_uniform.handle.value = self.schedule.frame_time(frame_number)
            with guard.checked(f"set {self.resolution_uniform.name} uniform"):
                self.resolution_uniform.handle.value = self.resolution

        with time_operation(self.timings, 'draw'):
            guard("bind framebuffer", fbo.use)
            with guard.checked("set viewport"):
                ctx.viewport = self.target.viewport
            guard("clear framebuffer", ctx.clear, *CLEAR_COLOR)
            guard("draw full-screen quad", self.quad_vao.render, moderngl.TRIANGLE_FAN, vertices=4)

        with time_operation(self.timings, 'readback'):
            guard(
                "read pixels",
                fbo.read_into, self.pixels,
                viewport=self.target.viewport, components=3, alignment=1
            )

        if is_blank_frame(self.pixels):
            self.blank_frames += 1

        return self.frame_view

    def run(self, sink: PixelSink) -> int:
        """Render every scheduled frame, in order, into the sink

        A failure at any step aborts the run; frames already handed to
        the sink stay written, no partial frame is ever emitted.

        Returns:
            Number of frames rendered
        """
        self._require_state(DriverState.READY, "run")
        total = self.schedule.total_frames
        progress_every = max(self.schedule.fps, 1)

        self.state = DriverState.RENDERING
        for frame_number in range(total):
            frame = self.render_frame(frame_number)

            with time_operation(self.timings, 'sink'):
                sink.consume(frame)
            self.frames_rendered += 1

            if self.verbose and self.frames_rendered % progress_every == 0:
                log(f"  Rendered {self.frames_rendered}/{total} frames "
                    f"({self.schedule.frame_time(self.frames_rendered):.1f}s)...",
                    end='\r', flush=True)

        self.state = DriverState.DONE

        if self.verbose:
            if total:
                log()  # New line after progress
            if self.blank_frames:
                log(f"Warning: {self.blank_frames} of {total} frames read back as all zeros")
        return self.frames_rendered

    def release(self) -> None:
        """Release quad geometry"""
        if self.quad_vao is not None:
            self.guard("release quad vertex array", self.quad_vao.release)
            self.quad_vao = None
        if self.quad_vbo is not None:
            self.guard("release quad vertex buffer", self.quad_vbo.release)
            self.quad_vbo = None

    def _require_state(self, expected: DriverState, action: str) -> None:
        if self.state is not expected:
            raise RuntimeError(
                f"Cannot {action} frame driver in state '{self.state.value}' "
                f"(expected '{expected.value}')"
            )


# ============================================================================
# High-Level Rendering Functions
# ============================================================================

@dataclass
class RenderResult:
    """Outcome of a completed render"""
    frames_rendered: int
    bytes_written: int
    blank_frames: int = 0
    timing_summary: Dict[str, Dict[str, float]] = field(default_factory=dict)


def read_shader_source(shader_path: str) -> str:
    """Load fragment shader source text

    Raises:
        SetupError: If the file is missing or unreadable
    """
    path = Path(shader_path)
    if not path.is_file():
        raise SetupError(f"Shader file not found: {shader_path}")
    try:
        return path.read_text(encoding='utf-8')
    except (OSError, UnicodeDecodeError) as e:
        raise SetupError(f"Failed to read shader file {shader_path}: {e}") from e


def render_shader(
    fragment_source: str,
    schedule: RenderSchedule,
    sink: PixelSink,
    time_uniform: str = DEFAULT_TIME_UNIFORM,
    resolution_uniform: str = DEFAULT_RESOLUTION_UNIFORM,
    backend: Optional[str] = None,
    enable_timing: bool = False,
    verbose: bool = False
) -> RenderResult:
    """Render a fragment shader offscreen and stream every frame to sink

    Side effects:
    - Creates and destroys an OpenGL context
    - Compiles shaders, allocates GPU framebuffer and texture
    - Writes schedule.total_frames frames to sink

    Args:
        fragment_source: GLSL fragment shader source
        schedule: Resolution, fps and duration
        sink: Frame consumer
        time_uniform: Name of the float uniform receiving simulated time
        resolution_uniform: Name of the uniform receiving the resolution
        backend: Optional glcontext backend (e.g. 'egl')
        enable_timing: Collect per-operation timings
        verbose: Print progress to stderr

    Returns:
        RenderResult

    Raises:
        RenderError: Any setup, build, graphics or sink failure (fatal)
    """
    problem = validate_render_parameters(
        schedule.width, schedule.height, schedule.fps, schedule.duration
    )
    if problem:
        raise SetupError(problem)

    timings = RenderTimings() if enable_timing else None

    with GraphicsContext(backend=backend) as context:
        guard = context.guard
        if verbose:
            log(f"OpenGL renderer: {context.renderer_name}")
            log("Compiling shaders...")

        with time_operation(timings, 'setup'):
            vertex_unit = compile_shader(guard, 'vertex', QUAD_VERTEX_SHADER)
            fragment_unit = compile_shader(guard, 'fragment', fragment_source)
            program = link_program(guard, [vertex_unit, fragment_unit])
            target = RenderTarget.create(guard, schedule.width, schedule.height)
            time_u = program.resolve_uniform(time_uniform)
            resolution_u = program.resolve_uniform(resolution_uniform)

        if verbose:
            log(f"✓ Program linked (uniform locations: {program.uniform_locations})")

        driver = FrameDriver(context, program, target, schedule, timings=timings, verbose=verbose)
        try:
            driver.prepare(time_u, resolution_u)
            frames = driver.run(sink)
        finally:
            driver.release()
            target.release()
            program.release()

    result = RenderResult(
        frames_rendered=frames,
        bytes_written=frames * schedule.frame_size,
        blank_frames=driver.blank_frames,
        timing_summary=timings.get_summary() if timings else {}
    )

    if verbose:
        log(f"✓ Rendered {result.frames_rendered} frames ({result.bytes_written} bytes)")
        if timings is not None:
            print_timing_summary(timings)

    return result
