"""
Integration tests for the shader renderer imperative shell

Tests GPU operations and the full render pipeline without mocking.
Uses 2-tier approach:
  1. Smoke tests - fast sanity checks
  2. Property tests - verify output contract (size, order, content)

Tries the platform default context, then EGL; skipped when neither works.
"""

import numpy as np
import pytest

from shader_renderer.core import RenderSchedule
from shader_renderer.errors import (
    CompileError,
    LinkError,
    SetupError,
    SinkError,
    UniformNotFoundError,
)
from shader_renderer.shaders import QUAD_VERTEX_SHADER, compile_shader, link_program
from shader_renderer.shell import (
    DriverState,
    FrameDriver,
    GraphicsContext,
    render_shader,
)
from shader_renderer.sinks import PixelSink
from shader_renderer.target import RenderTarget


# ============================================================================
# Shaders
# ============================================================================

# (time, resolution.x, resolution.y) packed into RGB
TIME_RESOLUTION_SHADER = """#version 330 core
uniform float iTime;
uniform vec3 iResolution;
out vec4 fragColor;
void main() {
    fragColor = vec4(iTime, iResolution.x, iResolution.y, 1.0);
}
"""

# Red ramps from bottom row to top row
VERTICAL_GRADIENT_SHADER = """#version 330 core
uniform float iTime;
uniform vec3 iResolution;
out vec4 fragColor;
void main() {
    float y = gl_FragCoord.y / iResolution.y;
    fragColor = vec4(y + min(iTime, 0.0), 0.0, 0.0, 1.0);
}
"""

CONSTANT_COLOR_SHADER = """#version 330 core
uniform float iTime;
uniform vec2 iResolution;
out vec4 fragColor;
void main() {
    float zero = min(iTime, 0.0) + min(iResolution.x, 0.0);
    fragColor = vec4(0.2 + zero, 0.4, 0.6, 1.0);
}
"""

BLACK_SHADER = """#version 330 core
uniform float iTime;
uniform vec3 iResolution;
out vec4 fragColor;
void main() {
    fragColor = vec4(min(iTime, 0.0), min(iResolution.x, 0.0), 0.0, 1.0);
}
"""

NO_UNIFORMS_SHADER = """#version 330 core
out vec4 fragColor;
void main() {
    fragColor = vec4(1.0, 0.0, 0.0, 1.0);
}
"""

SYNTAX_ERROR_SHADER = """#version 330 core
uniform float iTime;
out vec4 fragColor;
void main() {
    fragColor = vec4(iTime) oops
}
"""

# Calls a function that is declared but never defined
UNDEFINED_FUNCTION_SHADER = """#version 330 core
uniform float iTime;
uniform vec3 iResolution;
out vec4 fragColor;
float helper(float x);
void main() {
    fragColor = vec4(helper(iTime), iResolution.x, 0.0, 1.0);
}
"""

VEC2_TIME_SHADER = """#version 330 core
uniform vec2 iTime;
uniform vec3 iResolution;
out vec4 fragColor;
void main() {
    fragColor = vec4(iTime, iResolution.x, 1.0);
}
"""



# ============================================================================
# Test Fixtures
# ============================================================================

class CollectingSink(PixelSink):
    """Keeps a copy of every frame"""

    def __init__(self):
        super().__init__()
        self.frames = []

    def consume(self, frame):
        self.frames.append(bytes(frame))
        self.frames_written += 1

    @property
    def data(self):
        return b''.join(self.frames)


class FailingSink(CollectingSink):
    """Accepts a fixed number of frames, then fails"""

    def __init__(self, accept):
        super().__init__()
        self.accept = accept

    def consume(self, frame):
        if self.frames_written >= self.accept:
            raise SinkError("pipe closed")
        super().consume(frame)


# Platform default first, then EGL for headless hosts
BACKENDS = (None, 'egl')


@pytest.fixture(scope='module')
def gl_backend():
    """First standalone context backend that works on this machine"""
    failures = []
    for backend in BACKENDS:
        try:
            context = GraphicsContext(backend=backend)
        except SetupError as e:
            failures.append(f"{backend or 'default'}: {e}")
            continue
        context.release()
        return backend
    pytest.skip(f"OpenGL context unavailable ({'; '.join(failures)})")


@pytest.fixture
def context(gl_backend):
    with GraphicsContext(backend=gl_backend) as ctx:
        yield ctx


@pytest.fixture
def render(gl_backend):
    """render(source, width, height, fps, duration, sink=None, **kwargs)"""
    def render_with_backend(source, width=4, height=4, fps=5, duration=1, sink=None, **kwargs):
        sink = sink if sink is not None else CollectingSink()
        schedule = RenderSchedule(width, height, fps, duration)
        result = render_shader(source, schedule, sink, backend=gl_backend, **kwargs)
        return result, sink
    return render_with_backend


# ============================================================================
# LEVEL 1: Smoke Tests (fast sanity checks)
# ============================================================================

class TestSmoke:

    def test_context_creation_and_cleanup(self, gl_backend):
        context = GraphicsContext(backend=gl_backend)
        assert context.ctx is not None
        assert isinstance(context.renderer_name, str)
        context.release()

    def test_render_single_frame(self, render):
        result, sink = render(TIME_RESOLUTION_SHADER, width=2, height=2, fps=1, duration=1)

        assert result.frames_rendered == 1
        assert len(sink.frames) == 1
        assert len(sink.frames[0]) == 2 * 2 * 3

    def test_render_target_matches_resolution(self, context):
        target = RenderTarget.create(context.guard, 16, 8)
        try:
            assert target.color_texture.size == (16, 8)
            assert target.color_texture.components == 3
            assert target.framebuffer.size == (16, 8)
        finally:
            target.release()

    def test_program_caches_uniform_locations(self, context):
        guard = context.guard
        program = link_program(guard, [
            compile_shader(guard, 'vertex', QUAD_VERTEX_SHADER),
            compile_shader(guard, 'fragment', TIME_RESOLUTION_SHADER),
        ])
        try:
            first = program.resolve_uniform('iTime')
            assert program.resolve_uniform('iTime') is first
            assert first.dimension == 1
            assert program.resolve_uniform('iResolution').dimension == 3
            assert set(program.uniform_locations) == {'iTime', 'iResolution'}
        finally:
            program.release()

    def test_timing_summary(self, render):
        result, _ = render(TIME_RESOLUTION_SHADER, enable_timing=True)

        assert result.timing_summary['draw']['count'] == 5
        assert result.timing_summary['readback']['count'] == 5
        assert result.timing_summary['sink']['count'] == 5


# ============================================================================
# LEVEL 2: Property Tests (output contract)
# ============================================================================

class TestOutputContract:

    @pytest.mark.parametrize("width,height,fps,duration", [
        (1, 1, 1, 1),
        (3, 5, 2, 2),
        (7, 3, 4, 1),
    ])
    def test_output_length(self, render, width, height, fps, duration):
        result, sink = render(TIME_RESOLUTION_SHADER, width, height, fps, duration)

        assert len(sink.data) == width * height * 3 * fps * duration
        assert result.bytes_written == len(sink.data)

    @pytest.mark.parametrize("fps,duration", [(5, 0), (0, 5)])
    def test_empty_render_succeeds(self, render, fps, duration):
        result, sink = render(TIME_RESOLUTION_SHADER, fps=fps, duration=duration)

        assert result.frames_rendered == 0
        assert sink.frames == []

    def test_time_and_resolution_reach_shader(self, render):
        """Frame i carries round(255 * i / fps) in red, saturated resolution in green/blue"""
        _, sink = render(TIME_RESOLUTION_SHADER, width=1, height=1, fps=5, duration=1)

        assert sink.data == bytes([
            0, 255, 255,
            51, 255, 255,
            102, 255, 255,
            153, 255, 255,
            204, 255, 255,
        ])

    def test_rows_are_bottom_up(self, render):
        """First row in the buffer is the bottom of the image (not flipped)"""
        _, sink = render(VERTICAL_GRADIENT_SHADER, width=2, height=4, fps=1, duration=1)
        img = np.frombuffer(sink.frames[0], dtype=np.uint8).reshape((4, 2, 3))

        reds = img[:, 0, 0]
        assert list(reds) == sorted(reds)
        assert reds[0] < reds[-1]

    def test_deterministic(self, render):
        _, first = render(VERTICAL_GRADIENT_SHADER, width=8, height=8, fps=3, duration=2)
        _, second = render(VERTICAL_GRADIENT_SHADER, width=8, height=8, fps=3, duration=2)

        assert first.data == second.data

    def test_constant_color_is_legal(self, render):
        result, sink = render(CONSTANT_COLOR_SHADER, width=2, height=2, fps=2, duration=1)

        assert result.frames_rendered == 2
        assert sink.frames[0] == sink.frames[1]
        assert sink.frames[0][:3] == bytes([51, 102, 153])

    def test_blank_frames_are_counted_not_fatal(self, render):
        result, sink = render(BLACK_SHADER, width=2, height=2, fps=3, duration=1)

        assert result.frames_rendered == 3
        assert result.blank_frames == 3
        assert sink.data == bytes(2 * 2 * 3 * 3)

    def test_custom_uniform_names(self, render):
        source = TIME_RESOLUTION_SHADER.replace('iTime', 'u_time').replace('iResolution', 'u_res')
        _, sink = render(source, width=1, height=1, fps=5, duration=1,
                         time_uniform='u_time', resolution_uniform='u_res')

        assert sink.data[:6] == bytes([0, 255, 255, 51, 255, 255])


class TestFailures:

    def test_missing_uniform(self, render):
        sink = CollectingSink()
        with pytest.raises(UniformNotFoundError) as exc_info:
            render(NO_UNIFORMS_SHADER, sink=sink)

        assert exc_info.value.name == 'iTime'
        assert sink.frames == []

    def test_missing_uniform_fails_even_for_empty_render(self, render):
        with pytest.raises(UniformNotFoundError):
            render(NO_UNIFORMS_SHADER, fps=0, duration=1)

    def test_syntax_error(self, render):
        sink = CollectingSink()
        with pytest.raises(CompileError) as exc_info:
            render(SYNTAX_ERROR_SHADER, sink=sink)

        err = exc_info.value
        assert err.stage == 'fragment'
        assert err.log
        assert err.log in str(err)
        assert sink.frames == []

    def test_link_error(self, render):
        sink = CollectingSink()
        with pytest.raises(LinkError) as exc_info:
            render(UNDEFINED_FUNCTION_SHADER, sink=sink)

        assert "helper" in exc_info.value.log
        assert not exc_info.value.log.startswith("Program")
        assert sink.frames == []

    def test_time_uniform_must_be_float(self, render):
        sink = CollectingSink()
        with pytest.raises(SetupError) as exc_info:
            render(VEC2_TIME_SHADER, sink=sink)

        assert "iTime" in str(exc_info.value)
        assert sink.frames == []

    def test_invalid_parameters_fail_before_context(self):
        with pytest.raises(SetupError):
            render_shader(TIME_RESOLUTION_SHADER, RenderSchedule(0, 4, 5, 1), CollectingSink())

    def test_sink_failure_aborts_run(self, render):
        sink = FailingSink(accept=2)
        with pytest.raises(SinkError):
            render(TIME_RESOLUTION_SHADER, width=1, height=1, fps=5, duration=1, sink=sink)

        # Only complete frames written before the failure
        assert sink.data == bytes([0, 255, 255, 51, 255, 255])


class TestFrameDriver:

    def build(self, context, schedule, source=TIME_RESOLUTION_SHADER):
        guard = context.guard
        program = link_program(guard, [
            compile_shader(guard, 'vertex', QUAD_VERTEX_SHADER),
            compile_shader(guard, 'fragment', source),
        ])
        target = RenderTarget.create(guard, schedule.width, schedule.height)
        return program, target, FrameDriver(context, program, target, schedule)

    def test_state_transitions(self, context):
        schedule = RenderSchedule(2, 2, 2, 1)
        program, target, driver = self.build(context, schedule)
        assert driver.state is DriverState.IDLE

        driver.prepare(program.resolve_uniform('iTime'), program.resolve_uniform('iResolution'))
        assert driver.state is DriverState.READY

        assert driver.run(CollectingSink()) == 2
        assert driver.state is DriverState.DONE
        driver.release()

    def test_run_before_prepare(self, context):
        _, _, driver = self.build(context, RenderSchedule(2, 2, 2, 1))
        with pytest.raises(RuntimeError):
            driver.run(CollectingSink())

    def test_prepare_rejects_vector_time_uniform(self, context):
        program, _, driver = self.build(context, RenderSchedule(1, 1, 1, 1), source=VEC2_TIME_SHADER)

        with pytest.raises(SetupError):
            driver.prepare(program.resolve_uniform('iTime'), program.resolve_uniform('iResolution'))
        assert driver.state is DriverState.IDLE

    def test_pixel_buffer_is_reused(self, context):
        schedule = RenderSchedule(1, 1, 5, 1)
        program, _, driver = self.build(context, schedule)
        driver.prepare(program.resolve_uniform('iTime'), program.resolve_uniform('iResolution'))

        buffer_ids = set()

        class RecordingSink(CollectingSink):
            def consume(self, frame):
                buffer_ids.add(id(frame.obj))
                super().consume(frame)

        driver.run(RecordingSink())
        assert buffer_ids == {id(driver.pixels)}
        driver.release()

    def test_target_size_must_match_schedule(self, context):
        guard = context.guard
        program = link_program(guard, [
            compile_shader(guard, 'vertex', QUAD_VERTEX_SHADER),
            compile_shader(guard, 'fragment', TIME_RESOLUTION_SHADER),
        ])
        target = RenderTarget.create(guard, 4, 4)
        with pytest.raises(SetupError):
            FrameDriver(context, program, target, RenderSchedule(8, 8, 1, 1))
