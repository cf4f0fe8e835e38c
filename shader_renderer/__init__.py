"""
Shader Renderer Package

Offscreen GPU rendering of a fragment shader into a raw RGB frame stream,
using functional core, imperative shell pattern.

Modules:
- core: Pure calculations (schedule, validation, driver diagnostics)
- errors: Error taxonomy (every error is fatal for the run)
- guard: Post-call GL error checking
- shaders: Shader compilation, program linking, uniform lookup
- target: Offscreen framebuffer + color texture
- sinks: Frame consumers (stdout, file, ffmpeg pipe, PNG sequence)
- config: RenderConfig and YAML config loading
- shell: GPU context, frame loop and high-level render entry point
"""

from .core import (
    RenderSchedule,
    frame_time_from_number,
    total_frames_from_duration,
    frame_size_bytes,
    validate_render_parameters,
)

from .errors import (
    RenderError,
    SetupError,
    CompileError,
    LinkError,
    UniformNotFoundError,
    IncompleteTargetError,
    GraphicsCallError,
    SinkError,
)

from .guard import GraphicsCallGuard

from .shaders import (
    QUAD_VERTEX_SHADER,
    ShaderUnit,
    Program,
    compile_shader,
    link_program,
)

from .target import RenderTarget

from .sinks import (
    PixelSink,
    StreamSink,
    FileSink,
    FFmpegPipeSink,
    PngSequenceSink,
)

from .config import RenderConfig, load_config_file, build_config

from .shell import (
    GraphicsContext,
    FrameDriver,
    RenderResult,
    RenderTimings,
    read_shader_source,
    render_shader,
)

__all__ = [
    # Core
    'RenderSchedule',
    'frame_time_from_number',
    'total_frames_from_duration',
    'frame_size_bytes',
    'validate_render_parameters',

    # Errors
    'RenderError',
    'SetupError',
    'CompileError',
    'LinkError',
    'UniformNotFoundError',
    'IncompleteTargetError',
    'GraphicsCallError',
    'SinkError',

    # GPU pipeline
    'GraphicsCallGuard',
    'QUAD_VERTEX_SHADER',
    'ShaderUnit',
    'Program',
    'compile_shader',
    'link_program',
    'RenderTarget',

    # Sinks
    'PixelSink',
    'StreamSink',
    'FileSink',
    'FFmpegPipeSink',
    'PngSequenceSink',

    # Config
    'RenderConfig',
    'load_config_file',
    'build_config',

    # Shell
    'GraphicsContext',
    'FrameDriver',
    'RenderResult',
    'RenderTimings',
    'read_shader_source',
    'render_shader',
]
