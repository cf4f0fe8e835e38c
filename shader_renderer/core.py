"""
Shader Renderer - Functional Core

Pure functions for render scheduling, parameter validation and
interpretation of driver diagnostics.
No side effects, no GPU operations - only calculations.

Follows functional core, imperative shell pattern:
- This module: Pure transformations (testable, predictable)
- shell.py, shaders.py, target.py: GPU operations (side effects)
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np


BYTES_PER_PIXEL = 3  # Tightly packed RGB8

# Background the target is cleared to before every draw (opaque black)
CLEAR_COLOR = (0.0, 0.0, 0.0, 1.0)

# glGetError() codes, keyed by the names ModernGL reports
GL_ERROR_CODES = {
    'GL_INVALID_ENUM': 0x0500,
    'GL_INVALID_VALUE': 0x0501,
    'GL_INVALID_OPERATION': 0x0502,
    'GL_STACK_OVERFLOW': 0x0503,
    'GL_STACK_UNDERFLOW': 0x0504,
    'GL_OUT_OF_MEMORY': 0x0505,
    'GL_INVALID_FRAMEBUFFER_OPERATION': 0x0506,
}

GL_NO_ERROR = 'GL_NO_ERROR'

STAGES = ('vertex', 'fragment')

COMPILER_FAILED = 'GLSL Compiler failed'
LINKER_FAILED = 'GLSL Linker failed'


# ============================================================================
# Time Calculations
# ============================================================================

def frame_time_from_number(frame_number: int, fps: int) -> float:
    """Calculate simulated time in seconds for a given frame number

    Args:
        frame_number: Frame index (0-based)
        fps: Frames per second

    Returns:
        Time in seconds
    """
    return frame_number / fps


def total_frames_from_duration(duration_seconds: int, fps: int) -> int:
    """Calculate total number of frames for duration"""
    return fps * duration_seconds


def frame_size_bytes(width: int, height: int) -> int:
    """Size of one tightly packed RGB8 frame"""
    return width * height * BYTES_PER_PIXEL


@dataclass(frozen=True)
class RenderSchedule:
    """Resolution and timing of a render

    Attributes:
        width: Frame width in pixels
        height: Frame height in pixels
        fps: Frames per second
        duration: Duration in seconds
    """
    width: int
    height: int
    fps: int
    duration: int

    @property
    def total_frames(self) -> int:
        return total_frames_from_duration(self.duration, self.fps)

    @property
    def frame_size(self) -> int:
        return frame_size_bytes(self.width, self.height)

    @property
    def total_bytes(self) -> int:
        return self.frame_size * self.total_frames

    def frame_time(self, frame_number: int) -> float:
        return frame_time_from_number(frame_number, self.fps)


# ============================================================================
# Parameter Validation
# ============================================================================

def validate_render_parameters(
    width: int, height: int, fps: int, duration: int
) -> Optional[str]:
    """Check render parameters before any GPU work happens

    A zero fps or zero duration is valid and yields an empty render.

    Returns:
        Problem description, or None if the parameters are usable
    """
    for name, value in (('width', width), ('height', height),
                        ('fps', fps), ('duration', duration)):
        if isinstance(value, bool) or not isinstance(value, int):
            return f"{name} must be an integer, got {value!r}"

    if width <= 0:
        return f"width must be positive, got {width}"
    if height <= 0:
        return f"height must be positive, got {height}"
    if fps < 0:
        return f"fps must not be negative, got {fps}"
    if duration < 0:
        return f"duration must not be negative, got {duration}"
    return None


def normalize_stage(stage: str) -> Optional[str]:
    """Map a stage name ('vertex', 'Fragment', 'fragment_shader') to its
    canonical form, or None if it is not a supported stage"""
    name = stage.strip().lower()
    if name.endswith('_shader'):
        name = name[:-len('_shader')]
    return name if name in STAGES else None


# ============================================================================
# Driver Diagnostics
# ============================================================================

def gl_error_code(error_name: str) -> Optional[int]:
    """Numeric glGetError() code for a symbolic name (None if unknown)"""
    return GL_ERROR_CODES.get(error_name)


def classify_build_error(message: str) -> Tuple[str, Optional[str], str]:
    """Split a ModernGL program build failure into its parts

    ModernGL reports compiler failures as::

        GLSL Compiler failed

        fragment_shader
        ===============
        0:3(1): error: syntax error, unexpected ...

    and linker failures as::

        GLSL Linker failed

        Program
        =======
        error: unresolved reference to function `helper'

    Args:
        message: str() of the moderngl.Error raised by ctx.program()

    Returns:
        (kind, stage, log) where kind is 'compile', 'link' or 'other',
        stage is the canonical stage name for compile failures, and log is
        the driver diagnostic text
    """
    text = message.strip('\n')

    if text.startswith(COMPILER_FAILED):
        body = text[len(COMPILER_FAILED):].lstrip('\n')
        lines = body.split('\n')
        stage = normalize_stage(lines[0]) if lines else None
        if stage is None:
            return ('compile', None, body)
        # Skip the stage title and its underline
        log_lines = lines[1:]
        if log_lines and set(log_lines[0]) == {'='}:
            log_lines = log_lines[1:]
        return ('compile', stage, '\n'.join(log_lines).strip('\n'))

    if text.startswith(LINKER_FAILED):
        lines = text[len(LINKER_FAILED):].lstrip('\n').split('\n')
        # Skip the "Program" title and its underline
        if len(lines) >= 2 and lines[1] and set(lines[1]) == {'='}:
            lines = lines[2:]
        return ('link', None, '\n'.join(lines).strip('\n'))

    return ('other', None, text)


def incomplete_reason(message: str) -> Optional[str]:
    """Extract the incompleteness status from a ModernGL framebuffer error

    'the framebuffer is not complete (INCOMPLETE_ATTACHMENT)'
    -> 'INCOMPLETE_ATTACHMENT'
    """
    if 'not complete' not in message:
        return None
    start = message.find('(')
    end = message.rfind(')')
    if start == -1 or end <= start:
        return message.strip() or None
    return message[start + 1:end]


def target_size_problem(
    width: int, height: int, max_texture_size: Optional[int]
) -> Optional[str]:
    """Describe why a width x height texture cannot be allocated, if it can't"""
    if max_texture_size is None or max_texture_size <= 0:
        return None
    if width > max_texture_size or height > max_texture_size:
        return (
            f"{width}x{height} exceeds GL_MAX_TEXTURE_SIZE "
            f"({max_texture_size})"
        )
    return None


# ============================================================================
# Uniform Values
# ============================================================================

def resolution_value(width: int, height: int, dimension: int = 3):
    """Resolution uniform value shaped to the uniform's declared size

    Shadertoy-style shaders declare ``uniform vec3 iResolution``; the third
    component is always 0.0. A vec2 or float declaration receives the
    leading components.

    Args:
        width, height: Output resolution in pixels
        dimension: Number of components of the uniform (1-4)

    Returns:
        float for dimension 1, otherwise a tuple of floats
    """
    components = (float(width), float(height), 0.0, 0.0)
    if dimension <= 1:
        return components[0]
    return components[:min(dimension, 4)]


# ============================================================================
# Frame Inspection
# ============================================================================

def is_blank_frame(pixels: np.ndarray) -> bool:
    """True if every byte of the read-back frame is zero

    Advisory only: a shader may legitimately render black.
    """
    return not pixels.any()


def flip_rows(pixels: np.ndarray, width: int, height: int) -> np.ndarray:
    """Copy of a bottom-left-origin RGB frame with top-left origin

    Args:
        pixels: Flat uint8 array of width*height*3 bytes
        width, height: Frame dimensions

    Returns:
        (height, width, 3) uint8 array, rows reversed
    """
    img = np.asarray(pixels, dtype=np.uint8).reshape((height, width, BYTES_PER_PIXEL))
    return np.flip(img, axis=0).copy()
