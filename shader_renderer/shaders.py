"""
Shader Build - Imperative Shell

Compiles shader stages and links them into the program used for the
whole render. Compiler and linker diagnostics are surfaced verbatim;
they are the only actionable feedback for shader-authoring mistakes.

ModernGL compiles and links in a single driver call (ctx.program), so
compile_shader() builds a throwaway program around the stage to get its
compiler verdict, and link_program() builds the real one.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import moderngl

from .core import classify_build_error, normalize_stage
from .errors import CompileError, LinkError, SetupError, UniformNotFoundError
from .guard import GraphicsCallGuard


# ============================================================================
# Shader Source Code
# ============================================================================

# Pass-through vertex shader for the full-screen quad (fixed, not user input)
QUAD_VERTEX_SHADER = """#version 330 core
layout (location = 0) in vec3 aPos;
void main() {
    gl_Position = vec4(aPos, 1.0);
}
"""

QUAD_POSITION_ATTRIBUTE = 'aPos'


# ============================================================================
# Data Types
# ============================================================================

@dataclass(frozen=True)
class ShaderUnit:
    """A single compiled shader stage

    Attributes:
        stage: 'vertex' or 'fragment'
        source: GLSL source text
    """
    stage: str
    source: str


@dataclass(frozen=True)
class ResolvedUniform:
    """Uniform looked up once at setup and reused every frame

    Attributes:
        name: Uniform name in the shader
        location: Driver-assigned location
        dimension: Number of components (1 for float, 3 for vec3, ...)
        handle: moderngl.Uniform used to push values
    """
    name: str
    location: int
    dimension: int
    handle: Any = field(repr=False, compare=False)


# ============================================================================
# Program Build
# ============================================================================

def _build_program(
    ctx: moderngl.Context,
    sources: Dict[str, str],
    report_link_errors: bool = True
) -> Optional[moderngl.Program]:
    """ctx.program() with driver diagnostics mapped to CompileError/LinkError

    Returns None when report_link_errors is False and only linking failed.
    """
    try:
        return ctx.program(**{f'{stage}_shader': src for stage, src in sources.items()})
    except moderngl.Error as e:
        kind, stage, log = classify_build_error(str(e))
        if kind == 'compile':
            if stage is None:
                stage = next(iter(sources)) if len(sources) == 1 else 'unknown'
            raise CompileError(stage, log) from e
        if kind == 'link':
            if not report_link_errors:
                return None
            raise LinkError(log) from e
        raise


def compile_shader(guard: GraphicsCallGuard, stage: str, source: str) -> ShaderUnit:
    """Compile one shader stage from source text

    The fragment stage is compiled alongside the fixed quad vertex shader,
    which is known to compile. Link problems are left to link_program().

    Args:
        guard: Guard bound to the current context
        stage: 'vertex' or 'fragment'
        source: GLSL source

    Returns:
        The compiled ShaderUnit

    Raises:
        SetupError: Unsupported stage
        CompileError: Empty source or compiler failure (log verbatim)
    """
    canonical = normalize_stage(stage)
    if canonical is None:
        raise SetupError(f"Unsupported shader stage: {stage!r}")

    if not source or not source.strip():
        raise CompileError(canonical, "shader source is empty")

    if canonical == 'vertex':
        sources = {'vertex': source}
    else:
        sources = {'vertex': QUAD_VERTEX_SHADER, 'fragment': source}

    trial = guard(
        f"compile {canonical} shader",
        _build_program, guard.ctx, sources, report_link_errors=False
    )
    if trial is not None:
        guard(f"release {canonical} shader trial program", trial.release)

    return ShaderUnit(stage=canonical, source=source)


class Program:
    """Linked shader program with a cache of resolved uniforms"""

    def __init__(self, guard: GraphicsCallGuard, handle: moderngl.Program):
        self.guard = guard
        self.handle = handle
        self._uniforms: Dict[str, ResolvedUniform] = {}

    @property
    def uniform_locations(self) -> Dict[str, int]:
        return {name: u.location for name, u in self._uniforms.items()}

    def resolve_uniform(self, name: str) -> ResolvedUniform:
        """Look up a uniform by name, caching the result

        Raises:
            SetupError: Empty name
            UniformNotFoundError: The program has no active uniform of that
                name (undeclared, or optimized out because it is unused)
        """
        if not name:
            raise SetupError("Uniform name must not be empty")

        cached = self._uniforms.get(name)
        if cached is not None:
            return cached

        member = self.guard(f"get {name} location", self.handle.get, name, None)
        if not isinstance(member, moderngl.Uniform) or member.location < 0:
            raise UniformNotFoundError(name)

        resolved = ResolvedUniform(
            name=name,
            location=member.location,
            dimension=member.dimension,
            handle=member
        )
        self._uniforms[name] = resolved
        return resolved

    def release(self) -> None:
        self.guard("release program", self.handle.release)


def link_program(guard: GraphicsCallGuard, units: List[ShaderUnit]) -> Program:
    """Link compiled shader units into the render program

    ModernGL binds the program on every draw, so the returned program is
    the active one for all subsequent rendering.

    Raises:
        SetupError: No units, duplicate stages, or no vertex stage
        CompileError: Driver reported a compiler failure while building
        LinkError: Linker failure (log verbatim)
    """
    if not units:
        raise SetupError("At least one shader unit is required to link a program")

    sources: Dict[str, str] = {}
    for unit in units:
        if unit.stage in sources:
            raise SetupError(f"Duplicate {unit.stage} shader unit")
        sources[unit.stage] = unit.source

    if 'vertex' not in sources:
        raise SetupError("A vertex shader unit is required to link a program")

    handle = guard("link program", _build_program, guard.ctx, sources)
    return Program(guard, handle)
