"""
Shader Renderer - Error Types

Every failure in the render pipeline is terminal for the whole run.
Each error carries enough context (operation name, diagnostic text,
missing identifier) for the caller to diagnose the problem.
"""

from typing import Optional


class RenderError(Exception):
    """Base class for all render pipeline failures"""


class SetupError(RenderError):
    """Invalid parameters or graphics context bootstrap failure"""


class CompileError(RenderError):
    """Shader stage failed to compile

    Attributes:
        stage: 'vertex' or 'fragment'
        log: Compiler diagnostic text, verbatim
    """

    def __init__(self, stage: str, log: str):
        self.stage = stage
        self.log = log
        super().__init__(f"Shader compilation failed ({stage} shader):\n{log}")


class LinkError(RenderError):
    """Program failed to link

    Attributes:
        log: Linker diagnostic text, verbatim
    """

    def __init__(self, log: str):
        self.log = log
        super().__init__(f"Program linking failed:\n{log}")


class UniformNotFoundError(RenderError):
    """A required uniform is absent from the linked program"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"Uniform '{name}' not found in shader program. "
            f"Ensure the uniform is declared and used in the shader."
        )


class IncompleteTargetError(RenderError):
    """Offscreen framebuffer is not renderable"""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        message = "Framebuffer is not complete"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class GraphicsCallError(RenderError):
    """A graphics API call reported an error

    Attributes:
        operation: Human-readable label of the failed call
        code: Raw GL error code (None when the driver gave no numeric code)
        name: Symbolic error name, e.g. GL_INVALID_OPERATION
        detail: Extra message from the binding, if any
    """

    def __init__(
        self,
        operation: str,
        code: Optional[int],
        name: str = "",
        detail: str = ""
    ):
        self.operation = operation
        self.code = code
        self.name = name
        self.detail = detail

        code_text = f"0x{code:04X}" if code is not None else "unknown"
        message = f"OpenGL error code {code_text}"
        if name:
            message += f" ({name})"
        message += f' at "{operation}"'
        if detail:
            message += f": {detail}"
        super().__init__(message)


class SinkError(RenderError):
    """A completed frame could not be written to the pixel sink"""
