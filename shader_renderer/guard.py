"""
Graphics Call Guard - Imperative Shell

Single error-reporting chokepoint for every graphics call in the pipeline.
Each call is followed by a glGetError() query; any reported error, or any
moderngl.Error raised by the binding, becomes a GraphicsCallError naming
the operation. Values the binding cannot pack for the call (a float for a
vec2 uniform, say) are reported the same way. Nothing is retried.
"""

import struct
from contextlib import contextmanager
from typing import Any, Callable

import moderngl

from .core import GL_NO_ERROR, gl_error_code
from .errors import GraphicsCallError


class GraphicsCallGuard:
    """Post-call error checking bound to one ModernGL context

    Usage:
        texture = guard('create color texture', ctx.texture, (w, h), 3)

        with guard.checked('set iTime uniform'):
            uniform.value = t
    """

    def __init__(self, ctx: moderngl.Context):
        self.ctx = ctx

    def __call__(self, operation: str, fn: Callable, *args, **kwargs) -> Any:
        """Invoke fn(*args, **kwargs) and verify the driver error state

        Returns:
            The call's result, unchanged

        Raises:
            GraphicsCallError: If the binding raised moderngl.Error or the
                driver reports an error code after the call
        """
        with self.checked(operation):
            return fn(*args, **kwargs)

    @contextmanager
    def checked(self, operation: str):
        """Statement form for calls that are attribute assignments"""
        try:
            yield
        except moderngl.Error as e:
            name = self._read_error()
            raise GraphicsCallError(
                operation,
                gl_error_code(name) if name else None,
                name or '',
                detail=str(e).strip()
            ) from e
        except (TypeError, struct.error) as e:
            # Value rejected by the binding before reaching the driver
            raise GraphicsCallError(operation, None, detail=str(e)) from e
        self.check(operation)

    def check(self, operation: str) -> None:
        """Raise if the driver has a pending error"""
        name = self._read_error()
        if name:
            raise GraphicsCallError(operation, gl_error_code(name), name)

    def _read_error(self) -> str:
        # Context.error wraps glGetError() and clears the flag
        name = self.ctx.error
        return '' if name == GL_NO_ERROR else name
