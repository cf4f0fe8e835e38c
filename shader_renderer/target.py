"""
Offscreen Render Target - Imperative Shell

Framebuffer backed by a single RGB8 color texture sized exactly to the
output resolution. Completeness is validated once, at creation, and never
rechecked per frame.
"""

import moderngl

from .core import target_size_problem, incomplete_reason
from .errors import IncompleteTargetError, SetupError
from .guard import GraphicsCallGuard


def _framebuffer(ctx: moderngl.Context, texture: moderngl.Texture) -> moderngl.Framebuffer:
    # ModernGL runs glCheckFramebufferStatus while creating the framebuffer
    try:
        return ctx.framebuffer(color_attachments=[texture])
    except moderngl.Error as e:
        reason = incomplete_reason(str(e))
        if reason is None:
            raise
        raise IncompleteTargetError(reason) from e


class RenderTarget:
    """Offscreen framebuffer + color texture

    Treated as immutable infrastructure once created.
    """

    def __init__(
        self,
        guard: GraphicsCallGuard,
        width: int,
        height: int,
        color_texture: moderngl.Texture,
        framebuffer: moderngl.Framebuffer
    ):
        self.guard = guard
        self.width = width
        self.height = height
        self.color_texture = color_texture
        self.framebuffer = framebuffer

    @classmethod
    def create(cls, guard: GraphicsCallGuard, width: int, height: int) -> 'RenderTarget':
        """Allocate and validate the offscreen target

        Side effects:
        - Allocates GPU memory for a width x height RGB8 texture
        - Creates a framebuffer with the texture as its sole attachment

        Raises:
            SetupError: Non-positive dimensions
            IncompleteTargetError: The driver cannot render to the target
        """
        if width <= 0 or height <= 0:
            raise SetupError(f"Render target size must be positive, got {width}x{height}")

        ctx = guard.ctx
        problem = target_size_problem(width, height, ctx.info.get('GL_MAX_TEXTURE_SIZE'))
        if problem:
            raise IncompleteTargetError(problem)

        texture = guard("create color texture", ctx.texture, (width, height), 3)
        with guard.checked("set texture filter"):
            texture.filter = (moderngl.LINEAR, moderngl.LINEAR)

        try:
            framebuffer = guard("create framebuffer", _framebuffer, ctx, texture)
        except Exception:
            texture.release()
            raise

        return cls(guard, width, height, texture, framebuffer)

    @property
    def viewport(self):
        return (0, 0, self.width, self.height)

    def release(self) -> None:
        """Free the framebuffer and texture"""
        self.guard("release framebuffer", self.framebuffer.release)
        self.guard("release color texture", self.color_texture.release)
