#!/usr/bin/env python3
"""
Render a fragment shader to a raw RGB video stream.

Writes fps * duration frames of width * height * 3 bytes (RGB24, rows
bottom-up) to stdout, ready to be piped into an encoder:

    python render_shader.py plasma.frag 1920 1080 60 10 | \\
        ffmpeg -f rawvideo -pix_fmt rgb24 -s 1920x1080 -r 60 -i - -vf vflip out.mp4

The shader receives the simulated time (seconds) in `uniform float iTime`
and the output size in `uniform vec3 iResolution`.

Exit codes: 0 on success, 1 on any render failure, 2 on usage errors.
"""

import argparse
import os
import sys
from typing import List, Optional

from shader_renderer.config import RenderConfig, build_config
from shader_renderer.errors import RenderError, SinkError
from shader_renderer.shell import log, read_shader_source, render_shader
from shader_renderer.sinks import FFmpegPipeSink, FileSink, PixelSink, PngSequenceSink, StreamSink


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Render a fragment shader offscreen to a raw RGB24 frame stream',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python render_shader.py shader.frag 640 480 30 5 > frames.rgb
  python render_shader.py shader.frag 1920 1080 60 10 --ffmpeg out.mp4
  python render_shader.py --config render.yaml --png-dir frames/
        """
    )
    parser.add_argument('shader', nargs='?', default=None,
                        help='Path to the fragment shader file')
    parser.add_argument('width', type=int, nargs='?', default=None,
                        help='Width of the video in pixels')
    parser.add_argument('height', type=int, nargs='?', default=None,
                        help='Height of the video in pixels')
    parser.add_argument('fps', type=int, nargs='?', default=None,
                        help='Frames per second')
    parser.add_argument('duration', type=int, nargs='?', default=None,
                        help='Duration of the video in seconds')

    parser.add_argument('--config', default=None,
                        help='YAML file with render settings (command-line values take precedence)')
    parser.add_argument('--time-uniform', default=None,
                        help='Name of the time uniform (default: iTime)')
    parser.add_argument('--resolution-uniform', default=None,
                        help='Name of the resolution uniform (default: iResolution)')
    parser.add_argument('--backend', default=None,
                        help="Standalone context backend, e.g. 'egl' for headless servers")

    output = parser.add_mutually_exclusive_group()
    output.add_argument('--output', '-o', default=None,
                        help='Write raw frames to this file instead of stdout')
    output.add_argument('--ffmpeg', default=None, metavar='VIDEO',
                        help='Pipe frames into ffmpeg and encode to this video file')
    output.add_argument('--png-dir', default=None,
                        help='Save each frame as a PNG in this directory')

    parser.add_argument('--flush', action='store_true', default=None,
                        help='Flush output after every frame')
    parser.add_argument('--timing', action='store_true', default=None,
                        help='Print per-operation timing summary')
    parser.add_argument('--verbose', '-v', action='store_true', default=None,
                        help='Print progress to stderr')
    return parser


def make_sink(args: argparse.Namespace, config: RenderConfig) -> PixelSink:
    """Pick the frame consumer requested on the command line"""
    if args.output:
        return FileSink(args.output, flush_every_frame=config.flush_every_frame)
    if args.ffmpeg:
        return FFmpegPipeSink(args.ffmpeg, config.width, config.height, config.fps)
    if args.png_dir:
        return PngSequenceSink(args.png_dir, config.width, config.height)
    return StreamSink(sys.stdout.buffer, flush_every_frame=config.flush_every_frame)


def _silence_stdout() -> None:
    # A closed downstream pipe would otherwise fail again at interpreter exit
    try:
        fd = sys.stdout.fileno()
    except (OSError, ValueError):
        return  # stdout is not a real file (e.g. captured)
    devnull = os.open(os.devnull, os.O_WRONLY)
    os.dup2(devnull, fd)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    overrides = {
        'shader_path': args.shader,
        'width': args.width,
        'height': args.height,
        'fps': args.fps,
        'duration': args.duration,
        'time_uniform': args.time_uniform,
        'resolution_uniform': args.resolution_uniform,
        'backend': args.backend,
        'flush_every_frame': args.flush,
        'enable_timing': args.timing,
        'verbose': args.verbose,
    }

    writing_stdout = not (args.output or args.ffmpeg or args.png_dir)
    try:
        config = build_config(overrides, config_path=args.config)
        source = read_shader_source(config.shader_path)

        if config.verbose:
            schedule = config.schedule
            log("=" * 60)
            log("Rendering Shader")
            log("=" * 60)
            log(f"Shader: {config.shader_path}")
            log(f"Resolution: {config.width}x{config.height} @ {config.fps} FPS")
            log(f"Duration: {config.duration}s ({schedule.total_frames} frames, "
                f"{schedule.total_bytes} bytes)")
            log()

        with make_sink(args, config) as sink:
            render_shader(
                source,
                config.schedule,
                sink,
                time_uniform=config.time_uniform,
                resolution_uniform=config.resolution_uniform,
                backend=config.backend,
                enable_timing=config.enable_timing,
                verbose=config.verbose
            )
    except SinkError as e:
        log(f"ERROR: {e}")
        if writing_stdout:
            _silence_stdout()
        return 1
    except RenderError as e:
        log(f"ERROR: {e}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
