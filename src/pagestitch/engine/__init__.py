"""Capture orchestration and stitching engine.

The engine never touches a browser directly.  Hosts implement the
capabilities in ``host`` (``PageInspector``, ``PageDriver``,
``ViewportCapturer``) and the engine drives them:

    analyzer  →  strategy  →  planner  →  capture_loop  →  stitcher

``session.CaptureSession`` ties the stages together and guards against
overlapping captures of the same page.
"""
