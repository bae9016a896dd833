"""
Camera Access Checkpoint with ArcFace ONNX and 5-Point Alignment

This package implements a face-based access checkpoint:
- Best single face per frame using Haar Cascade + MediaPipe 5-point landmarks
- Face alignment to 112x112 and ArcFace embedding using ONNX Runtime
- Nearest-neighbour matching against an enrolled registry
- A timed detection loop: debounced sampling, consistency voting,
  hold/countdown after a confirmed match, then resume
"""

__version__ = "1.0.0"
