"""Core estimation, segmentation and alignment modules.

WHY: The core package contains the stable heart of the engine — the IR
dataclasses and the pure functions that produce word timings. These are
consumed by the playback controller and must remain deterministic.

HOW: ir.py defines the data structures, weights.py and chunker.py build
pre-audio estimates, segmenter.py finds speech in decoded audio, and
alignment.py maps provider characters or acoustic segments onto words.

RULES:
- IR dataclasses are the contract — change with care
- Everything here is a pure function over its inputs (no playback state)
- Fallbacks are local: a bad timing source degrades to an estimate
"""
